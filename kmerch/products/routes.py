from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from kmerch.cache.product_cache import invalidate_product
from kmerch.common.utils import now, success_response
from kmerch.db.dependencies import get_session
from kmerch.products.models import ProductCreateIn, ProductUpdateIn, serialize_product
from kmerch.products.repository import fetch_collection, fetch_pre_orders
from kmerch.products.services import (create_product, delete_product, product_details,
                                      release_pre_order, update_product)

prods_public_router=APIRouter()
prods_admin_router=APIRouter()


@prods_public_router.get("")
async def get_collection(
    category: Optional[str] = Query(None),
    kpop_group: Optional[str] = Query(None),
    q: Optional[str] = Query(None, max_length=100),
    session: AsyncSession = Depends(get_session)):

    rows = await fetch_collection(session, now(), category=category, kpop_group=kpop_group, q=q)
    return success_response({"items": [serialize_product(p) for p in rows]})


@prods_public_router.get("/pre-orders")
async def get_pre_orders(session: AsyncSession = Depends(get_session)):
    rows = await fetch_pre_orders(session, now())
    return success_response({"items": [serialize_product(p) for p in rows]})


@prods_public_router.get("/{product_id}")
async def get_product(product_id: int, session: AsyncSession = Depends(get_session)):
    details = await product_details(session, product_id)
    return success_response(details)


@prods_admin_router.post("")
async def admin_create_product(payload: ProductCreateIn, session: AsyncSession = Depends(get_session)):
    product = await create_product(session, payload)
    await session.commit()
    return success_response({"product": serialize_product(product)}, status_code=status.HTTP_201_CREATED)


@prods_admin_router.patch("/{product_id}")
async def admin_update_product(product_id: int, payload: ProductUpdateIn,
                               session: AsyncSession = Depends(get_session)):
    product = await update_product(session, product_id, payload)
    await session.commit()
    await invalidate_product(product_id)
    return success_response({"product": serialize_product(product)})


@prods_admin_router.post("/{product_id}/release")
async def admin_release_product(product_id: int, session: AsyncSession = Depends(get_session)):
    product = await release_pre_order(session, product_id)
    await session.commit()
    await invalidate_product(product_id)
    return success_response({"product": serialize_product(product)})


@prods_admin_router.delete("/{product_id}")
async def admin_delete_product(product_id: int, session: AsyncSession = Depends(get_session)):
    await delete_product(session, product_id)
    await session.commit()
    await invalidate_product(product_id)
    return success_response({"message": f"product {product_id} deleted"})
