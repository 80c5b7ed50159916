from typing import Any, Dict
from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from kmerch.cache.product_cache import get_product_cached
from kmerch.common.utils import now, ph_local_to_utc
from kmerch.products.constants import logger
from kmerch.products.models import ProductCreateIn, ProductUpdateIn, serialize_product
from kmerch.products.repository import get_product_or_404, patch_product
from kmerch.schema.full_schema import Product


def _release_at(release_date, release_time):
    if not release_date:
        return None
    return ph_local_to_utc(release_date, release_time)


async def product_details(session: AsyncSession, product_id: int) -> Dict[str, Any]:
    async def loader():
        product = await get_product_or_404(session, product_id)
        return serialize_product(product)

    return await get_product_cached(product_id, loader)


async def create_product(session: AsyncSession, payload: ProductCreateIn) -> Product:
    data = payload.model_dump(exclude={"release_date", "release_time"})
    release_at = _release_at(payload.release_date, payload.release_time)
    if payload.is_pre_order and release_at is None:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                            detail="Pre-order products need a release date")
    product = Product(**data, release_at=release_at)
    session.add(product)
    await session.flush()
    logger.info("product.created", extra={"product_id": product.id, "is_pre_order": product.is_pre_order})
    return product


async def update_product(session: AsyncSession, product_id: int, payload: ProductUpdateIn) -> Product:
    product = await get_product_or_404(session, product_id)
    updates = payload.model_dump(exclude_unset=True)
    release_date = updates.pop("release_date", None)
    release_time = updates.pop("release_time", None)
    if release_date:
        updates["release_at"] = _release_at(release_date, release_time)

    is_pre_order = updates.get("is_pre_order", product.is_pre_order)
    if is_pre_order and updates.get("release_at", product.release_at) is None:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                            detail="Pre-order products need a release date")

    product = await patch_product(session, product, updates)
    logger.info("product.updated", extra={"product_id": product_id, "fields": sorted(updates)})
    return product


async def release_pre_order(session: AsyncSession, product_id: int) -> Product:
    """Move a pre-order into the regular collection now."""
    product = await get_product_or_404(session, product_id)
    if not product.is_pre_order:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Product is not a pre-order")
    product = await patch_product(session, product, {"is_pre_order": False, "release_at": now()})
    logger.info("product.released", extra={"product_id": product_id})
    return product


async def delete_product(session: AsyncSession, product_id: int) -> None:
    product = await get_product_or_404(session, product_id)
    await session.delete(product)
    await session.flush()
    logger.info("product.deleted", extra={"product_id": product_id})
