from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from kmerch.common.utils import now, success_response
from kmerch.db.dependencies import get_session
from kmerch.promos.models import PromoCreateIn, PromoUpdateIn, PromoValidateIn, serialize_promo
from kmerch.promos.repository import list_active_promos, list_promos
from kmerch.promos.services import create_promo, delete_promo, toggle_promo, update_promo, validate_promo

promos_router=APIRouter()
promos_admin_router=APIRouter()


@promos_router.get("/active")
async def get_active_promos(session: AsyncSession = Depends(get_session)):
    promos = await list_active_promos(session, now())
    return success_response({"items": [serialize_promo(p) for p in promos]})


@promos_router.post("/validate")
async def validate_promo_code(payload: PromoValidateIn, session: AsyncSession = Depends(get_session)):
    quote = await validate_promo(session, payload.code, payload.subtotal)
    return success_response(quote)


@promos_admin_router.get("")
async def admin_list_promos(session: AsyncSession = Depends(get_session)):
    promos = await list_promos(session)
    return success_response({"items": [serialize_promo(p) for p in promos]})


@promos_admin_router.post("")
async def admin_create_promo(payload: PromoCreateIn, session: AsyncSession = Depends(get_session)):
    promo = await create_promo(session, payload)
    await session.commit()
    return success_response({"promo": serialize_promo(promo)}, status_code=status.HTTP_201_CREATED)


@promos_admin_router.patch("/{code}")
async def admin_update_promo(code: str, payload: PromoUpdateIn, session: AsyncSession = Depends(get_session)):
    promo = await update_promo(session, code, payload)
    await session.commit()
    return success_response({"promo": serialize_promo(promo)})


@promos_admin_router.post("/{code}/toggle")
async def admin_toggle_promo(code: str, session: AsyncSession = Depends(get_session)):
    promo = await toggle_promo(session, code)
    await session.commit()
    return success_response({"promo": serialize_promo(promo)})


@promos_admin_router.delete("/{code}")
async def admin_delete_promo(code: str, session: AsyncSession = Depends(get_session)):
    await delete_promo(session, code)
    await session.commit()
    return success_response({"message": f"promo {code.upper()} deleted"})
