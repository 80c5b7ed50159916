from datetime import datetime
from typing import Any, Dict
from fastapi import HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from kmerch.common.utils import format_pesos, now, ph_local_to_utc
from kmerch.orders.exceptions import PromoRejected
from kmerch.promos.constants import (DEFAULT_END_TIME, DEFAULT_START_TIME, MSG_EXPIRED, MSG_INACTIVE,
                                     MSG_INVALID, MSG_LIMIT_REACHED, MSG_MIN_ORDER, MSG_NOT_STARTED, logger)
from kmerch.promos.models import PromoCreateIn, PromoUpdateIn
from kmerch.promos.repository import get_promo_by_code, normalize_code
from kmerch.schema.full_schema import Promo


def compute_discount(promo: Promo, subtotal: int) -> int:
    discount = subtotal * promo.discount // 100
    if promo.max_discount is not None:
        discount = min(discount, promo.max_discount)
    return discount


def check_promo(promo: Promo, subtotal: int, at: datetime) -> None:
    """Raise PromoRejected with the first rule the promo fails."""
    if not promo.is_active:
        raise PromoRejected(MSG_INACTIVE)
    if at < promo.starts_at:
        raise PromoRejected(MSG_NOT_STARTED)
    if at > promo.ends_at:
        raise PromoRejected(MSG_EXPIRED)
    if promo.max_uses is not None and promo.used_count >= promo.max_uses:
        raise PromoRejected(MSG_LIMIT_REACHED)
    if promo.min_order is not None and subtotal < promo.min_order:
        raise PromoRejected(MSG_MIN_ORDER.format(amount=format_pesos(promo.min_order)))


async def validate_promo(session: AsyncSession, code: str, subtotal: int, at: datetime = None) -> Dict[str, Any]:
    promo = await get_promo_by_code(session, code) if normalize_code(code) else None
    if promo is None:
        raise PromoRejected(MSG_INVALID)
    check_promo(promo, subtotal, at or now())
    return {
        "code": promo.code,
        "name": promo.name,
        "discount_percent": promo.discount,
        "discount_amount": compute_discount(promo, subtotal),
    }


def _window(start_date, start_time, end_date, end_time):
    starts_at = ph_local_to_utc(start_date, start_time, DEFAULT_START_TIME)
    ends_at = ph_local_to_utc(end_date, end_time, DEFAULT_END_TIME)
    if ends_at <= starts_at:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                            detail="Promo end must be after its start")
    return starts_at, ends_at


async def create_promo(session: AsyncSession, payload: PromoCreateIn) -> Promo:
    code = normalize_code(payload.code)
    if await get_promo_by_code(session, code) is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Promo code {code} already exists")

    starts_at, ends_at = _window(payload.start_date, payload.start_time, payload.end_date, payload.end_time)
    promo = Promo(
        code=code,
        name=payload.name.strip(),
        discount=payload.discount,
        max_discount=payload.max_discount,
        min_order=payload.min_order,
        max_uses=payload.max_uses,
        starts_at=starts_at,
        ends_at=ends_at,
        is_active=payload.is_active,
    )
    session.add(promo)
    try:
        await session.flush()
    except IntegrityError:
        await session.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Promo code {code} already exists")
    logger.info("promo.created", extra={"code": code})
    return promo


async def get_promo_or_404(session: AsyncSession, code: str) -> Promo:
    promo = await get_promo_by_code(session, code)
    if promo is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Promo not found")
    return promo


async def update_promo(session: AsyncSession, code: str, payload: PromoUpdateIn) -> Promo:
    promo = await get_promo_or_404(session, code)
    updates = payload.model_dump(exclude_unset=True)
    schedule_keys = ("start_date", "start_time", "end_date", "end_time")
    schedule = {k: updates.pop(k) for k in schedule_keys if k in updates}

    if schedule:
        if not schedule.get("start_date") or not schedule.get("end_date"):
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                                detail="start_date and end_date are both required to reschedule")
        updates["starts_at"], updates["ends_at"] = _window(schedule["start_date"], schedule.get("start_time"),
                                                           schedule["end_date"], schedule.get("end_time"))
    for field, value in updates.items():
        setattr(promo, field, value)
    promo.updated_at = now()
    session.add(promo)
    await session.flush()
    logger.info("promo.updated", extra={"code": promo.code, "fields": sorted(updates)})
    return promo


async def toggle_promo(session: AsyncSession, code: str) -> Promo:
    promo = await get_promo_or_404(session, code)
    promo.is_active = not promo.is_active
    promo.updated_at = now()
    session.add(promo)
    await session.flush()
    logger.info("promo.toggled", extra={"code": promo.code, "is_active": promo.is_active})
    return promo


async def delete_promo(session: AsyncSession, code: str) -> None:
    promo = await get_promo_or_404(session, code)
    await session.delete(promo)
    await session.flush()
    logger.info("promo.deleted", extra={"code": promo.code})
