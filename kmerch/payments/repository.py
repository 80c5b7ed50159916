from typing import Optional
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from kmerch.common.utils import now
from kmerch.schema.full_schema import PaymentWebhookEvent


async def get_webhook_event(session: AsyncSession, provider: str, provider_event_id: str) -> Optional[PaymentWebhookEvent]:
    stmt = select(PaymentWebhookEvent).where(PaymentWebhookEvent.provider == provider,
                                             PaymentWebhookEvent.provider_event_id == provider_event_id)
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def mark_webhook_received(session: AsyncSession, provider: str, provider_event_id: Optional[str],
                                payload: Optional[dict], event_type: Optional[str] = None,
                                order_id: Optional[str] = None, last_error: Optional[str] = None) -> PaymentWebhookEvent:
    """Insert the event once per (provider, event id); a replay returns the stored row."""
    if provider_event_id:
        existing = await get_webhook_event(session, provider, provider_event_id)
        if existing is not None:
            return existing

    ev = PaymentWebhookEvent(provider=provider, provider_event_id=provider_event_id, event_type=event_type,
                             order_id=order_id, payload=payload, last_error=last_error, created_at=now())
    session.add(ev)
    try:
        await session.flush()
    except IntegrityError:
        # concurrent delivery of the same event won the insert, nothing else is pending yet
        await session.rollback()
        existing = await get_webhook_event(session, provider, provider_event_id)
        if existing is None:
            raise
        return existing
    return ev


async def mark_webhook_processed(session: AsyncSession, ev_id: int, last_error: Optional[str] = None) -> None:
    stmt = (update(PaymentWebhookEvent)
            .where(PaymentWebhookEvent.id == ev_id)
            .values(processed_at=now(), last_error=last_error))
    await session.execute(stmt)


async def webhook_error_recorded(session: AsyncSession, ev_id: int, last_error: str) -> None:
    stmt = update(PaymentWebhookEvent).where(PaymentWebhookEvent.id == ev_id).values(last_error=last_error)
    await session.execute(stmt)
