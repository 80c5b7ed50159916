from collections import OrderedDict
from typing import Any, Dict, List, Optional
from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker
from kmerch.cache.product_cache import invalidate_product
from kmerch.cart.repository import remove_cart_items
from kmerch.config.settings import config_settings
from kmerch.notifications.constants import ORDER_CONFIRMATION
from kmerch.notifications.dispatcher import NotificationDispatcher
from kmerch.orders.constants import logger
from kmerch.orders.exceptions import InvalidState, OrderError, OutOfStock, PaymentUnavailable, StorageUnavailable
from kmerch.orders.models import CheckoutIn, LineItem, OrderDraft
from kmerch.orders.services import OrderLifecycle
from kmerch.payments.paymongo import PayMongoClient, PaymentProviderError
from kmerch.products.repository import fetch_products_by_ids, reserve_stock, restore_stock
from kmerch.promos.repository import increment_usage
from kmerch.promos.services import validate_promo
from kmerch.schema.full_schema import OrderStatus, Orders, PaymentMethod, PaymentStatus

PAYMENT_LINK_FAILED_REASON = "payment link creation failed"
INSUFFICIENT_STOCK_REASON = "insufficient stock"


class CheckoutService:
    """Reserve-then-pay saga around OrderLifecycle.create.

    Stock is reserved after the order row exists. If the payment link cannot be issued the
    reservation is released and the order cancelled. Promo usage, cart cleanup and the
    confirmation email are best effort and only ever produce warnings.
    """

    def __init__(self, lifecycle: OrderLifecycle, session_factory: async_sessionmaker,
                 payment_client: PayMongoClient, notifier: Optional[NotificationDispatcher] = None,
                 shipping_fee: Optional[int] = None):
        self.lifecycle = lifecycle
        self._session_factory = session_factory
        self.payment_client = payment_client
        self.notifier = notifier
        self.shipping_fee = config_settings.DEFAULT_SHIPPING_FEE if shipping_fee is None else shipping_fee

    async def checkout(self, payload: CheckoutIn) -> Dict[str, Any]:
        quantities: Dict[int, int] = OrderedDict()
        for item in payload.items:
            quantities[item.product_id] = quantities.get(item.product_id, 0) + item.quantity

        draft = await self._build_draft(payload, quantities)
        order = await self.lifecycle.create(draft)

        await self._reserve(order, quantities)

        warnings: List[str] = []
        if order.payment_method == PaymentMethod.ONLINE.value:
            order = await self._issue_payment_link(order, quantities)

        if order.promo_code:
            await self._record_promo_usage(order, warnings)
        if payload.user_id:
            await self._clear_cart(payload.user_id, list(quantities), order, warnings)
        self._notify(order, warnings)

        logger.info("checkout.completed", extra={"order_id": order.order_id, "warnings": warnings})
        return {
            "order": self.lifecycle.serialize(order),
            "payment_link_url": order.payment_link_url,
            "warnings": warnings,
        }

    async def continue_payment(self, order_id: str) -> Dict[str, Any]:
        """Reuse the issued payment link, or issue a fresh one."""
        order = await self.lifecycle.get(order_id)
        awaiting = (order.payment_method == PaymentMethod.ONLINE.value
                    and order.payment_status != PaymentStatus.PAID.value
                    and order.order_status == OrderStatus.PENDING.value)
        if not awaiting:
            raise InvalidState("This order is not awaiting online payment")
        if order.payment_link_url:
            return {"order_id": order_id, "payment_link_url": order.payment_link_url, "reused": True}

        try:
            link = await self.payment_client.create_checkout_session(order)
        except PaymentProviderError as exc:
            logger.error("checkout.payment_link_failed", extra={"order_id": order_id, "error": str(exc)})
            raise PaymentUnavailable() from exc
        order = await self.lifecycle.attach_payment_link(order_id, link["payment_link_id"], link["payment_link_url"])
        return {"order_id": order_id, "payment_link_url": order.payment_link_url, "reused": False}

    # ------------------------------------------------------------------

    async def _build_draft(self, payload: CheckoutIn, quantities: Dict[int, int]) -> OrderDraft:
        try:
            async with self._session_factory() as session:
                products = await fetch_products_by_ids(session, quantities)
                missing = [pid for pid in quantities if pid not in products]
                if missing:
                    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND,
                                        detail=f"Products not found: {missing}")

                short = [{"product_id": pid, "name": products[pid].name, "requested": qty,
                          "available": products[pid].stock}
                         for pid, qty in quantities.items() if qty > products[pid].stock]
                if short:
                    raise OutOfStock(items=short)

                line_items = [LineItem(product_id=pid, name=products[pid].name, price=products[pid].price,
                                       image=products[pid].image, quantity=qty,
                                       is_pre_order=products[pid].is_pre_order,
                                       release_at=products[pid].release_at)
                              for pid, qty in quantities.items()]
                subtotal = sum(li.price * li.quantity for li in line_items)

                quote = None
                if payload.promo_code and payload.promo_code.strip():
                    quote = await validate_promo(session, payload.promo_code, subtotal, self.lifecycle.clock())
        except SQLAlchemyError as exc:
            logger.error("checkout.snapshot_failed", exc_info=exc)
            raise StorageUnavailable() from exc

        return OrderDraft(
            email=payload.email,
            customer_name=payload.customer_name,
            phone=payload.phone,
            shipping_address=payload.shipping_address,
            notes=payload.notes,
            items=line_items,
            subtotal=subtotal,
            shipping_fee=self.shipping_fee,
            discount_amount=quote["discount_amount"] if quote else 0,
            discount_percent=quote["discount_percent"] if quote else None,
            promo_code=quote["code"] if quote else None,
            promo_name=quote["name"] if quote else None,
            payment_method=payload.payment_method,
        )

    async def _reserve(self, order: Orders, quantities: Dict[int, int]) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    short = await reserve_stock(session, quantities)
                    if short:
                        # raising inside the transaction rolls back the partial decrements
                        raise OutOfStock(items=[{"product_id": pid} for pid in short])
        except OutOfStock:
            logger.warning("checkout.reservation_failed", extra={"order_id": order.order_id})
            await self._cancel(order, INSUFFICIENT_STOCK_REASON)
            raise
        except SQLAlchemyError as exc:
            logger.error("checkout.reservation_storage_error", extra={"order_id": order.order_id}, exc_info=exc)
            await self._cancel(order, INSUFFICIENT_STOCK_REASON)
            raise StorageUnavailable() from exc
        await self._invalidate_products(quantities)

    async def _invalidate_products(self, quantities: Dict[int, int]) -> None:
        # cached product details carry stock
        for product_id in quantities:
            await invalidate_product(product_id)

    async def _issue_payment_link(self, order: Orders, quantities: Dict[int, int]) -> Orders:
        try:
            link = await self.payment_client.create_checkout_session(order)
        except PaymentProviderError as exc:
            logger.error("checkout.payment_link_failed", extra={"order_id": order.order_id, "error": str(exc)})
            await self._compensate(order, quantities)
            raise PaymentUnavailable() from exc
        return await self.lifecycle.attach_payment_link(order.order_id, link["payment_link_id"],
                                                        link["payment_link_url"])

    async def _compensate(self, order: Orders, quantities: Dict[int, int]) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await restore_stock(session, quantities)
        except SQLAlchemyError as exc:
            logger.error("checkout.stock_restore_failed",
                         extra={"order_id": order.order_id, "quantities": quantities}, exc_info=exc)
        else:
            await self._invalidate_products(quantities)
        await self._cancel(order, PAYMENT_LINK_FAILED_REASON)
        logger.info("checkout.compensated", extra={"order_id": order.order_id})

    async def _cancel(self, order: Orders, reason: str) -> None:
        try:
            await self.lifecycle.transition(order.order_id, OrderStatus.CANCELLED, reason=reason)
        except OrderError as exc:
            # the order stays pending and shows up for manual follow-up
            logger.error("checkout.cancel_failed", extra={"order_id": order.order_id, "code": exc.code})

    async def _record_promo_usage(self, order: Orders, warnings: List[str]) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    counted = await increment_usage(session, order.promo_code)
        except SQLAlchemyError as exc:
            logger.error("checkout.promo_usage_failed", extra={"order_id": order.order_id}, exc_info=exc)
            warnings.append("promo_usage_not_recorded")
            return
        if not counted:
            logger.warning("checkout.promo_usage_limit", extra={"order_id": order.order_id,
                                                                "promo_code": order.promo_code})
            warnings.append("promo_usage_limit_reached")

    async def _clear_cart(self, user_id: str, product_ids: List[int], order: Orders, warnings: List[str]) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await remove_cart_items(session, user_id, product_ids)
        except SQLAlchemyError as exc:
            logger.error("checkout.cart_clear_failed", extra={"order_id": order.order_id}, exc_info=exc)
            warnings.append("cart_not_cleared")

    def _notify(self, order: Orders, warnings: List[str]) -> None:
        if self.notifier is None:
            return
        queued = self.notifier.enqueue(ORDER_CONFIRMATION, {
            "to": order.email,
            "name": order.customer_name,
            "order_id": order.order_id,
            "items": order.items,
            "subtotal": order.subtotal,
            "shipping_fee": order.shipping_fee,
            "promo_code": order.promo_code,
            "promo_name": order.promo_name,
            "discount_amount": order.discount_amount,
            "total": order.total,
            "amount_due": order.final_total if order.final_total is not None else order.total,
        })
        if not queued:
            warnings.append("confirmation_email_not_queued")
