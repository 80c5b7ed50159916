from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator, Callable, List, Optional, Tuple
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from kmerch.common.retries import is_recoverable_exception
from kmerch.common.utils import now
from kmerch.config.settings import config_settings
from kmerch.orders.constants import (ACCOUNT_NUMBER_RE, CANCELLABLE_STATUSES, NEXT_STATUS,
                                     ORDER_ID_INSERT_ATTEMPTS, STATUS_TIMESTAMP_FIELD, logger)
from kmerch.orders.events import OrderEventBus
from kmerch.orders.exceptions import (InvalidInput, InvalidState, InvalidTransition, OrderError,
                                      RefundAlreadyExists, RefundWindowExpired, StorageUnavailable)
from kmerch.orders.models import OrderDraft, RefundRequestIn, serialize_order
from kmerch.orders.repository import get_order, get_order_for_update, list_orders, list_orders_by_email
from kmerch.orders.utils import generate_order_id, generate_otp, normalize_account_number, refund_deadline
from kmerch.riders.repository import stop_tracking_for_order
from kmerch.schema.full_schema import (OrderStatus, Orders, PaymentMethod, PaymentStatus,
                                       RefundMethod, RefundStatus)
from kmerch.uploads.repository import stored_file_exists

REFUNDABLE_FROM = frozenset({RefundStatus.NONE.value, RefundStatus.REJECTED.value})
REFUND_DECISIONS = frozenset({RefundStatus.APPROVED.value, RefundStatus.REJECTED.value})


class OrderLifecycle:
    """Validates and applies every state change of an order.

    Each mutating call opens its own transaction, reads the order row under a lock,
    checks its preconditions and writes in that same transaction. A failed precondition
    raises a typed OrderError and nothing is written. Database failures surface as
    StorageUnavailable, which is safe to retry.
    """

    def __init__(self, session_factory: async_sessionmaker, *,
                 events: Optional[OrderEventBus] = None,
                 clock: Callable[[], datetime] = now,
                 otp_factory: Callable[[], str] = generate_otp,
                 order_id_factory: Callable[[], str] = generate_order_id,
                 refund_window: Optional[timedelta] = None):
        self._session_factory = session_factory
        self.events = events
        self.clock = clock
        self._otp_factory = otp_factory
        self._order_id_factory = order_id_factory
        self.refund_window = refund_window or timedelta(hours=config_settings.REFUND_WINDOW_HOURS)

    # ---------------------------------------------------------------- plumbing

    @asynccontextmanager
    async def _locked_order(self, order_id: str, op: str) -> AsyncIterator[Tuple[AsyncSession, Orders]]:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    order = await get_order_for_update(session, order_id)
                    yield session, order
        except SQLAlchemyError as exc:
            raise self._storage_error(exc, op, order_id)

    @asynccontextmanager
    async def _read_session(self, op: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except SQLAlchemyError as exc:
            raise self._storage_error(exc, op, None)

    def _storage_error(self, exc: SQLAlchemyError, op: str, order_id: Optional[str]) -> StorageUnavailable:
        logger.error("order.storage_unavailable",
                     extra={"op": op, "order_id": order_id, "recoverable": is_recoverable_exception(exc)},
                     exc_info=exc)
        err = StorageUnavailable()
        err.__cause__ = exc
        return err

    def _rejected(self, op: str, order: Orders, exc: OrderError) -> OrderError:
        logger.warning(f"order.{op}.rejected",
                       extra={"order_id": order.order_id, "order_status": order.order_status, "code": exc.code})
        return exc

    def _publish(self, order: Orders, event: str) -> None:
        if self.events is None:
            return
        self.events.publish(order.order_id, {
            "event": event,
            "order_id": order.order_id,
            "order_status": order.order_status,
            "payment_status": order.payment_status,
            "refund_status": order.refund_status,
            "at": self.clock().isoformat(),
        })

    def _apply_status(self, order: Orders, target: OrderStatus) -> None:
        order.order_status = target.value
        field = STATUS_TIMESTAMP_FIELD[target]
        if getattr(order, field) is None:
            setattr(order, field, self.clock())

    @staticmethod
    def _coerce_status(value) -> OrderStatus:
        try:
            return OrderStatus(value)
        except ValueError:
            raise InvalidInput(f"Unknown order status '{value}'")

    def serialize(self, order: Orders) -> dict:
        return serialize_order(order, self.clock(), self.refund_window)

    # ---------------------------------------------------------------- reads

    async def get(self, order_id: str) -> Orders:
        async with self._read_session("get") as session:
            return await get_order(session, order_id)

    async def list_for_customer(self, email: str) -> List[Orders]:
        async with self._read_session("list_for_customer") as session:
            return await list_orders_by_email(session, email)

    async def list_all(self, order_status: Optional[str] = None, limit: int = 100, offset: int = 0) -> List[Orders]:
        if order_status is not None:
            order_status = self._coerce_status(order_status).value
        async with self._read_session("list_all") as session:
            return await list_orders(session, order_status, limit=limit, offset=offset)

    # ---------------------------------------------------------------- create

    async def create(self, draft: OrderDraft) -> Orders:
        if not draft.items:
            raise InvalidInput("An order needs at least one item")

        total = draft.subtotal + draft.shipping_fee
        has_promo = bool(draft.promo_code)
        discount = draft.discount_amount if has_promo else 0
        if discount > total:
            raise InvalidInput("Discount cannot exceed the order total")

        for attempt in range(1, ORDER_ID_INSERT_ATTEMPTS + 1):
            created_at = self.clock()
            order = Orders(
                order_id=self._order_id_factory(),
                email=draft.email.strip().lower(),
                customer_name=draft.customer_name.strip(),
                phone=draft.phone,
                shipping_address=draft.shipping_address.strip(),
                notes=draft.notes,
                items=[item.model_dump(mode="json") for item in draft.items],
                subtotal=draft.subtotal,
                shipping_fee=draft.shipping_fee,
                discount_amount=discount,
                discount_percent=draft.discount_percent if has_promo else None,
                promo_code=draft.promo_code if has_promo else None,
                promo_name=draft.promo_name if has_promo else None,
                total=total,
                final_total=total - discount if has_promo else None,
                order_status=OrderStatus.PENDING.value,
                payment_method=PaymentMethod(draft.payment_method).value,
                payment_status=PaymentStatus.PENDING.value,
                refund_status=RefundStatus.NONE.value,
                created_at=created_at,
                updated_at=created_at,
            )
            try:
                async with self._session_factory() as session:
                    async with session.begin():
                        session.add(order)
            except IntegrityError:
                logger.warning("order.id_collision", extra={"order_id": order.order_id, "attempt": attempt})
                continue
            except SQLAlchemyError as exc:
                raise self._storage_error(exc, "create", order.order_id)

            logger.info("order.created", extra={"order_id": order.order_id, "total": total,
                                                "payment_method": order.payment_method})
            self._publish(order, "created")
            return order

        logger.error("order.id_allocation_failed", extra={"attempts": ORDER_ID_INSERT_ATTEMPTS})
        raise StorageUnavailable("Could not place the order, please try again")

    # ---------------------------------------------------------------- transitions

    def _check_transition(self, order: Orders, target: OrderStatus, reason: Optional[str]) -> None:
        current = OrderStatus(order.order_status)
        if target == OrderStatus.CANCELLED:
            if current not in CANCELLABLE_STATUSES:
                raise self._rejected("transition", order, InvalidTransition(
                    f"An order that is {current.value} can no longer be cancelled"))
            if not reason or not reason.strip():
                raise self._rejected("transition", order, InvalidInput("A cancellation reason is required"))
            return
        if NEXT_STATUS.get(current) != target:
            raise self._rejected("transition", order, InvalidTransition(
                f"Cannot move an order from {current.value} to {target.value}"))

    async def transition(self, order_id: str, target, reason: Optional[str] = None) -> Orders:
        target = self._coerce_status(target)
        changed = False
        async with self._locked_order(order_id, "transition") as (session, order):
            if order.order_status != target.value:
                self._check_transition(order, target, reason)
                self._apply_status(order, target)
                if target == OrderStatus.CANCELLED:
                    order.cancel_reason = reason.strip()
                elif target == OrderStatus.COMPLETED:
                    await stop_tracking_for_order(session, order.order_id)
                changed = True

        if changed:
            logger.info("order.transition.applied", extra={"order_id": order_id, "order_status": target.value})
            self._publish(order, "status_changed")
        return order

    async def assign_rider(self, order_id: str, rider_id: str, rider_name: str) -> Orders:
        """Hand a confirmed order to a rider, which ships it."""
        async with self._locked_order(order_id, "assign_rider") as (session, order):
            if order.order_status == OrderStatus.SHIPPED.value and order.rider_id == rider_id:
                return order
            self.ship_with_rider(order, rider_id, rider_name)

        self.rider_assigned(order)
        return order

    def ship_with_rider(self, order: Orders, rider_id: str, rider_name: str) -> None:
        """Apply the rider hand-off to an order locked in the caller's transaction."""
        if order.order_status != OrderStatus.CONFIRMED.value:
            raise self._rejected("assign_rider", order, InvalidState(
                "Only confirmed orders can be handed to a rider"))
        order.rider_id = rider_id
        order.rider_name = rider_name
        self._apply_status(order, OrderStatus.SHIPPED)

    def rider_assigned(self, order: Orders) -> None:
        # call after the hand-off committed
        logger.info("order.rider_assigned", extra={"order_id": order.order_id, "rider_id": order.rider_id})
        self._publish(order, "status_changed")

    async def start_delivery(self, order_id: str, rider_id: str) -> Orders:
        changed = False
        async with self._locked_order(order_id, "start_delivery") as (session, order):
            if order.rider_id != rider_id:
                raise self._rejected("start_delivery", order, InvalidState(
                    "This order is not assigned to you"))
            if order.order_status != OrderStatus.OUT_FOR_DELIVERY.value:
                self._check_transition(order, OrderStatus.OUT_FOR_DELIVERY, None)
                self._apply_status(order, OrderStatus.OUT_FOR_DELIVERY)
                changed = True

        if changed:
            logger.info("order.transition.applied", extra={"order_id": order_id, "order_status": order.order_status})
            self._publish(order, "status_changed")
        return order

    # ---------------------------------------------------------------- delivery otp

    async def generate_delivery_otp(self, order_id: str) -> str:
        async with self._locked_order(order_id, "generate_otp") as (session, order):
            if order.order_status != OrderStatus.OUT_FOR_DELIVERY.value:
                raise self._rejected("generate_otp", order, InvalidState(
                    "A delivery code is only available while the order is out for delivery"))
            if order.delivery_otp is not None:
                return order.delivery_otp
            order.delivery_otp = self._otp_factory()

        logger.info("order.otp_generated", extra={"order_id": order_id})
        self._publish(order, "otp_generated")
        return order.delivery_otp

    async def verify_delivery_otp(self, order_id: str, otp: Optional[str], proof_photo: Optional[str] = None) -> bool:
        submitted = (otp or "").strip()
        async with self._locked_order(order_id, "verify_otp") as (session, order):
            matches = order.delivery_otp is not None and submitted == order.delivery_otp
            if order.order_status == OrderStatus.COMPLETED.value:
                return matches
            if order.order_status != OrderStatus.OUT_FOR_DELIVERY.value:
                raise self._rejected("verify_otp", order, InvalidState(
                    "Delivery can only be confirmed while the order is out for delivery"))
            if not matches:
                logger.warning("order.otp_mismatch", extra={"order_id": order_id})
                return False
            if proof_photo and not await stored_file_exists(session, proof_photo):
                raise self._rejected("verify_otp", order, InvalidInput("Delivery photo was not found"))

            self._apply_status(order, OrderStatus.COMPLETED)
            order.delivery_otp_verified = True
            if proof_photo:
                order.delivery_proof_photo = proof_photo
            await stop_tracking_for_order(session, order.order_id)

        logger.info("order.delivered", extra={"order_id": order_id})
        self._publish(order, "status_changed")
        return True

    # ---------------------------------------------------------------- refunds

    async def request_refund(self, order_id: str, req: RefundRequestIn) -> Orders:
        async with self._locked_order(order_id, "request_refund") as (session, order):
            if order.order_status != OrderStatus.COMPLETED.value:
                raise self._rejected("request_refund", order, InvalidState(
                    "Refunds can only be requested for delivered orders"))

            at = self.clock()
            deadline = refund_deadline(order, self.refund_window)
            if deadline is None or not at < deadline:
                raise self._rejected("request_refund", order, RefundWindowExpired())

            if order.refund_status not in REFUNDABLE_FROM:
                raise self._rejected("request_refund", order, RefundAlreadyExists(
                    f"A refund for this order is already {order.refund_status}"))

            method = (req.method or "").strip().lower()
            account_name = (req.account_name or "").strip()
            account_number = normalize_account_number(req.account_number)
            if not req.photo_id:
                raise self._rejected("request_refund", order, InvalidInput("A proof photo is required"))
            if method not in {m.value for m in RefundMethod}:
                raise self._rejected("request_refund", order, InvalidInput("Refund method must be gcash or maya"))
            if not account_name:
                raise self._rejected("request_refund", order, InvalidInput("Account name is required"))
            if not ACCOUNT_NUMBER_RE.match(account_number):
                raise self._rejected("request_refund", order, InvalidInput(
                    "Account number must be 10 to 11 digits"))
            if not await stored_file_exists(session, req.photo_id):
                raise self._rejected("request_refund", order, InvalidInput("Proof photo was not found"))

            order.refund_status = RefundStatus.REQUESTED.value
            order.refund_photo_id = req.photo_id
            order.refund_method = method
            order.refund_account_name = account_name
            order.refund_account_number = account_number
            order.refund_comment = (req.comment or "").strip() or None
            order.refund_admin_note = None
            order.refund_decided_at = None
            order.refund_requested_at = at

        logger.info("order.refund_requested", extra={"order_id": order_id, "refund_method": method})
        self._publish(order, "refund_requested")
        return order

    async def decide_refund(self, order_id: str, decision: str, admin_note: Optional[str] = None) -> Orders:
        decision = (decision or "").strip().lower()
        if decision not in REFUND_DECISIONS:
            raise InvalidInput("Decision must be approved or rejected")

        async with self._locked_order(order_id, "decide_refund") as (session, order):
            if order.refund_status != RefundStatus.REQUESTED.value:
                raise self._rejected("decide_refund", order, InvalidState(
                    "There is no pending refund request for this order"))
            order.refund_status = decision
            order.refund_admin_note = (admin_note or "").strip() or None
            order.refund_decided_at = self.clock()

        logger.info("order.refund_decided", extra={"order_id": order_id, "decision": decision})
        self._publish(order, "refund_decided")
        return order

    # ---------------------------------------------------------------- payment bookkeeping

    async def attach_payment_link(self, order_id: str, link_id: str, url: str) -> Orders:
        async with self._locked_order(order_id, "attach_payment_link") as (session, order):
            order.payment_link_id = link_id
            order.payment_link_url = url
        logger.info("order.payment_link_attached", extra={"order_id": order_id})
        return order

    async def mark_paid(self, order_id: str, provider_method: Optional[str] = None,
                        paid_at: Optional[datetime] = None) -> Tuple[Orders, bool]:
        """Idempotent. Does not confirm the order, that stays an admin action."""
        async with self._locked_order(order_id, "mark_paid") as (session, order):
            if order.payment_status == PaymentStatus.PAID.value:
                return order, False
            if order.order_status == OrderStatus.CANCELLED.value:
                logger.warning("order.paid_after_cancel", extra={"order_id": order_id})
            order.payment_status = PaymentStatus.PAID.value
            order.paid_at = paid_at or self.clock()
            if provider_method:
                order.payment_provider_method = provider_method

        logger.info("order.paid", extra={"order_id": order_id, "provider_method": provider_method})
        self._publish(order, "paid")
        return order, True
