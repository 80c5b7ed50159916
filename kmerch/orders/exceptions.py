from typing import Any, Dict, Optional


class OrderError(Exception):
    """Base for every typed failure of the order lifecycle and checkout.

    `code` is stable and machine readable, `message` is safe to show to the customer.
    """
    code = "ORDER_ERROR"
    status_code = 400
    retryable = False
    default_message = "Order operation failed"

    def __init__(self, message: Optional[str] = None, **extra: Any):
        self.message = message or self.default_message
        self.extra: Dict[str, Any] = extra
        super().__init__(self.message)


class InvalidState(OrderError):
    code = "INVALID_STATE"
    status_code = 409
    default_message = "This action is not available for the order's current status"


class InvalidTransition(OrderError):
    code = "INVALID_TRANSITION"
    status_code = 409
    default_message = "Order status cannot be changed that way"


class RefundWindowExpired(OrderError):
    code = "REFUND_WINDOW_EXPIRED"
    status_code = 409
    default_message = "Refund window expired - no longer eligible"


class RefundAlreadyExists(OrderError):
    code = "REFUND_ALREADY_EXISTS"
    status_code = 409
    default_message = "A refund has already been requested for this order"


class InvalidInput(OrderError):
    code = "INVALID_INPUT"
    status_code = 422
    default_message = "Invalid input"


class OrderNotFound(OrderError):
    code = "NOT_FOUND"
    status_code = 404
    default_message = "Order not found"


class StorageUnavailable(OrderError):
    code = "STORAGE_UNAVAILABLE"
    status_code = 503
    retryable = True
    default_message = "Something went wrong, please try again"


class OutOfStock(OrderError):
    code = "OUT_OF_STOCK"
    status_code = 409
    default_message = "Some items are out of stock"


class PromoRejected(OrderError):
    code = "PROMO_REJECTED"
    status_code = 422
    default_message = "Invalid promo code."


class PaymentUnavailable(OrderError):
    code = "PAYMENT_UNAVAILABLE"
    status_code = 502
    retryable = True
    default_message = "Payment could not be started, please try again"
