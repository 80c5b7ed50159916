import enum
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy import JSON, BigInteger, Boolean, Float, ForeignKey, Integer, Text, UniqueConstraint
from sqlmodel import Column, Field, SQLModel, String
from uuid6 import uuid7
from kmerch.common.utils import now
from kmerch.db.types import UTCDateTime


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    OUT_FOR_DELIVERY = "out_for_delivery"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"

class PaymentMethod(str, enum.Enum):
    ONLINE = "online"   # hosted payment page (gcash / maya)
    COD = "cod"

class RefundStatus(str, enum.Enum):
    NONE = "none"
    REQUESTED = "requested"
    APPROVED = "approved"
    REJECTED = "rejected"

class RefundMethod(str, enum.Enum):
    GCASH = "gcash"
    MAYA = "maya"

class PickupStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

class ProductStatus(str, enum.Enum):
    AVAILABLE = "available"
    HIDDEN = "hidden"


def new_public_id() -> str:
    return str(uuid7())


class Product(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(sa_column=Column(String(200), nullable=False))
    price: int = Field(sa_column=Column(BigInteger, nullable=False))  # centavos
    original_price: Optional[int] = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    stock: int = Field(default=0, sa_column=Column(Integer, nullable=False))
    image: Optional[str] = Field(default=None, sa_column=Column(String(1024), nullable=True))
    category: str = Field(default="merch", sa_column=Column(String(64), nullable=False, index=True))
    kpop_group: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True, index=True))
    description: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    status: str = Field(default=ProductStatus.AVAILABLE.value, sa_column=Column(String(32), nullable=False))
    is_sale: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    is_pre_order: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False, index=True))
    release_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime, nullable=True))
    created_at: datetime = Field(default_factory=now, sa_column=Column(UTCDateTime, nullable=False, default=now))
    updated_at: datetime = Field(default_factory=now, sa_column=Column(UTCDateTime, nullable=False, default=now, onupdate=now))


class CartItem(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(sa_column=Column(String(128), nullable=False, index=True))
    product_id: int = Field(sa_column=Column(Integer, ForeignKey("product.id", ondelete="CASCADE"), nullable=False))
    # snapshot of the product when it was first added
    name: str = Field(sa_column=Column(String(200), nullable=False))
    price: int = Field(sa_column=Column(BigInteger, nullable=False))
    image: Optional[str] = Field(default=None, sa_column=Column(String(1024), nullable=True))
    quantity: int = Field(default=1, sa_column=Column(Integer, nullable=False))
    created_at: datetime = Field(default_factory=now, sa_column=Column(UTCDateTime, nullable=False, default=now))
    updated_at: datetime = Field(default_factory=now, sa_column=Column(UTCDateTime, nullable=False, default=now, onupdate=now))

    __table_args__ = (UniqueConstraint("user_id", "product_id", name="uq_cart_user_product"),)


class WishlistItem(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(sa_column=Column(String(128), nullable=False, index=True))
    product_id: int = Field(sa_column=Column(Integer, ForeignKey("product.id", ondelete="CASCADE"), nullable=False))
    created_at: datetime = Field(default_factory=now, sa_column=Column(UTCDateTime, nullable=False, default=now))

    __table_args__ = (UniqueConstraint("user_id", "product_id", name="uq_wishlist_user_product"),)


class ProductReview(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    product_id: int = Field(sa_column=Column(Integer, ForeignKey("product.id", ondelete="CASCADE"), nullable=False, index=True))
    # stored lowercased, one review per reviewer email and product
    user_email: str = Field(sa_column=Column(String(320), nullable=False))
    user_name: str = Field(sa_column=Column(String(128), nullable=False))
    rating: int = Field(sa_column=Column(Integer, nullable=False))
    review: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(default_factory=now, sa_column=Column(UTCDateTime, nullable=False, default=now))

    __table_args__ = (UniqueConstraint("product_id", "user_email", name="uq_review_product_email"),)


class PreOrderRequest(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(sa_column=Column(String(128), nullable=False, index=True))
    product_id: int = Field(sa_column=Column(Integer, ForeignKey("product.id", ondelete="CASCADE"), nullable=False))
    user_email: str = Field(sa_column=Column(String(320), nullable=False))
    user_name: str = Field(sa_column=Column(String(128), nullable=False))
    # snapshot of the product when the request was placed
    product_name: str = Field(sa_column=Column(String(200), nullable=False))
    product_image: Optional[str] = Field(default=None, sa_column=Column(String(1024), nullable=True))
    product_price: int = Field(sa_column=Column(BigInteger, nullable=False))
    release_at: datetime = Field(sa_column=Column(UTCDateTime, nullable=False))
    added_to_cart: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    pre_ordered_at: datetime = Field(default_factory=now, sa_column=Column(UTCDateTime, nullable=False, default=now))

    __table_args__ = (UniqueConstraint("user_id", "product_id", "release_at", name="uq_preorder_user_product_slot"),)


class Promo(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    code: str = Field(sa_column=Column(String(32), nullable=False, unique=True, index=True))
    name: str = Field(sa_column=Column(String(128), nullable=False))
    discount: int = Field(sa_column=Column(Integer, nullable=False))  # percent
    max_discount: Optional[int] = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    min_order: Optional[int] = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    max_uses: Optional[int] = Field(default=None, sa_column=Column(Integer, nullable=True))
    used_count: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    starts_at: datetime = Field(sa_column=Column(UTCDateTime, nullable=False))
    ends_at: datetime = Field(sa_column=Column(UTCDateTime, nullable=False))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    created_at: datetime = Field(default_factory=now, sa_column=Column(UTCDateTime, nullable=False, default=now))
    updated_at: datetime = Field(default_factory=now, sa_column=Column(UTCDateTime, nullable=False, default=now, onupdate=now))


class Orders(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: str = Field(sa_column=Column(String(40), nullable=False, unique=True, index=True))

    # customer is referenced by raw email, not a foreign key
    email: str = Field(sa_column=Column(String(320), nullable=False, index=True))
    customer_name: str = Field(sa_column=Column(String(128), nullable=False))
    phone: Optional[str] = Field(default=None, sa_column=Column(String(32), nullable=True))
    shipping_address: str = Field(sa_column=Column(Text, nullable=False))
    notes: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))

    # frozen line item snapshot, never re-derived from products
    items: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))

    subtotal: int = Field(default=0, sa_column=Column(BigInteger, nullable=False))
    shipping_fee: int = Field(default=0, sa_column=Column(BigInteger, nullable=False))
    discount_amount: int = Field(default=0, sa_column=Column(BigInteger, nullable=False))
    discount_percent: Optional[int] = Field(default=None, sa_column=Column(Integer, nullable=True))
    promo_code: Optional[str] = Field(default=None, sa_column=Column(String(32), nullable=True))
    promo_name: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    total: int = Field(default=0, sa_column=Column(BigInteger, nullable=False))
    final_total: Optional[int] = Field(default=None, sa_column=Column(BigInteger, nullable=True))  # only with a promo

    order_status: str = Field(default=OrderStatus.PENDING.value, sa_column=Column(String(32), nullable=False, index=True))
    cancel_reason: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))

    payment_method: str = Field(default=PaymentMethod.COD.value, sa_column=Column(String(32), nullable=False))
    payment_status: str = Field(default=PaymentStatus.PENDING.value, sa_column=Column(String(16), nullable=False))
    payment_provider_method: Optional[str] = Field(default=None, sa_column=Column(String(32), nullable=True))  # GCash / Maya / Card
    payment_link_id: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True, index=True))
    payment_link_url: Optional[str] = Field(default=None, sa_column=Column(String(1024), nullable=True))
    paid_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime, nullable=True))

    rider_id: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True, index=True))
    rider_name: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))

    confirmed_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime, nullable=True))
    shipped_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime, nullable=True))
    out_for_delivery_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime, nullable=True))
    delivery_confirmed_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime, nullable=True))
    cancelled_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime, nullable=True))

    delivery_otp: Optional[str] = Field(default=None, sa_column=Column(String(8), nullable=True))
    delivery_otp_verified: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    delivery_proof_photo: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))

    refund_status: str = Field(default=RefundStatus.NONE.value, sa_column=Column(String(16), nullable=False))
    refund_photo_id: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    refund_method: Optional[str] = Field(default=None, sa_column=Column(String(16), nullable=True))
    refund_account_name: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    refund_account_number: Optional[str] = Field(default=None, sa_column=Column(String(16), nullable=True))
    refund_comment: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    refund_admin_note: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    refund_requested_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime, nullable=True))
    refund_decided_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime, nullable=True))

    created_at: datetime = Field(default_factory=now, sa_column=Column(UTCDateTime, nullable=False, default=now))
    updated_at: datetime = Field(default_factory=now, sa_column=Column(UTCDateTime, nullable=False, default=now, onupdate=now))


class PaymentWebhookEvent(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    provider: str = Field(sa_column=Column(String(64), nullable=False, index=True))
    provider_event_id: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True, index=True))
    event_type: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    order_id: Optional[str] = Field(default=None, sa_column=Column(String(40), nullable=True, index=True))
    payload: Optional[dict] = Field(default=None, sa_column=Column(JSON, nullable=True))
    last_error: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    processed_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime, nullable=True, index=True))
    created_at: datetime = Field(default_factory=now, sa_column=Column(UTCDateTime, nullable=False, default=now))

    __table_args__ = (UniqueConstraint("provider", "provider_event_id", name="uq_webhook_provider_event"),)


class PickupRequest(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: str = Field(sa_column=Column(String(40), ForeignKey("orders.order_id", ondelete="CASCADE"), nullable=False, index=True))
    rider_id: str = Field(sa_column=Column(String(128), nullable=False, index=True))
    rider_name: str = Field(sa_column=Column(String(128), nullable=False))
    status: str = Field(default=PickupStatus.PENDING.value, sa_column=Column(String(16), nullable=False, index=True))
    requested_at: datetime = Field(default_factory=now, sa_column=Column(UTCDateTime, nullable=False, default=now))
    decided_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime, nullable=True))


class RiderLocation(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: str = Field(sa_column=Column(String(40), ForeignKey("orders.order_id", ondelete="CASCADE"), nullable=False, unique=True))
    rider_id: str = Field(sa_column=Column(String(128), nullable=False, index=True))
    lat: float = Field(sa_column=Column(Float, nullable=False))
    lng: float = Field(sa_column=Column(Float, nullable=False))
    accuracy: Optional[float] = Field(default=None, sa_column=Column(Float, nullable=True))
    heading: Optional[float] = Field(default=None, sa_column=Column(Float, nullable=True))
    speed: Optional[float] = Field(default=None, sa_column=Column(Float, nullable=True))
    is_tracking: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    updated_at: datetime = Field(default_factory=now, sa_column=Column(UTCDateTime, nullable=False, default=now, onupdate=now))


class StoredFile(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    storage_id: str = Field(default_factory=new_public_id, sa_column=Column(String(64), nullable=False, unique=True, index=True))
    content_type: str = Field(sa_column=Column(String(64), nullable=False))
    size_bytes: int = Field(sa_column=Column(BigInteger, nullable=False))
    path: str = Field(sa_column=Column(String(1024), nullable=False))
    created_at: datetime = Field(default_factory=now, sa_column=Column(UTCDateTime, nullable=False, default=now))
