from typing import Any, Dict
from pydantic import BaseModel, Field
from kmerch.schema.full_schema import CartItem


class CartItemInput(BaseModel):
    product_id: int
    quantity: int = Field(1, ge=1, le=99)


class CartQtyInput(BaseModel):
    quantity: int = Field(..., le=99)   # zero or less removes the item


def serialize_cart_item(item: CartItem) -> Dict[str, Any]:
    return {
        "product_id": item.product_id,
        "name": item.name,
        "price": item.price,
        "image": item.image,
        "quantity": item.quantity,
        "line_total": item.price * item.quantity,
    }
