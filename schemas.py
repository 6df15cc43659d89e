"""
Database Schemas

MongoDB collection schemas defined as Pydantic models.
These schemas are used for data validation before documents are written.

Each Pydantic model represents a collection in the database.
Model name is converted to lowercase for the collection name:
- User -> "user" collection
- Product -> "product" collection
- Order -> "order" collection
"""

from datetime import datetime
from typing import Annotated, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

PENDING = "Pending"
CONFIRMED = "Confirmed"
SHIPPED = "Shipped"
DELIVERED = "Delivered"
CANCELLED = "Cancelled"

ORDER_STATUSES = (PENDING, CONFIRMED, SHIPPED, DELIVERED, CANCELLED)
CANCELLABLE_STATUSES = (PENDING, CONFIRMED)

# Status -> timestamp field stamped when an order enters that status
STATUS_TIMESTAMPS = {
    CONFIRMED: "confirmed_at",
    SHIPPED: "shipped_at",
    DELIVERED: "delivered_at",
    CANCELLED: "cancelled_at",
}

OrderStatus = Literal["Pending", "Confirmed", "Shipped", "Delivered", "Cancelled"]
PaymentStatus = Literal["Pending", "Completed", "Failed"]
Quantity = Annotated[int, Field(ge=0)]


def check_size_label(size) -> str:
    """Size labels double as document field paths, so they must be path-safe."""
    if isinstance(size, float) and size.is_integer():
        size = int(size)
    label = str(size).strip()
    if not label:
        raise ValueError("size label must not be empty")
    if "." in label or label.startswith("$"):
        raise ValueError(f"invalid size label: {label!r}")
    return label


class User(BaseModel):
    """
    Users collection schema
    Collection name: "user"
    """
    username: str = Field(..., min_length=1, max_length=64)
    email: str = Field(..., description="Email address, unique")
    password_hash: str = Field(..., description="BCrypt hash of the user's password")
    is_admin: bool = Field(False, description="Admin privileges")


class Product(BaseModel):
    """
    Products collection schema
    Collection name: "product"
    """
    brand: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: Optional[str] = Field(None, description="Product description")
    price: float = Field(..., ge=0, description="Price in dollars")
    image_url: str = Field(..., description="Image URL")
    category: str = Field(..., min_length=1)
    sizes: Dict[str, Quantity] = Field(..., description="Size label -> quantity in stock")

    @field_validator("sizes", mode="before")
    @classmethod
    def clean_size_labels(cls, value):
        if isinstance(value, dict):
            return {check_size_label(k): v for k, v in value.items()}
        return value


class OrderItem(BaseModel):
    """Line item snapshot, captured when the order is placed"""
    product: str = Field(..., description="Product id")
    name: str
    image_url: str
    price: float = Field(..., ge=0, description="Unit price")
    size: str
    quantity: int = Field(..., ge=1)

    @field_validator("size", mode="before")
    @classmethod
    def clean_size(cls, value):
        return check_size_label(value)


class ShippingAddress(BaseModel):
    address: str
    city: str
    postal_code: str
    country: str


class PaymentDetails(BaseModel):
    method: str
    transaction_id: str
    status: PaymentStatus = "Pending"


class Order(BaseModel):
    """
    Orders collection schema
    Collection name: "order"

    total_price is always derived from order_items; any value passed in is
    overwritten.
    """
    user: str = Field(..., description="Owner user id")
    order_items: List[OrderItem] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    payment_details: PaymentDetails
    discount: float = Field(0, ge=0)
    total_price: float = Field(0, ge=0)
    order_status: OrderStatus = PENDING
    confirmed_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @model_validator(mode="after")
    def calculate_total_price(self):
        self.total_price = calculate_total(self.order_items)
        return self


def calculate_total(items) -> float:
    """Sum of unit price times quantity over line items (models or dicts)."""
    total = 0
    for item in items:
        if isinstance(item, dict):
            total += item["price"] * item["quantity"]
        else:
            total += item.price * item.quantity
    return total
