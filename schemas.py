"""
Storefront Database Schemas

Each Pydantic model below represents one MongoDB collection. The collection name is the lowercase
class name. Example: class User -> collection "user".

These schemas are used for validation before inserting/updating documents. Cart and order lines
hold copies of product name/price taken at the time they were written, never live references.
"""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

MAX_SECONDARY_IMAGES = 5


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


ROLES = ("user", "admin")
PAYMENT_METHODS = ("credit_card", "cash_on_delivery")


class Address(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    street: str
    city: str
    postal_code: str = Field(..., alias="postalCode")
    country: str


class User(BaseModel):
    username: str
    email: EmailStr
    password_hash: str
    role: str = Field("user", description="user | admin")
    active: bool = True
    address: Optional[Address] = None


class Product(BaseModel):
    name: str = Field(..., min_length=1)
    description: str
    price: float = Field(..., ge=0)
    category: str = Field(..., min_length=1)
    stock: int = Field(0, ge=0)
    featured: bool = False
    image_url: str
    images: List[str] = Field(default_factory=list, max_length=MAX_SECONDARY_IMAGES)


class CartItem(BaseModel):
    product_id: str
    name: str
    price: float  # captured price at add-to-cart time
    quantity: int = Field(1, ge=1)


class Cart(BaseModel):
    user_id: str
    items: List[CartItem] = []
    total: float = 0.0
    version: int = 0


class OrderItem(BaseModel):
    product_id: str
    name: str
    price: float
    quantity: int = Field(..., ge=1)


class Order(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    user_id: str
    items: List[OrderItem]
    total: float
    shipping_address: Address
    payment_method: str = Field(..., description="credit_card | cash_on_delivery")
    payment_details: Optional[Dict[str, Any]] = None
    status: OrderStatus = OrderStatus.PENDING
    checkout_key: str
    stock_committed: bool = False


def items_total(items: List[Dict[str, Any]]) -> float:
    return round(sum(float(i["price"]) * int(i["quantity"]) for i in items), 2)


class Review(BaseModel):
    user_id: str
    product_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: str


class Settings(BaseModel):
    key: str
    value: Any


class CarouselSettings(BaseModel):
    autoPlay: bool = True
    interval: int = 4000
