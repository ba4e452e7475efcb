"""
Database Schemas for the Vireon store

Each Pydantic model represents a collection in MongoDB.
Collection name is the lowercase of the class name by default.

We store:
- User (profile, role, addresses)
- Product, Category
- Cart (one per user)
- Order (line items frozen at checkout)
- Wishlist, Review, Notification
"""

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, EmailStr, Field, model_validator

Role = Literal["user", "admin"]
OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]
PaymentStatus = Literal["pending", "processing", "paid", "failed", "refunded"]
PaymentMethod = Literal["credit_card", "debit_card", "paypal"]
NotificationType = Literal["order", "payment", "order_status", "stock_alert", "price_drop", "shipping_update"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(ObjectId())


class Address(BaseModel):
    id: str = Field(default_factory=new_id)
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip_code: str = Field(..., min_length=1)
    country: str = "United States"
    is_default: bool = False


class Preferences(BaseModel):
    newsletter: bool = True
    notifications: bool = True


def normalize_addresses(addresses: List[Address]) -> List[Address]:
    """Keep exactly one default address: the first flagged one, else the first."""
    if not addresses:
        return addresses
    if not any(a.is_default for a in addresses):
        addresses[0].is_default = True
    seen_default = False
    for address in addresses:
        if address.is_default:
            if seen_default:
                address.is_default = False
            seen_default = True
    return addresses


class User(BaseModel):
    """
    Users collection schema
    Collection name: "user"
    """
    name: str = Field(..., min_length=1, description="Full name")
    email: EmailStr = Field(..., description="Email address, unique")

    # Stored in DB, never returned in public responses
    password_hash: str = Field(..., description="Bcrypt hash")

    phone: Optional[str] = None
    role: Role = "user"
    addresses: List[Address] = Field(default_factory=list)
    is_active: bool = True
    last_login: Optional[datetime] = None
    preferences: Preferences = Field(default_factory=Preferences)

    @model_validator(mode="after")
    def _one_default_address(self):
        normalize_addresses(self.addresses)
        return self


class Product(BaseModel):
    """
    Products collection schema
    Collection name: "product"
    """
    name: str = Field(..., min_length=1, description="Product name")
    description: str = ""
    price: float = Field(..., ge=0, description="Price in dollars")
    category: str = Field(..., min_length=1)
    stock: int = Field(0, ge=0, description="Available inventory")
    image: str = ""
    rating: float = Field(0, ge=0, le=5)
    rating_count: int = Field(0, ge=0)
    in_stock: bool = False
    featured: bool = False

    @model_validator(mode="after")
    def _derive_in_stock(self):
        self.in_stock = self.stock > 0
        return self


class Category(BaseModel):
    """
    Categories collection schema
    Collection name: "category"
    """
    name: str = Field(..., min_length=1)
    slug: str = ""
    description: str = ""
    image: str = ""
    parent: Optional[str] = None
    featured: bool = False
    order: int = 0

    @model_validator(mode="after")
    def _derive_slug(self):
        self.name = self.name.strip()
        self.slug = (self.slug or slugify(self.name)).strip().lower()
        return self


def slugify(name: str) -> str:
    slug = re.sub(r"\s+", "-", name.strip().lower())
    return re.sub(r"[^\w-]", "", slug)


class CartItem(BaseModel):
    id: str = Field(default_factory=new_id)
    product_id: str = Field(..., description="Product id as string")
    quantity: int = Field(1, ge=1)


class Cart(BaseModel):
    """
    Carts collection schema, one per user
    Collection name: "cart"
    """
    user_id: str
    items: List[CartItem] = Field(default_factory=list)
    total: float = 0


class ShippingAddress(BaseModel):
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip_code: str = Field(..., min_length=1)
    country: str = "United States"


class OrderItem(BaseModel):
    """Line item copied from the cart at checkout; never re-read from the product."""
    product_id: str
    name: str
    price: float
    quantity: int
    subtotal: float


class PaymentDetails(BaseModel):
    transaction_id: Optional[str] = None
    payment_date: datetime = Field(default_factory=utcnow)


class Order(BaseModel):
    """
    Orders collection schema
    Collection name: "order"
    """
    user_id: str
    products: List[OrderItem]
    total_amount: float
    shipping_address: ShippingAddress
    payment_method: PaymentMethod = "credit_card"
    notes: Optional[str] = None
    status: OrderStatus = "pending"
    payment_status: PaymentStatus = "pending"
    is_paid: bool = False
    paid_at: Optional[datetime] = None
    payment_details: Optional[PaymentDetails] = None
    is_delivered: bool = False
    delivered_at: Optional[datetime] = None


class Wishlist(BaseModel):
    """
    Wishlists collection schema, one per user
    Collection name: "wishlist"
    """
    user_id: str
    products: List[str] = Field(default_factory=list)


class Review(BaseModel):
    """
    Reviews collection schema
    Collection name: "review"
    """
    user_id: str
    product_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: str = ""


class Notification(BaseModel):
    """
    Notifications collection schema
    Collection name: "notification"
    """
    user_id: str
    title: str
    message: str
    type: NotificationType
    data: Dict[str, Any] = Field(default_factory=dict)
    read: bool = False
