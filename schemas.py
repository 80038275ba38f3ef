"""
Database Schemas for the Storefront

Each Pydantic model below the first divider represents a collection in MongoDB.
Collection name is the lowercase of the class name:

- User -> "user"
- Product -> "product"
- "cartitem" rows (user_id, product_id, quantity) are written by an upsert in the cart routes
- Review -> "review"
- Order -> "order" (OrderItem rows are embedded in their order)

Request and response payloads of the API follow after the second divider.
"""
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, HttpUrl, field_validator


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


# Statuses an admin may set by hand; pending is only ever set at checkout.
ADMIN_ORDER_STATUSES = {OrderStatus.PROCESSING.value, OrderStatus.COMPLETED.value, OrderStatus.CANCELLED.value}


# ----- Collections -----

class User(BaseModel):
    username: str = Field(..., description="Display name")
    email: EmailStr = Field(..., description="Email address, unique")
    password_hash: str = Field(..., description="BCrypt password hash")
    role: Role = Field(Role.USER, description="user or admin")


class Product(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: float = Field(..., ge=0, strict=True, allow_inf_nan=False, description="Price in dollars")
    image: Optional[HttpUrl] = Field(None, description="Primary image URL")
    categories: List[str] = []

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v):
        if not v.strip():
            raise ValueError("Name is required")
        return v.strip()


class Review(BaseModel):
    user_id: str
    product_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


class OrderItem(BaseModel):
    id: str = Field(..., description="Line id within the order")
    product_id: str
    name: str
    image: Optional[str] = None
    quantity: int = Field(..., ge=1)
    price_at_time: float = Field(..., ge=0, description="Unit price when the order was placed")


class Address(BaseModel):
    line1: Optional[str] = None
    line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None


class ShippingAddress(BaseModel):
    name: Optional[str] = None
    address: Optional[Address] = None


class Order(BaseModel):
    user_id: str
    items: List[OrderItem]
    total_amount: float = Field(..., ge=0)
    status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    stripe_session_id: Optional[str] = None
    payment_intent_id: Optional[str] = None
    shipping_address: ShippingAddress = Field(default_factory=ShippingAddress)


# ----- API payloads -----

class UserOut(BaseModel):
    id: str
    username: str
    email: EmailStr
    role: Role


class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=72)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ProfileUpdate(BaseModel):
    username: Optional[str] = Field(None, min_length=3, max_length=50)
    email: Optional[EmailStr] = None


class ProductCreate(Product):
    pass


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0, strict=True, allow_inf_nan=False)
    image: Optional[HttpUrl] = None
    categories: Optional[List[str]] = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v):
        if v is None or not v.strip():
            raise ValueError("Name is required")
        return v.strip()

    @field_validator("price")
    @classmethod
    def price_present(cls, v):
        if v is None:
            raise ValueError("Price is required")
        return v

    @field_validator("categories")
    @classmethod
    def categories_present(cls, v):
        if v is None:
            raise ValueError("Categories must be a list")
        return v


class CartItemCreate(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class CartItemUpdate(BaseModel):
    quantity: int = Field(..., ge=1, description="Must be a positive integer")


class ReviewCreate(BaseModel):
    product_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


class RoleUpdate(BaseModel):
    role: str


class StatusUpdate(BaseModel):
    status: str
