"""
Database Schemas for E-commerce

Each Pydantic model represents a MongoDB collection.
Collection name is the lowercase of the class name.
Request bodies used by the routes follow the collection models.
"""
from typing import Any, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, EmailStr

ORDER_STATUS_NOT_PROCESSED = "Not Processed"
ORDER_STATUS_PROCESSING = "Processing"
ORDER_STATUS_SHIPPED = "Shipped"
ORDER_STATUS_DELIVERED = "Delivered"
ORDER_STATUS_CANCELLED = "Cancelled"

ORDER_STATUS_OPTIONS = (
    ORDER_STATUS_NOT_PROCESSED,
    ORDER_STATUS_PROCESSING,
    ORDER_STATUS_SHIPPED,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_CANCELLED,
)

OrderStatus = Literal["Not Processed", "Processing", "Shipped", "Delivered", "Cancelled"]

ROLE_USER = 0
ROLE_ADMIN = 1


class User(BaseModel):
    name: str
    email: EmailStr
    password: str  # bcrypt hash
    phone: str
    address: str
    answer: str
    role: int = ROLE_USER


class Category(BaseModel):
    name: str
    slug: str


class Product(BaseModel):
    name: str
    slug: str
    description: str
    price: float = Field(..., ge=0)
    category: Any  # ObjectId of the category
    quantity: int = Field(..., ge=0)
    shipping: bool = False


class Order(BaseModel):
    products: List[Any]  # cart entries as submitted at checkout
    payment: dict = {}
    buyer: Any  # ObjectId of the user
    status: OrderStatus = ORDER_STATUS_NOT_PROCESSED


# Request bodies. Fields are optional so the routes can report which one is missing.

class RegisterRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    answer: Optional[str] = None


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class ForgotPasswordRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: Optional[str] = None
    answer: Optional[str] = None
    new_password: Optional[str] = Field(None, alias="newPassword")


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    password: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class CategoryIn(BaseModel):
    name: Optional[str] = None


class ProductFilters(BaseModel):
    checked: List[str] = []
    radio: List[float] = []


class CheckoutRequest(BaseModel):
    nonce: Optional[str] = None
    cart: Optional[Any] = None


class OrderStatusUpdate(BaseModel):
    status: Optional[str] = None
