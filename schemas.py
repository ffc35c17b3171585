"""
Database Schemas for the Marketplace

Each Pydantic model corresponds to a MongoDB collection (snake_cased class name).

Collections:
- user
- product
- purchase_request
- order
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

ORDER_STATUSES = ("pending", "completed", "cancelled")

# ---------- Core Domain Schemas ----------

class User(BaseModel):
    email: EmailStr = Field(..., description="Login email, stored lower-cased")
    password_hash: str = Field(..., description="Hashed password (bcrypt)")
    display_name: str
    first_name: str
    last_name: str
    photo_url: Optional[str] = None
    avatar: Optional[str] = None
    phone: Optional[str] = None
    location: str = Field("Not specified", description="City or region")
    bio: Optional[str] = Field(None, max_length=500)
    verified: bool = False
    role: Literal["user", "admin"] = "user"
    rating: float = Field(5.0, ge=0, le=5)
    total_sales: int = 0
    total_purchases: int = 0


class Product(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    price: float = Field(..., ge=0)
    category: str
    image_url: Optional[str] = None
    stock: int = Field(1, ge=0)
    seller_id: str = Field(..., description="Owner user id (stringified ObjectId)")


class BuyerContact(BaseModel):
    email: Optional[str] = None
    phone: Optional[str] = None


class PurchaseRequest(BaseModel):
    product_id: str
    buyer_id: str
    seller_id: str = Field(..., description="Snapshot of the product's seller at creation")
    message: Optional[str] = Field(None, max_length=500)
    offered_price: float = Field(..., ge=0)
    status: Literal["pending", "accepted", "rejected", "completed"] = "pending"
    buyer_contact: BuyerContact = Field(default_factory=BuyerContact)


class OrderItem(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0, description="Unit price read from the product at order time")


class ShippingAddress(BaseModel):
    address: str
    city: str
    postal_code: str
    country: str


class Order(BaseModel):
    user_id: str
    items: List[OrderItem]
    total_amount: float = Field(..., ge=0)
    status: Literal["pending", "completed", "cancelled"] = "pending"
    shipping_address: ShippingAddress


# ---------- Request/Response DTOs ----------

class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    display_name: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None

class LoginRequest(BaseModel):
    email: EmailStr
    password: str

class RefreshRequest(BaseModel):
    refresh_token: str

class ProfileUpdate(BaseModel):
    display_name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    photo_url: Optional[str] = None
    avatar: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    bio: Optional[str] = Field(None, max_length=500)

class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    price: float = Field(..., ge=0)
    category: str
    image_url: Optional[str] = None
    stock: int = Field(1, ge=0)

class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = None
    image_url: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)

class PurchaseRequestCreate(BaseModel):
    product_id: str
    offered_price: float = Field(..., ge=0)
    message: Optional[str] = Field(None, max_length=500)
    buyer_contact: Optional[BuyerContact] = None

class StatusUpdate(BaseModel):
    # allowed values depend on the resource, checked by the handler
    status: str

class OrderItemIn(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)

class OrderCreate(BaseModel):
    items: List[OrderItemIn]
    shipping_address: ShippingAddress
