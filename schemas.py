"""
Database Schemas for the Grocery Store API

Each document model corresponds to one MongoDB collection. Attributes are
snake_case in Python and camelCase on the wire and in storage.
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from bson.objectid import ObjectId
from pydantic import BaseModel, ConfigDict, Field, EmailStr
from pydantic.alias_generators import to_camel

PHONE_PATTERN = r"^\d{10}$"
PINCODE_PATTERN = r"^\d{6}$"
OBJECT_ID_PATTERN = r"^[0-9a-fA-F]{24}$"

DEFAULT_AVATAR = (
    "https://images.pexels.com/photos/1239291/pexels-photo-1239291.jpeg"
    "?auto=compress&cs=tinysrgb&w=400"
)

AddressType = Literal["home", "work", "other"]
OrderStatus = Literal[
    "pending", "confirmed", "preparing", "out_for_delivery", "delivered", "cancelled"
]
PaymentMethod = Literal["cod", "upi", "card", "wallet", "netbanking"]
PaymentStatus = Literal["pending", "completed", "failed", "refunded"]
TransactionType = Literal["payment", "refund", "cashback", "fee"]
TransactionStatus = Literal["completed", "pending", "failed", "cancelled"]
NotificationType = Literal[
    "order", "delivery", "promotion", "rating", "wishlist", "cart", "system", "warning", "success"
]
NotificationPriority = Literal["low", "medium", "high", "urgent"]

ACTIVE_ORDER_STATUSES = ["pending", "confirmed", "preparing", "out_for_delivery"]


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        arbitrary_types_allowed=True,
        str_strip_whitespace=True,
    )


class User(CamelModel):
    name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    phone: str = Field(..., pattern=PHONE_PATTERN)
    password_hash: str
    avatar: str = DEFAULT_AVATAR
    is_kyc_verified: bool = False
    seller_status: Literal["none", "pending", "approved", "rejected"] = "none"
    total_orders: int = Field(0, ge=0)
    total_spent: float = Field(0, ge=0)
    favorites: List[ObjectId] = Field(default_factory=list)
    is_active: bool = True
    is_admin: bool = False
    last_login: Optional[datetime] = None
    default_address_id: Optional[ObjectId] = None


class Coordinates(CamelModel):
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)


class Address(CamelModel):
    user_id: ObjectId
    type: AddressType
    name: str = Field(..., min_length=2, max_length=50)
    phone: str = Field(..., pattern=PHONE_PATTERN)
    address_line1: str = Field(..., min_length=1, max_length=200)
    address_line2: Optional[str] = Field(None, max_length=200)
    landmark: Optional[str] = Field(None, max_length=100)
    city: str = Field(..., min_length=1, max_length=50)
    state: str = Field(..., min_length=1, max_length=50)
    pincode: str = Field(..., pattern=PINCODE_PATTERN)
    coordinates: Optional[Coordinates] = None


class Category(CamelModel):
    name: str = Field(..., min_length=1, max_length=50)
    icon: Optional[str] = Field(None, max_length=100)
    image: Optional[str] = None
    color: str = "#FFFFFF"
    description: Optional[str] = Field(None, max_length=200)
    is_active: bool = True
    sort_order: int = 0


class Product(CamelModel):
    name: str = Field(..., min_length=1, max_length=200)
    price: float = Field(..., ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    images: List[str] = Field(default_factory=list)
    category: ObjectId
    rating: float = Field(0, ge=0, le=5)
    reviews: int = Field(0, ge=0)
    is_flash_sale: bool = False
    unit: Optional[str] = Field(None, max_length=20)
    in_stock: bool = True
    stock_count: int = Field(0, ge=0)
    is_organic: bool = False
    freshness: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    is_active: bool = True
    total_sold: int = Field(0, ge=0)
    view_count: int = Field(0, ge=0)


class OrderItem(CamelModel):
    product_id: ObjectId
    name: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)
    image: Optional[str] = None
    unit: Optional[str] = None
    variant: str = ""


class TrackingStep(CamelModel):
    status: str
    time: datetime
    description: Optional[str] = None
    completed: bool = False
    location: Optional[str] = None


class DeliveryAddress(CamelModel):
    name: str
    phone: str
    address: str
    landmark: Optional[str] = None
    city: str
    state: str
    pincode: str


class Order(CamelModel):
    user_id: ObjectId
    order_number: str
    date: datetime
    status: OrderStatus = "pending"
    items: List[OrderItem] = Field(..., min_length=1)
    total_amount: float = Field(..., ge=0)
    delivery_fee: float = Field(0, ge=0)
    discount: float = Field(0, ge=0)
    final_amount: float = Field(..., ge=0)
    delivery_address: DeliveryAddress
    estimated_delivery: Optional[datetime] = None
    actual_delivery: Optional[datetime] = None
    payment_method: PaymentMethod
    payment_status: PaymentStatus = "pending"
    order_tracking: List[TrackingStep] = Field(default_factory=list)
    can_cancel: bool = True
    can_reorder: bool = False
    can_rate: bool = False
    rating: Optional[int] = Field(None, ge=1, le=5)
    review: Optional[str] = Field(None, max_length=500)
    promo_code: Optional[str] = None
    special_instructions: Optional[str] = Field(None, max_length=200)


class CustomerDetails(CamelModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None


class Breakdown(CamelModel):
    items_total: float = Field(..., ge=0)
    delivery_fee: float = Field(0, ge=0)
    discount: float = Field(0, ge=0)
    final_amount: float = Field(..., ge=0)


class Transaction(CamelModel):
    user_id: ObjectId
    type: TransactionType
    order_id: Optional[ObjectId] = None
    order_number: Optional[str] = None
    amount: float = Field(..., ge=0)
    status: TransactionStatus = "pending"
    payment_method: PaymentMethod
    description: Optional[str] = Field(None, max_length=200)
    timestamp: datetime
    merchant_name: Optional[str] = None
    transaction_id: str
    customer_details: Optional[CustomerDetails] = None
    breakdown: Optional[Breakdown] = None
    refund_amount: Optional[float] = Field(None, ge=0)
    refund_date: Optional[datetime] = None


class Notification(CamelModel):
    user_id: ObjectId
    type: NotificationType
    title: str = Field(..., min_length=1, max_length=100)
    message: str = Field(..., min_length=1, max_length=500)
    priority: NotificationPriority = "medium"
    data: Dict[str, Any] = Field(default_factory=dict)
    is_read: bool = False
