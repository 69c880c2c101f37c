"""
Database Schemas for the organic storefront

Each Pydantic model represents a MongoDB collection. The collection name is the
lowercased class name. Addresses and order items are embedded documents.
"""
from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class OrderStatus(str, Enum):
    PLACED = "placed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    PAYMENT_PENDING = "payment_pending"
    PAYMENT_FAILED = "payment_failed"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    # cash on delivery, collected outside this system
    UNPAID = "unpaid"


class PaymentMethod(str, Enum):
    COD = "cod"
    ONLINE = "online"


class AuthOutcome(str, Enum):
    EXISTING = "existing"
    REACTIVATED = "reactivated"
    NEW = "new"


TERMINAL_PAYMENT_STATUSES = (PaymentStatus.PAID.value, PaymentStatus.FAILED.value)


class Address(BaseModel):
    address_id: int = Field(..., description="Millisecond timestamp at creation")
    address_name: str = Field(..., description="Home, Office, ...")
    address_lines: str
    landmark: str = ""
    pincode: str
    phone_number: str
    branch_code: str = ""
    branch_name: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    formatted_address: Optional[str] = None
    place_id: Optional[str] = None


class User(BaseModel):
    uid: str
    display_name: str = Field(..., description="Full name")
    phone_number: str = Field(..., description="E.164 phone number")
    role: Literal["customer", "admin"] = "customer"
    is_deactivated: bool = False
    is_new_customer: bool = True
    keywords: List[str] = []
    addresses: List[Address] = []
    reactivated_at: Optional[datetime] = None
    deactivated_at: Optional[datetime] = None


class Product(BaseModel):
    name: str
    description: str = ""
    category_ids: List[str] = []
    price: float = Field(..., ge=0, description="Unit price in rupees")
    mrp: Optional[float] = Field(None, ge=0)
    unit: str = Field("kg", description="Selling unit")
    image: Optional[str] = None
    min_quantity: int = Field(1, ge=1)
    max_quantity: int = Field(100, ge=1)
    status: Literal["active", "inActive"] = "active"
    is_pre_order: bool = False
    branch_code: str = "MAIN"


class Pincode(BaseModel):
    pincode: str
    area_name: str
    branch_code: str
    branch_name: str
    delivery_charge: float = Field(0, ge=0)


class Coupon(BaseModel):
    code: str = Field(..., description="Upper-case coupon code")
    type: Literal["FLAT", "PERCENT"]
    flat_amount: Optional[float] = Field(None, ge=0)
    percent: Optional[float] = Field(None, ge=0, le=100)
    max_discount: Optional[float] = Field(None, ge=0)
    min_cart_total: Optional[float] = Field(None, ge=0)
    is_active: bool = True
    start_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    usage_limit_global: Optional[int] = Field(None, ge=1)
    usage_limit_per_user: Optional[int] = Field(None, ge=1)
    used_count: int = 0


class Redemption(BaseModel):
    code: str
    uid: str
    order_number: int
    discount_amount: float
    branch_code: str = "MAIN"


class CartItem(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)


class OrderItem(BaseModel):
    product_id: str
    name: str
    unit: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0, description="Unit price at purchase time")
    mrp: float = Field(..., ge=0)
    image: Optional[str] = None
    is_pre_order: bool = False


class Order(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    order_number: int
    customer_id: str
    customer_name: str
    phone_number: str
    address_id: int
    address_name: str
    address_lines: str
    address_landmark: str = ""
    address_pincode: str
    address_phone_number: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    branch_code: str = "MAIN"
    items: List[OrderItem]
    sub_total: float = Field(..., ge=0)
    delivery_charge: float = Field(0, ge=0)
    discount: float = Field(0, ge=0)
    grand_total: float = Field(..., ge=0)
    mode_of_payment: PaymentMethod
    status: OrderStatus
    payment_status: PaymentStatus
    coupon_code: Optional[str] = None
    coupon_discount: Optional[float] = None
    payment_id: Optional[str] = None
    razorpay_order_id: Optional[str] = None
    payment_signature: Optional[str] = None
    payment_failure_reason: Optional[str] = None
    delivery_date: Optional[datetime] = None
    retry_of: Optional[str] = Field(None, description="Failed order this one retries")


class OTP(BaseModel):
    phone: str
    code: str
    expires_at: datetime
    attempts: int = 0


class Session(BaseModel):
    token: str
    phone: str
    user_id: Optional[str] = Field(None, description="Unset until a new user completes the profile")
    uid: str


class PaymentLog(BaseModel):
    event: str
    status: str
    order_id: Optional[str] = None
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    amount: Optional[float] = None
    method: Optional[str] = None
    error: Optional[str] = None


class OrderStatusLog(BaseModel):
    order_id: str
    order_number: Optional[int] = None
    customer_id: Optional[str] = None
    payment_status_from: Optional[str] = None
    payment_status_to: Optional[str] = None
    status_from: Optional[str] = None
    status_to: Optional[str] = None
