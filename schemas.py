"""
Database Schemas for the HVAC storefront

Each Pydantic model corresponds to a MongoDB collection. The collection name is the lowercase of the class name.

Example: class CartItem -> collection "cartitem"

Request payloads accepted by the API live at the bottom of this module.
"""
import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class CouponType(str, Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED_AMOUNT = "FIXED_AMOUNT"
    FREE_SHIPPING = "FREE_SHIPPING"


class AddressType(str, Enum):
    HOME = "HOME"
    OFFICE = "OFFICE"
    OTHER = "OTHER"


class Schema(BaseModel):
    # Enum members are stored as their plain string values.
    model_config = ConfigDict(use_enum_values=True, validate_default=True)


# Core domain models

class User(Schema):
    name: str
    email: EmailStr
    phone: Optional[str] = None
    image: Optional[str] = None
    hashed_password: str
    role: Role = Role.USER
    is_active: bool = True
    is_email_verified: bool = False
    email_verification_otp: Optional[str] = None
    email_verification_expiry: Optional[datetime] = None
    reset_token: Optional[str] = None
    reset_token_expiry: Optional[datetime] = None


class Category(Schema):
    name: str
    slug: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    is_active: bool = True


class Product(Schema):
    name: str
    slug: str
    sku: str
    description: Optional[str] = None
    brand: Optional[str] = None
    image_url: Optional[str] = None
    price: float = Field(..., gt=0)
    mrp: Optional[float] = Field(None, gt=0)
    category_id: str
    specifications: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True
    # Kept in step with approved reviews.
    rating: float = 0.0
    rating_count: int = 0


class Inventory(Schema):
    product_id: str
    stock_quantity: int = Field(0, ge=0)
    reserved_quantity: int = Field(0, ge=0)
    low_stock_threshold: int = Field(5, ge=0)
    version: int = 0


class CartItem(Schema):
    user_id: str
    product_id: str
    quantity: int = Field(1, gt=0)


class WishlistItem(Schema):
    user_id: str
    product_id: str


class Coupon(Schema):
    code: str
    name: str
    description: Optional[str] = None
    type: CouponType
    value: float = Field(..., ge=0)
    min_order_amount: Optional[float] = Field(None, ge=0)
    max_discount_amount: Optional[float] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=0)
    per_user_limit: Optional[int] = Field(1, ge=1)
    used_count: int = 0
    valid_from: datetime
    valid_until: datetime
    is_active: bool = True

    @field_validator("code")
    @classmethod
    def upper_code(cls, v: str) -> str:
        return v.strip().upper()

    @model_validator(mode="after")
    def check_window(self):
        if self.valid_until < self.valid_from:
            raise ValueError("valid_until must not be earlier than valid_from")
        return self


class CouponUsage(Schema):
    coupon_id: str
    user_id: str
    order_id: str


class OrderItem(Schema):
    product_id: str
    name: str
    sku: Optional[str] = None
    quantity: int = Field(..., gt=0)
    price: float = Field(..., ge=0)
    mrp: float = Field(..., ge=0)
    subtotal: float = Field(..., ge=0)


class Order(Schema):
    order_number: str
    user_id: str
    items: List[OrderItem]
    status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_method: str = "RAZORPAY"
    subtotal: float
    total_mrp: float
    total_savings: float
    discount: float = 0.0
    shipping_cost: float
    tax_amount: float
    total_amount: float
    coupon_code: Optional[str] = None
    coupon_id: Optional[str] = None
    shipping_address_id: str
    notes: Optional[str] = None
    inventory_state: str = Field("reserved", description="reserved|committed|released")
    refund_amount: Optional[float] = None


class OrderTracking(Schema):
    order_id: str
    status: OrderStatus
    message: str


class Payment(Schema):
    order_id: str
    user_id: str
    amount: float
    currency: str
    status: PaymentStatus = PaymentStatus.PENDING
    payment_method: str = "RAZORPAY"
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    failure_reason: Optional[str] = None


class Review(Schema):
    user_id: str
    product_id: str
    rating: int = Field(..., ge=1, le=5)
    title: Optional[str] = None
    comment: Optional[str] = None
    is_approved: bool = False
    admin_note: Optional[str] = None


class Address(Schema):
    user_id: str
    type: AddressType = AddressType.HOME
    full_name: str
    mobile: str
    address_line1: str
    address_line2: Optional[str] = None
    city: str
    state: str
    pincode: str
    landmark: Optional[str] = None
    country: str = "India"
    is_default: bool = False


# Request payloads

_PASSWORD_RULES = (
    (r"[A-Z]", "at least one uppercase letter"),
    (r"[a-z]", "at least one lowercase letter"),
    (r"\d", "at least one number"),
    (r"[@$!%*?&]", "at least one special character"),
)


def password_problems(password: str) -> List[str]:
    return [msg for pattern, msg in _PASSWORD_RULES if not re.search(pattern, password)]


class SignupRequest(Schema):
    name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    phone: Optional[str] = None

    @field_validator("name")
    @classmethod
    def letters_only(cls, v: str) -> str:
        if not re.fullmatch(r"[A-Za-z\s]+", v):
            raise ValueError("Name can only contain letters and spaces")
        return v.strip()

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()

    @field_validator("password")
    @classmethod
    def strong_password(cls, v: str) -> str:
        missing = password_problems(v)
        if missing:
            raise ValueError("Password must contain " + ", ".join(missing))
        return v

    @field_validator("phone")
    @classmethod
    def phone_digits(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        digits = re.sub(r"\D", "", v)
        if not 10 <= len(digits) <= 15:
            raise ValueError("Phone number must be 10-15 digits")
        return digits


class LoginRequest(Schema):
    email: str = Field(..., min_length=1, description="Email address or 10 digit mobile number")
    password: str = Field(..., min_length=1, max_length=128)


class ForgotPasswordRequest(Schema):
    email: EmailStr


class ResetPasswordRequest(Schema):
    token: str = Field(..., min_length=1)
    password: str = Field(..., min_length=6, max_length=128)


class VerifyEmailRequest(Schema):
    email: EmailStr
    otp: str = Field(..., pattern=r"^\d{6}$")


class ResendVerificationRequest(Schema):
    email: EmailStr


class ProfileUpdate(Schema):
    name: Optional[str] = Field(None, min_length=2)
    phone: Optional[str] = None
    image: Optional[str] = None


class AddressIn(Schema):
    full_name: str = Field(..., min_length=1)
    mobile: str = Field(..., min_length=10)
    address_line1: str = Field(..., min_length=1)
    address_line2: Optional[str] = None
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    pincode: str = Field(..., min_length=6)
    landmark: Optional[str] = None
    address_type: AddressType = AddressType.HOME
    is_default: bool = False


class CartItemIn(Schema):
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(1, gt=0)


class CartProductIn(Schema):
    product_id: str = Field(..., min_length=1)


class CheckoutLine(Schema):
    product_id: str
    quantity: int = Field(..., gt=0)


class CheckoutValidateRequest(Schema):
    items: List[CheckoutLine]


class CheckoutCalculateRequest(Schema):
    items: List[CheckoutLine]
    shipping_address_id: Optional[str] = None
    coupon_code: Optional[str] = None


class CreateOrderRequest(Schema):
    shipping_address_id: str = Field(..., min_length=1)
    payment_method: str = "RAZORPAY"
    notes: Optional[str] = None
    coupon_code: Optional[str] = None


class ApplyCouponRequest(Schema):
    code: str = Field(..., min_length=1)
    order_amount: float = Field(..., gt=0)


class RemoveCouponRequest(Schema):
    code: str = Field(..., min_length=1)


class CreatePaymentRequest(Schema):
    order_id: str = Field(..., min_length=1)


class GatewayOrderRequest(Schema):
    amount: Optional[float] = None
    currency: Optional[str] = None


class VerifyPaymentRequest(Schema):
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None


class CancelOrderRequest(Schema):
    reason: Optional[str] = None


class ProductIn(Schema):
    name: str = Field(..., min_length=1)
    slug: Optional[str] = None
    sku: Optional[str] = None
    description: Optional[str] = None
    brand: Optional[str] = None
    image_url: Optional[str] = None
    price: float = Field(..., gt=0)
    mrp: Optional[float] = Field(None, gt=0)
    category_id: str = Field(..., min_length=1)
    specifications: Dict[str, Any] = Field(default_factory=dict)
    stock_quantity: int = Field(0, ge=0)
    low_stock_threshold: int = Field(5, ge=0)
    is_active: bool = True


class ProductUpdate(Schema):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    brand: Optional[str] = None
    image_url: Optional[str] = None
    price: Optional[float] = Field(None, gt=0)
    mrp: Optional[float] = Field(None, gt=0)
    category_id: Optional[str] = None
    specifications: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = None

    @model_validator(mode="after")
    def check_required_not_null(self):
        for name in ("name", "price", "category_id", "specifications", "is_active"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self


class CouponIn(Schema):
    code: str = Field(..., min_length=3, max_length=32)
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    type: CouponType
    value: float = Field(..., ge=0)
    min_order_amount: Optional[float] = Field(None, ge=0)
    max_discount_amount: Optional[float] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=1)
    per_user_limit: Optional[int] = Field(1, ge=1)
    valid_from: datetime
    valid_until: datetime
    is_active: bool = True

    @model_validator(mode="after")
    def check_value(self):
        if self.type == CouponType.PERCENTAGE and self.value > 100:
            raise ValueError("Percentage coupons cannot exceed 100")
        return self


class CategoryIn(Schema):
    name: str = Field(..., min_length=1)
    slug: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    is_active: bool = True


class CategoryUpdate(Schema):
    name: Optional[str] = Field(None, min_length=1)
    slug: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    is_active: Optional[bool] = None


class InventoryUpdate(Schema):
    stock_quantity: int = Field(..., ge=0)
    low_stock_threshold: Optional[int] = Field(None, ge=0)


class UserUpdate(Schema):
    role: Optional[Role] = None
    is_active: Optional[bool] = None


class OrderStatusUpdate(Schema):
    status: OrderStatus
    message: Optional[str] = None


class ReviewIn(Schema):
    product_id: str = Field(..., min_length=1)
    rating: int = Field(..., ge=1, le=5)
    title: Optional[str] = Field(None, max_length=120)
    comment: Optional[str] = Field(None, max_length=2000)


class ReviewModeration(Schema):
    is_approved: bool
    admin_note: Optional[str] = None
