"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the platform.
"""

import uuid
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

PHONE_PATTERN = r"^[6-9]\d{9}$"


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class CamelRequest(BaseSchema):
    """Accepts both camelCase (mobile client) and snake_case keys."""
    model_config = ConfigDict(
        from_attributes=True,
        use_enum_values=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


# ── Profile ───────────────────────────────────────────────────

class ProfileResponse(BaseSchema):
    id: uuid.UUID
    email: str
    phone: Optional[str]
    full_name: str
    role: str
    wallet_balance: int
    verified: bool
    blocked: bool
    address_line1: Optional[str]
    address_line2: Optional[str]
    city: Optional[str]
    state: Optional[str]
    pincode: Optional[str]
    location_address: Optional[str]
    location_lat: Optional[float]
    location_lng: Optional[float]
    manual_location_link: Optional[str]
    created_at: datetime


class ProfileUpdateRequest(BaseSchema):
    full_name: Optional[str] = Field(None, min_length=2, max_length=255)
    email: Optional[EmailStr] = None


class AddressUpdateRequest(BaseSchema):
    address_line1: str = Field(..., min_length=1, max_length=255)
    address_line2: Optional[str] = Field(None, max_length=255)
    city: str = Field(..., max_length=100)
    state: str = Field(..., max_length=100)
    pincode: str = Field(..., pattern=r"^\d{6}$")
    location_address: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)


class PhoneUpdateRequest(BaseSchema):
    phone: str = Field(..., pattern=PHONE_PATTERN)


# ── Auth ──────────────────────────────────────────────────────

class SessionResponse(BaseSchema):
    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds
    user: ProfileResponse


class CheckExistsRequest(BaseSchema):
    email: Optional[str] = None
    phone: Optional[str] = None


class SendOtpRequest(BaseSchema):
    # Format is checked in the handler so the error text matches the client's toast
    phone: str = ""


class VerifyOtpRequest(BaseSchema):
    phone: str = ""
    code: str = ""


class VerifyOtpResponse(BaseSchema):
    success: bool = True
    verified: bool = True


class SignupRequest(BaseSchema):
    full_name: str = Field(..., min_length=2, max_length=255)
    email: EmailStr
    phone: str = Field(..., pattern=PHONE_PATTERN)
    password: str

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()


class LoginRequest(BaseSchema):
    email: str
    password: str


class PhonePasswordLoginRequest(BaseSchema):
    phone: str
    password: str


class PhoneLoginRequest(BaseSchema):
    phone: str


class ResetPasswordRequest(BaseSchema):
    phone: str
    new_password: str


class ResetPasswordResponse(BaseSchema):
    success: bool = True
    email: str


# ── Service catalogue ─────────────────────────────────────────

class ServicePriceResponse(BaseSchema):
    id: uuid.UUID
    service_id: str
    service_name: str
    price: int
    is_active: bool


# ── Booking ───────────────────────────────────────────────────

class BookingCreateRequest(BaseSchema):
    service_ids: List[str] = Field(..., min_length=1)
    vehicle_type: str = Field(..., min_length=1, max_length=50)
    vehicle_number: Optional[str] = Field(None, max_length=20)
    vehicle_make_model: Optional[str] = Field(None, max_length=255)
    service_mode: Optional[str] = Field(None, max_length=50)
    preferred_date_time: str = Field(..., min_length=1, max_length=100)
    notes: Optional[str] = Field(None, max_length=2000)
    coupon_code: Optional[str] = Field(None, max_length=50)
    payment_method: str = Field(..., pattern=r"^(razorpay|wallet|pay_later)$")


class BookingResponse(BaseSchema):
    id: uuid.UUID
    user_id: uuid.UUID
    service_ids: List[str]
    service_name: str
    vehicle_type: str
    vehicle_number: Optional[str]
    vehicle_make_model: Optional[str]
    service_mode: Optional[str]
    address: Optional[str]
    location_lat: Optional[float]
    location_lng: Optional[float]
    preferred_date_time: str
    notes: Optional[str]
    subtotal_amount: int
    discount_amount: int
    total_amount: int
    coupon_code: Optional[str]
    status: str
    payment_status: str
    payment_method: str
    razorpay_order_id: Optional[str]
    rescheduled_by: Optional[str]
    cancelled_at: Optional[datetime]
    created_at: datetime


# ── Wallet ────────────────────────────────────────────────────

class WalletTransactionResponse(BaseSchema):
    id: uuid.UUID
    amount: int
    type: str
    description: str
    booking_id: Optional[uuid.UUID]
    created_at: datetime


class WalletResponse(BaseSchema):
    balance: int
    transactions: List[WalletTransactionResponse]


# ── Coupon ────────────────────────────────────────────────────

class CouponValidateRequest(BaseSchema):
    code: str = Field(..., min_length=1, max_length=50)


class CouponValidateResponse(BaseSchema):
    valid: bool = True
    code: str
    discount_percent: int


class CouponResponse(BaseSchema):
    id: uuid.UUID
    code: str
    discount_percent: int
    active: bool
    user_id: Optional[uuid.UUID]
    usage_limit: Optional[int]
    first_booking_only: bool
    created_at: datetime


class OfferResponse(BaseSchema):
    id: uuid.UUID
    code: str
    discount_percent: int
    user_id: Optional[uuid.UUID]


class OffersResponse(BaseSchema):
    offers: List[OfferResponse]


# ── Payment ───────────────────────────────────────────────────

class CreateOrderRequest(CamelRequest):
    amount: Optional[int] = None
    booking_id: Optional[uuid.UUID] = None


class CreateOrderResponse(BaseModel):
    orderId: str
    amount: int
    currency: str


class PaymentVerifyRequest(BaseSchema):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str
    booking_id: uuid.UUID


# ── Notification ──────────────────────────────────────────────

class DeviceTokenRequest(BaseSchema):
    token: str = Field(..., min_length=1)
    platform: Optional[str] = Field(None, max_length=20)


# ── Admin ─────────────────────────────────────────────────────

class AdminActionRequest(CamelRequest):
    """
    Body of POST /admin. Only `action` is always required; each action
    checks the fields it needs.
    """
    action: str
    user_id: Optional[uuid.UUID] = None
    password: Optional[str] = None
    amount: Optional[int] = None
    description: Optional[str] = None
    coupon_code: Optional[str] = None
    coupon_discount: Optional[int] = None
    coupon_user_id: Optional[uuid.UUID] = None
    coupon_limit: Optional[int] = None
    first_booking_only: bool = False
    coupon_id: Optional[uuid.UUID] = None
    booking_id: Optional[uuid.UUID] = None
    status: Optional[str] = None
    date_time: Optional[str] = None
    service_id: Optional[str] = None
    prices: Optional[dict] = None
    title: Optional[str] = None
    content: Optional[str] = None
    key: Optional[str] = None
    value: Any = None
    link: Optional[str] = None


# ── Generic ───────────────────────────────────────────────────

class MessageResponse(BaseSchema):
    message: str
    success: bool = True


class DataResponse(BaseSchema):
    data: Any
