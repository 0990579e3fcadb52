"""
Pydantic Schemas for Request/Response Validation

Request schemas deliberately accept blank customer fields: required-field
gating is done by the order workflow so that every missing field is reported
at once as a ``ValidationError`` instead of failing on the first one.

Author: Bistro Engineering
Version: 1.0.0
"""

import re
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from pydantic import BaseModel, ConfigDict, Field, field_validator

from bistro.models import (
    MenuCategory,
    OrderStatus,
    FulfillmentMethod,
    PaymentMethod,
    ReservationStatus,
)


def _blank_to_none(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip()
    return v or None


def _check_email(v: Optional[str]) -> Optional[str]:
    v = _blank_to_none(v)
    if v is None:
        return None
    if not re.match(r'^[\w\.\+-]+@[\w\.-]+\.\w+$', v):
        raise ValueError('Invalid email format')
    return v


# =============================================================================
# MENU
# =============================================================================

class MenuItemCreate(BaseModel):
    """Request schema for adding a dish."""
    name: str = Field(..., min_length=1, max_length=100, examples=["Margherita Pizza"])
    description: str = Field(default="", max_length=1000)
    price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2, examples=["14.99"])
    category: MenuCategory = Field(..., examples=["mains"])
    image_url: Optional[str] = Field(None, max_length=500)
    available: bool = True


class MenuItemUpdate(BaseModel):
    """Partial update; omitted fields are left unchanged."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    price: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    category: Optional[MenuCategory] = None
    image_url: Optional[str] = Field(None, max_length=500)
    available: Optional[bool] = None


class MenuItemResponse(BaseModel):
    """A dish as shown to shoppers and priced into carts."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str = ""
    price: Decimal = Field(..., ge=0)
    category: MenuCategory
    image_url: Optional[str] = None
    available: bool = True


# =============================================================================
# CART
# =============================================================================

class CartItemRequest(BaseModel):
    """One requested cart line; prices always come from the menu."""
    menu_item_id: int = Field(..., examples=[1])
    quantity: int = Field(default=1, ge=1, le=99, examples=[2])


class CartQuoteRequest(BaseModel):
    items: List[CartItemRequest] = Field(default_factory=list)


class CartLineResponse(BaseModel):
    menu_item_id: int
    name: str
    unit_price: Decimal
    quantity: int
    line_total: Decimal


class CartQuoteResponse(BaseModel):
    lines: List[CartLineResponse]
    item_count: int
    total: Decimal


# =============================================================================
# ORDERS
# =============================================================================

class CustomerInfo(BaseModel):
    """Shopper contact details. Name and phone are required at submission."""
    name: str = Field(default="", max_length=100, examples=["John Doe"])
    phone: str = Field(default="", max_length=30, examples=["555-123-4567"])
    email: Optional[str] = Field(None, max_length=255, examples=["john@example.com"])
    address: Optional[str] = Field(None, max_length=500, examples=["350 Fifth Avenue"])
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator('name', 'phone', mode='before')
    @classmethod
    def strip_required(cls, v: Optional[str]) -> str:
        return (v or "").strip()

    @field_validator('address', 'notes')
    @classmethod
    def strip_optional(cls, v: Optional[str]) -> Optional[str]:
        return _blank_to_none(v)

    @field_validator('email')
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        return _check_email(v)


class DeliveryLocation(BaseModel):
    """A point picked on the delivery map."""
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class OrderCreate(BaseModel):
    """Request schema for submitting an order."""
    customer: CustomerInfo
    fulfillment_method: FulfillmentMethod = Field(
        default=FulfillmentMethod.DELIVERY,
        examples=["delivery"],
    )
    payment_method: PaymentMethod = Field(
        default=PaymentMethod.CASH,
        examples=["card", "cash"],
    )
    items: List[CartItemRequest] = Field(default_factory=list)
    delivery_location: Optional[DeliveryLocation] = None
    # Informational only; the persisted total is always recomputed
    client_total: Optional[Decimal] = None


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_id: int
    menu_item_id: int
    quantity: int
    price_at_purchase: Decimal
    notes: Optional[str] = None


class OrderResponse(BaseModel):
    """Response schema for a single order."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    customer_name: str
    customer_email: Optional[str] = None
    customer_phone: str
    fulfillment_method: FulfillmentMethod
    delivery_address: Optional[str] = None
    payment_method: PaymentMethod
    total_amount: Decimal
    status: OrderStatus
    created_at: datetime
    updated_at: Optional[datetime] = None


class OrderDetailResponse(OrderResponse):
    items: List[OrderItemResponse] = Field(default_factory=list)


class PaymentInstructions(BaseModel):
    """What the browser needs to finish a card payment."""
    available: bool
    provider: Optional[str] = None
    payment_intent_id: Optional[str] = None
    client_secret: Optional[str] = None
    publishable_key: Optional[str] = None
    error_message: Optional[str] = None


class OrderCreateResponse(BaseModel):
    """Response after successfully creating an order."""
    success: bool
    message: str
    order_id: int
    outcome: str
    status: OrderStatus
    total_amount: Decimal
    payment: Optional[PaymentInstructions] = None


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class OrderListResponse(BaseModel):
    """Response for listing multiple orders."""
    total: int
    orders: List[OrderResponse]


# =============================================================================
# INTEGRATION SETTINGS
# =============================================================================

class PaymentSettingsUpdate(BaseModel):
    enabled: bool = False
    publishable_key: str = Field(default="", max_length=255, examples=["pk_test_..."])
    test_mode: bool = True

    @field_validator('publishable_key')
    @classmethod
    def validate_publishable_key(cls, v: str) -> str:
        v = v.strip()
        if v and not v.startswith("pk_"):
            raise ValueError('Publishable key must start with pk_')
        return v


class PaymentSettingsResponse(PaymentSettingsUpdate):
    updated_at: Optional[str] = None


class PublicPaymentSettings(BaseModel):
    """Only what the order page needs; never exposes admin fields."""
    enabled: bool
    publishable_key: Optional[str] = None


class MapsSettingsUpdate(BaseModel):
    api_key: str = Field(default="", max_length=255)


class MapsSettingsResponse(BaseModel):
    configured: bool
    last_updated: Optional[str] = None


class NotificationSettingsUpdate(BaseModel):
    webhook_url: Optional[str] = Field(None, max_length=500)

    @field_validator('webhook_url')
    @classmethod
    def validate_webhook_url(cls, v: Optional[str]) -> Optional[str]:
        v = _blank_to_none(v)
        if v is not None and not re.match(r'^https?://', v):
            raise ValueError('Webhook URL must start with http:// or https://')
        return v


class NotificationSettingsResponse(NotificationSettingsUpdate):
    updated_at: Optional[str] = None


# =============================================================================
# DELIVERY LOCATION
# =============================================================================

class AddressLookupResponse(BaseModel):
    success: bool
    address: Optional[str] = None
    latitude: float
    longitude: float
    error_message: Optional[str] = None


# =============================================================================
# RESERVATIONS & CONTACT
# =============================================================================

class ReservationCreate(BaseModel):
    name: str = Field(default="", max_length=100)
    phone: str = Field(default="", max_length=30)
    email: Optional[str] = Field(None, max_length=255)
    date: str = Field(default="", examples=["2026-11-05"])
    time: str = Field(default="", examples=["19:30"])
    guests: Optional[int] = Field(None, ge=1, le=50)
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator('name', 'phone', 'date', 'time', mode='before')
    @classmethod
    def strip_required(cls, v: Optional[str]) -> str:
        return (v or "").strip()

    @field_validator('date')
    @classmethod
    def validate_date(cls, v: str) -> str:
        if v and not re.match(r'^\d{4}-\d{2}-\d{2}$', v):
            raise ValueError('Date must be YYYY-MM-DD')
        return v

    @field_validator('time')
    @classmethod
    def validate_time(cls, v: str) -> str:
        if v and not re.match(r'^([01]\d|2[0-3]):[0-5]\d$', v):
            raise ValueError('Time must be HH:MM')
        return v

    @field_validator('email')
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        return _check_email(v)

    def missing_fields(self) -> list[str]:
        return [f for f in ("name", "phone", "date", "time") if not getattr(self, f)]


class ReservationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    phone: str
    email: Optional[str] = None
    date: str
    time: str
    guests: Optional[int] = None
    notes: Optional[str] = None
    status: ReservationStatus
    created_at: datetime


class ContactMessageCreate(BaseModel):
    name: str = Field(default="", max_length=100)
    email: str = Field(default="", max_length=255)
    message: str = Field(default="", max_length=5000)

    @field_validator('name', 'email', 'message', mode='before')
    @classmethod
    def strip_required(cls, v: Optional[str]) -> str:
        return (v or "").strip()

    @field_validator('email')
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _check_email(v) or ""

    def missing_fields(self) -> list[str]:
        return [f for f in ("name", "email", "message") if not getattr(self, f)]


class ContactMessageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    message: str
    created_at: datetime


# =============================================================================
# GENERIC
# =============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    redis: str
    payment_service: str
    geo_service: str
    timestamp: datetime
