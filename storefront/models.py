"""
Pydantic models for the storefront API.
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class Size(str, Enum):
    """Every size the catalogue sells."""
    XS = "XS"
    S = "S"
    M = "M"
    L = "L"
    XL = "XL"
    XXL = "XXL"
    W28 = "28"
    W30 = "30"
    W32 = "32"
    W34 = "34"
    W36 = "36"
    ONE_SIZE = "One Size"


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    UPI = "upi"
    CARD = "card"


# =============================================================================
# Addresses
# =============================================================================

class AddressInput(BaseModel):
    """
    Address fields as typed at checkout.

    Everything is optional here so the resolver can report the first missing
    field itself instead of a generic schema error.
    """
    full_name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None


class AddressCreate(AddressInput):
    is_default: bool = False


class AddressUpdate(AddressInput):
    is_default: Optional[bool] = None


class AddressSnapshot(BaseModel):
    """Shipping address copied by value onto an order."""
    full_name: str
    phone: str
    email: Optional[str] = None
    address_line1: str
    address_line2: Optional[str] = None
    city: str
    state: str
    pincode: str


class AddressOut(AddressSnapshot):
    id: str
    is_default: bool
    created_at: datetime


# =============================================================================
# Orders
# =============================================================================

class OrderItemInput(BaseModel):
    """A cart line submitted at checkout."""
    product_id: str
    quantity: int = Field(..., ge=1)
    size: Size
    price: Optional[Decimal] = None  # client's view of the price, not trusted


class OrderCreate(BaseModel):
    """Request to POST /api/orders."""
    items: list[OrderItemInput] = Field(default_factory=list)
    shipping_address: Optional[AddressInput] = None
    address_id: Optional[str] = None
    payment_method: PaymentMethod = PaymentMethod.UPI
    subtotal: Decimal = Field(..., ge=0)
    shipping: Decimal = Field(..., ge=0)
    total: Decimal = Field(..., ge=0)
    idempotency_key: Optional[str] = Field(None, max_length=128)


class OrderUpdate(BaseModel):
    """Partial update for PATCH /api/orders/{id}. Only supplied fields apply."""
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    tracking_number: Optional[str] = None


class OrderItemOut(BaseModel):
    id: str
    product_id: str
    product_name: str
    size: Size
    quantity: int
    unit_price: Decimal
    line_total: Decimal


class OrderOut(BaseModel):
    id: str
    order_number: str
    user_id: str
    items: list[OrderItemOut]
    shipping_address: AddressSnapshot
    subtotal: Decimal
    shipping: Decimal
    total: Decimal
    status: OrderStatus
    payment_status: PaymentStatus
    payment_method: PaymentMethod
    payment_intent_id: Optional[str] = None
    payment_id: Optional[str] = None
    tracking_number: Optional[str] = None
    created_at: datetime
    updated_at: datetime


# =============================================================================
# Payments
# =============================================================================

class PaymentIntentRequest(BaseModel):
    """Request to POST /api/payment/create-order."""
    amount: Optional[Decimal] = None  # major units
    receipt: Optional[str] = None
    currency: Optional[str] = None


class PaymentIntentResponse(BaseModel):
    """What the client-side payment widget needs to open."""
    order_id: str
    amount: int  # minor units
    currency: str
    key_id: str


class VerifyPaymentRequest(BaseModel):
    """Callback fields the payment widget hands back after payment."""
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None
    order_id: Optional[str] = None


class VerifyPaymentResponse(BaseModel):
    success: bool
    message: str
    order: Optional[OrderOut] = None


# =============================================================================
# Catalogue
# =============================================================================

class ProductOut(BaseModel):
    id: str
    slug: str
    name: str
    category: str
    price: Decimal
    sizes: list[str]
    images: list[str]
    in_stock: bool


class ProductStockUpdate(BaseModel):
    """Inventory toggle from the back-office."""
    in_stock: bool


# =============================================================================
# Pricing & Shopper Session
# =============================================================================

class QuoteLine(BaseModel):
    product_id: str
    size: Size
    quantity: int = Field(..., ge=1)


class QuoteRequest(BaseModel):
    items: list[QuoteLine] = Field(default_factory=list)


class QuoteResponse(BaseModel):
    subtotal: Decimal
    shipping: Decimal
    total: Decimal
    free_shipping_threshold: Decimal


class CartItemRequest(BaseModel):
    product_id: str
    size: Size
    quantity: int = Field(1, ge=1)


class CartQuantityRequest(BaseModel):
    product_id: str
    size: Size
    quantity: int


class CartLineRef(BaseModel):
    product_id: str
    size: Size


# =============================================================================
# Service
# =============================================================================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database_ok: bool
    payment_gateway: str
    payment_gateway_ok: bool
    error: Optional[str] = None


class VersionResponse(BaseModel):
    """Version information response."""
    service: str
    version: str
    config: dict
