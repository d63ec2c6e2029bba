"""
Pydantic Schemas for the Canteen Ordering Core

Domain models shared by the stores (menu items, cart lines, cart snapshots)
and the request/response schemas of the HTTP API.

Money is always a two-place Decimal. Display strings such as "$8.99" are
accepted at the boundary and converted once; nothing below this module
handles floats or formatted prices.

Version: 1.0.0
"""

import re
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, Field, computed_field, field_validator


CENT = Decimal("0.01")

_PRICE_NOISE = re.compile(r"[\s,$€£₹]")


def to_money(value: Any) -> Decimal:
    """
    Convert a price input to a non-negative two-place Decimal.

    Accepts Decimal, int, float (through its str form, so 8.99 stays 8.99)
    and strings like "8.99", "$8.99" or "1,299.50".

    Raises:
        ValueError: If the value is not a finite, non-negative amount
    """
    if isinstance(value, bool):
        raise ValueError("Price must be a number")
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, float):
        amount = Decimal(str(value))
    elif isinstance(value, str):
        cleaned = _PRICE_NOISE.sub("", value)
        if not cleaned:
            raise ValueError("Price is empty")
        try:
            amount = Decimal(cleaned)
        except InvalidOperation:
            raise ValueError(f"Invalid price: {value!r}")
    else:
        raise ValueError(f"Unsupported price type: {type(value).__name__}")

    if not amount.is_finite():
        raise ValueError("Price must be finite")
    if amount < 0:
        raise ValueError("Price cannot be negative")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


# =============================================================================
# ENUMS
# =============================================================================

class UserRole(str, Enum):
    STUDENT = "student"
    USER = "user"
    CHEF = "chef"
    VENDOR = "vendor"

    @property
    def is_vendor(self) -> bool:
        return self in (UserRole.CHEF, UserRole.VENDOR)


class OrderStatus(str, Enum):
    """Order status workflow, from checkout to pickup."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    PREPARING = "preparing"
    READY = "ready"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.COMPLETED, OrderStatus.CANCELLED)


class QRPayloadKind(str, Enum):
    MENU = "menu"   # JSON object with canteen and item list
    SHOP = "shop"   # "<namespace>:<vendor_id>"
    PAIR = "pair"   # "<canteen_id>:<menu_id>", optionally at the end of a URL


# =============================================================================
# MENU MODELS
# =============================================================================

class MenuItemBase(BaseModel):
    """Fields a vendor fills in for a menu item."""
    name: str = Field(..., min_length=1, max_length=100, examples=["Masala Dosa"])
    price: Decimal = Field(..., examples=["4.99"])
    description: Optional[str] = Field(None, max_length=500)
    category: Optional[str] = Field(None, max_length=50, examples=["South Indian"])
    available: bool = True
    image_url: Optional[str] = Field(None, max_length=2048)
    is_veg: Optional[bool] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name cannot be blank")
        return v

    @field_validator("price", mode="before")
    @classmethod
    def validate_price(cls, v: Any) -> Decimal:
        return to_money(v)

    @field_validator("category")
    @classmethod
    def validate_category(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return v.strip() or None


class MenuItemCreate(MenuItemBase):
    """Menu item as submitted, before an id is assigned."""


class MenuItem(MenuItemBase):
    """Menu item stored in a vendor's catalog."""
    id: str = Field(..., min_length=1)
    category: str = Field(..., max_length=50)


# =============================================================================
# CART MODELS
# =============================================================================

class CartItemIn(BaseModel):
    """Display data copied into the cart when an item is added."""
    item_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=100)
    unit_price: Decimal

    @field_validator("item_id", mode="before")
    @classmethod
    def validate_item_id(cls, v: Any) -> Any:
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("unit_price", mode="before")
    @classmethod
    def validate_unit_price(cls, v: Any) -> Decimal:
        return to_money(v)

    @classmethod
    def from_menu_item(cls, item: MenuItem) -> "CartItemIn":
        return cls(item_id=item.id, name=item.name, unit_price=item.price)


class CartLine(BaseModel):
    """One line of the cart."""
    item_id: str
    name: str
    unit_price: Decimal
    quantity: int = Field(1, ge=1)

    @computed_field
    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class CartState(BaseModel):
    """Snapshot of a cart, safe to hand to callers."""
    vendor_id: Optional[str] = None
    lines: List[CartLine] = Field(default_factory=list)

    @computed_field
    @property
    def total_price(self) -> Decimal:
        return sum((line.line_total for line in self.lines), Decimal("0.00"))

    @computed_field
    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)


# =============================================================================
# ORDER MODELS
# =============================================================================

class Order(BaseModel):
    """
    A checked-out cart.

    Lines and total are copied from the cart at checkout, so later menu
    price changes never alter an order. Each status reached is stamped in
    the matching *_at field.
    """
    id: str
    vendor_id: str
    session_id: str
    customer_name: Optional[str] = None
    special_instructions: Optional[str] = None
    lines: List[CartLine] = Field(..., min_length=1)
    total_amount: Decimal
    status: OrderStatus = OrderStatus.PENDING

    # Timestamps
    created_at: datetime
    updated_at: datetime
    accepted_at: Optional[datetime] = None
    preparing_at: Optional[datetime] = None
    ready_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @computed_field
    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)


# =============================================================================
# QR MODELS
# =============================================================================

class QRPayload(BaseModel):
    """Decoded QR payload."""
    kind: QRPayloadKind
    vendor_id: str
    menu_id: Optional[str] = None
    vendor_name: Optional[str] = None


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class CartAddRequest(BaseModel):
    """Add one unit of a vendor's menu item to a session cart."""
    vendor_id: str = Field(..., min_length=1, examples=["canteen-42"])
    item_id: str = Field(..., min_length=1)


class CartQuantityUpdate(BaseModel):
    """Set the quantity of a cart line; 0 or less removes it."""
    quantity: int = Field(..., examples=[2])


class AvailabilityUpdate(BaseModel):
    available: bool


class CheckoutRequest(BaseModel):
    """Turn a session cart into an order."""
    customer_name: Optional[str] = Field(None, max_length=100, examples=["Asha"])
    special_instructions: Optional[str] = Field(None, max_length=500, examples=["Less spicy"])

    @field_validator("customer_name", "special_instructions")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return v.strip() or None


class OrderStatusUpdate(BaseModel):
    status: OrderStatus = Field(..., examples=["accepted"])


class QRResolveRequest(BaseModel):
    payload: str = Field(..., min_length=1, max_length=4096)


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class MenuListResponse(BaseModel):
    """Items of one vendor's catalog."""
    vendor_id: str
    total: int
    items: List[MenuItem]


class CartResponse(BaseModel):
    """A session cart with derived totals."""
    session_id: str
    cart: CartState


class OrderListResponse(BaseModel):
    """Response for listing a vendor's orders."""
    vendor_id: str
    total: int
    orders: List[Order]


class QRCodeResponse(BaseModel):
    """Both QR payload forms for a vendor."""
    vendor_id: str
    shop_payload: str
    menu_payload: str


class ReloadResponse(BaseModel):
    success: bool
    vendors: int
    items: int


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[Any] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    storage: str
    storage_backend: str
    menu_loaded: bool
    timestamp: datetime
