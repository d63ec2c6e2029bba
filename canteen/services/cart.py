"""
Cart Store

Transient shopping cart for one browsing session. A cart holds items from
exactly one vendor at a time:

    - Adding an item from another vendor discards every existing line first
    - vendor_id is set exactly when the cart has lines
    - Each item_id appears once; adding it again bumps the quantity
    - A line never sits in the cart with quantity 0

    - No line holds more than max_line_quantity units

Everything is synchronous and in memory. Totals are Decimal.
"""

import logging
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from canteen.core.config import get_settings
from canteen.core.exceptions import ValidationError
from canteen.schemas import CartItemIn, CartLine, CartState, MenuItem

logger = logging.getLogger(__name__)

CartItemLike = Union[CartItemIn, MenuItem, Mapping]


class CartStore:
    """
    Single-vendor cart.

    Example:
        >>> cart = CartStore()
        >>> cart.add_item({"item_id": "1", "name": "Pizza", "unit_price": "8.99"}, "A")
        >>> cart.get_total_price()
        Decimal('8.99')
    """

    def __init__(self, max_quantity: Optional[int] = None):
        self.max_quantity = max_quantity or get_settings().max_line_quantity
        self._vendor_id: Optional[str] = None
        self._lines: list[CartLine] = []

    # =========================================================================
    # READ ACCESS
    # =========================================================================

    @property
    def vendor_id(self) -> Optional[str]:
        """Vendor whose items fill the cart, None when empty."""
        return self._vendor_id

    @property
    def lines(self) -> list[CartLine]:
        """Copies of the cart lines in insertion order."""
        return [line.model_copy() for line in self._lines]

    @property
    def is_empty(self) -> bool:
        return not self._lines

    def __len__(self) -> int:
        return len(self._lines)

    def get_line(self, item_id: str) -> Optional[CartLine]:
        line = self._find(item_id)
        return line.model_copy() if line else None

    def snapshot(self) -> CartState:
        return CartState(vendor_id=self._vendor_id, lines=self.lines)

    def get_total_price(self) -> Decimal:
        """Sum of unit_price * quantity over all lines."""
        return sum((line.unit_price * line.quantity for line in self._lines), Decimal("0.00"))

    def get_item_count(self) -> int:
        """Sum of quantities (not the number of distinct lines)."""
        return sum(line.quantity for line in self._lines)

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def add_item(self, item: CartItemLike, vendor_id: str) -> CartLine:
        """
        Add one unit of an item.

        Args:
            item: CartItemIn, MenuItem, or a mapping with item_id/name/unit_price
            vendor_id: Vendor owning the item

        Returns:
            CartLine: Copy of the resulting line

        Raises:
            ValidationError: If the item data or vendor_id is invalid, or the
                line is already at max_quantity; the cart is left untouched
        """
        entry = self._coerce_item(item)
        if not isinstance(vendor_id, str) or not vendor_id.strip():
            raise ValidationError("vendor_id is required to add an item")

        if self._vendor_id == vendor_id:
            existing = self._find(entry.item_id)
            if existing is not None:
                self._check_quantity(existing.quantity + 1)

        if self._vendor_id is not None and self._vendor_id != vendor_id:
            logger.info(
                f"Cart switched vendor {self._vendor_id} → {vendor_id}, "
                f"dropping {len(self._lines)} line(s)"
            )
            self._lines = []

        self._vendor_id = vendor_id

        line = self._find(entry.item_id)
        if line:
            line.quantity += 1
        else:
            line = CartLine(
                item_id=entry.item_id,
                name=entry.name,
                unit_price=entry.unit_price,
                quantity=1,
            )
            self._lines.append(line)

        logger.debug(f"Cart: {line.item_id} x{line.quantity} (vendor {vendor_id})")
        return line.model_copy()

    def remove_item(self, item_id: str) -> None:
        """Remove a line regardless of its quantity. Unknown ids are ignored."""
        self._lines = [line for line in self._lines if line.item_id != item_id]
        if not self._lines:
            self._vendor_id = None

    def update_quantity(self, item_id: str, quantity: int) -> None:
        """
        Set a line's quantity; 0 or less removes the line.

        Raises:
            ValidationError: If quantity is not a whole number or exceeds
                max_quantity
        """
        quantity = self._coerce_quantity(quantity)
        line = self._find(item_id)
        if line is None:
            return
        if quantity <= 0:
            self.remove_item(item_id)
            return
        self._check_quantity(quantity)
        line.quantity = quantity

    def increment_item(self, item_id: str) -> None:
        line = self._find(item_id)
        if line is not None:
            self._check_quantity(line.quantity + 1)
            line.quantity += 1

    def decrement_item(self, item_id: str) -> None:
        line = self._find(item_id)
        if line is not None:
            self.update_quantity(item_id, line.quantity - 1)

    def clear_cart(self) -> None:
        self._lines = []
        self._vendor_id = None

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _find(self, item_id: str) -> Optional[CartLine]:
        for line in self._lines:
            if line.item_id == item_id:
                return line
        return None

    def _check_quantity(self, quantity: int) -> None:
        if quantity > self.max_quantity:
            raise ValidationError(f"Quantity cannot exceed {self.max_quantity}")

    @staticmethod
    def _coerce_quantity(quantity: Any) -> int:
        """Whole-number quantity; 2.0 is accepted, 0.5 and True are not."""
        if isinstance(quantity, bool) or not isinstance(quantity, (int, float, Decimal)):
            raise ValidationError(f"Quantity must be a whole number, got {quantity!r}")
        try:
            whole = int(quantity)
        except (ValueError, OverflowError, InvalidOperation):
            raise ValidationError(f"Quantity must be a whole number, got {quantity!r}")
        if whole != quantity:
            raise ValidationError(f"Quantity must be a whole number, got {quantity!r}")
        return whole

    @staticmethod
    def _coerce_item(item: Any) -> CartItemIn:
        if isinstance(item, CartItemIn):
            return item
        if isinstance(item, MenuItem):
            return CartItemIn.from_menu_item(item)
        if isinstance(item, Mapping):
            try:
                return CartItemIn.model_validate(dict(item))
            except PydanticValidationError as e:
                raise ValidationError(
                    "Invalid cart item",
                    errors=e.errors(include_url=False, include_context=False),
                ) from e
        raise ValidationError(f"Unsupported cart item type: {type(item).__name__}")


class CartSessions:
    """
    Carts of all active browsing sessions, keyed by session id.

    Owned by the application and handed to request handlers. A cart is
    created the first time its session adds an item and dropped again by
    prune() once it is empty, so idle sessions hold no memory.
    """

    def __init__(self):
        self._carts: dict[str, CartStore] = {}

    def get(self, session_id: str) -> CartStore:
        cart = self._carts.get(session_id)
        if cart is None:
            cart = CartStore()
            self._carts[session_id] = cart
            logger.debug(f"New cart for session {session_id}")
        return cart

    def peek(self, session_id: str) -> Optional[CartStore]:
        """Existing cart, or None without creating one."""
        return self._carts.get(session_id)

    def discard(self, session_id: str) -> None:
        self._carts.pop(session_id, None)

    def prune(self, session_id: str) -> None:
        """Drop the session once its cart is empty; the next get() starts fresh."""
        cart = self._carts.get(session_id)
        if cart is not None and cart.is_empty:
            del self._carts[session_id]
            logger.debug(f"Dropped empty cart for session {session_id}")

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._carts

    def __len__(self) -> int:
        return len(self._carts)
