"""
Order Store

Orders placed at checkout, persisted per vendor:

    <order_storage_prefix><vendor_id>  →  [{"id": ..., "status": "pending", ...}, ...]

Each vendor's list is read from storage the first time that vendor is
touched and cached afterwards; invalidate() drops the cache so the next
access re-reads. Writes follow the same rule as the menu catalog: the new
list is written first and only swapped into memory once the write succeeded.

Status workflow (vendors drive every step after checkout):

    pending → accepted → preparing → ready → completed
       └──────────┴───────────┴──→ cancelled

Version: 1.0.0
"""

import copy
import json
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from canteen.core.config import get_settings
from canteen.core.exceptions import ConflictError, ParseError, PersistenceError, ValidationError
from canteen.schemas import CartState, Order, OrderStatus
from canteen.services.storage.base import BaseKeyValueStore

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.ACCEPTED, OrderStatus.CANCELLED}),
    OrderStatus.ACCEPTED: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY, OrderStatus.CANCELLED}),
    OrderStatus.READY: frozenset({OrderStatus.COMPLETED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

_orders_adapter = TypeAdapter(list[Order])


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def deserialize_orders(raw: str) -> list[Order]:
    """
    Decode a vendor's stored order list.

    Raises:
        ParseError: If the text is not JSON or not a list of orders
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise ParseError(f"Order list is not valid JSON: {e}") from e

    try:
        return _orders_adapter.validate_python(data)
    except PydanticValidationError as e:
        raise ParseError(f"Order list has an invalid shape: {e.error_count()} error(s)") from e


class OrderStore:
    """
    Orders of all vendors, one storage slot per vendor.

    Example:
        >>> orders = OrderStore(MockKeyValueStore())
        >>> order = await orders.place_order(cart.snapshot(), "session-1")
        >>> await orders.update_status(order.vendor_id, order.id, OrderStatus.ACCEPTED)
    """

    def __init__(self, storage: BaseKeyValueStore, key_prefix: Optional[str] = None):
        self.storage = storage
        self.key_prefix = key_prefix if key_prefix is not None else get_settings().order_storage_prefix
        self._orders: dict[str, list[Order]] = {}

    def key_for(self, vendor_id: str) -> str:
        return f"{self.key_prefix}{vendor_id}"

    def invalidate(self, vendor_id: Optional[str] = None) -> None:
        """Forget cached orders (one vendor, or all) so they are re-read."""
        if vendor_id is None:
            self._orders.clear()
        else:
            self._orders.pop(vendor_id, None)

    # =========================================================================
    # READS
    # =========================================================================

    async def list_orders(self, vendor_id: str, status: Optional[OrderStatus] = None) -> list[Order]:
        """Copies of a vendor's orders, oldest first, optionally filtered by status."""
        orders = await self._load(vendor_id)
        return [
            order.model_copy(deep=True)
            for order in orders
            if status is None or order.status == status
        ]

    async def get_order(self, vendor_id: str, order_id: str) -> Optional[Order]:
        for order in await self._load(vendor_id):
            if order.id == order_id:
                return order.model_copy(deep=True)
        return None

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    async def place_order(
        self,
        cart: CartState,
        session_id: str,
        customer_name: Optional[str] = None,
        special_instructions: Optional[str] = None,
    ) -> Order:
        """
        Persist a cart snapshot as a new pending order.

        Raises:
            ValidationError: If the cart is empty or has no vendor
            PersistenceError: If the order could not be saved
        """
        if not cart.lines or not cart.vendor_id:
            raise ValidationError("Cannot place an order from an empty cart")

        now = datetime.now(timezone.utc)
        order = Order(
            id=uuid.uuid4().hex,
            vendor_id=cart.vendor_id,
            session_id=session_id,
            customer_name=customer_name,
            special_instructions=special_instructions,
            lines=[line.model_copy() for line in cart.lines],
            total_amount=cart.total_price,
            created_at=now,
            updated_at=now,
        )

        async with self._transaction(cart.vendor_id) as draft:
            draft.append(order)

        logger.info(
            f"📦 Order {order.id} placed for vendor {order.vendor_id}: "
            f"{order.item_count} item(s), total {order.total_amount}"
        )
        return order.model_copy(deep=True)

    async def update_status(self, vendor_id: str, order_id: str, status: OrderStatus) -> Optional[Order]:
        """
        Move an order to its next status.

        Returns:
            Order: The updated order, or None if it does not exist

        Raises:
            ConflictError: If the workflow does not allow the transition
            PersistenceError: If the change could not be saved
        """
        current = await self.get_order(vendor_id, order_id)
        if current is None:
            return None

        if not can_transition(current.status, status):
            raise ConflictError(
                f"Order {order_id} cannot move from {current.status.value} to {status.value}"
            )

        now = datetime.now(timezone.utc)
        updated = current.model_copy(update={
            "status": status,
            "updated_at": now,
            f"{status.value}_at": now,
        })

        async with self._transaction(vendor_id) as draft:
            draft[:] = [updated if order.id == order_id else order for order in draft]

        logger.info(f"Order {order_id}: {current.status.value} → {status.value}")
        return updated.model_copy(deep=True)

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _load(self, vendor_id: str) -> list[Order]:
        """
        Cached order list of a vendor, read from storage on first use.

        A corrupt slot loads as an empty list; read failures propagate.
        """
        if vendor_id in self._orders:
            return self._orders[vendor_id]

        key = self.key_for(vendor_id)
        raw = await self.storage.get(key)
        if raw is None:
            orders: list[Order] = []
        else:
            try:
                orders = deserialize_orders(raw)
            except ParseError as e:
                logger.warning(f"Discarding corrupt order data under {key!r}: {e}")
                orders = []

        self._orders[vendor_id] = orders
        return orders

    @asynccontextmanager
    async def _transaction(self, vendor_id: str) -> AsyncIterator[list[Order]]:
        """Yield a copy of the vendor's orders; write it, then swap it in."""
        draft = copy.deepcopy(await self._load(vendor_id))
        yield draft

        key = self.key_for(vendor_id)
        payload = _orders_adapter.dump_json(draft).decode("utf-8")
        result = await self.storage.set(key, payload)
        if not result.success:
            logger.error(f"Error saving orders of vendor {vendor_id}: {result.error_message}")
            raise PersistenceError(
                result.error_message or "Failed to save orders",
                key=key,
                operation="set",
            )

        self._orders[vendor_id] = draft
