"""
Checkout

Turns a session cart into a pending order. The cart is only cleared once
the order has been saved, so a storage failure leaves it as it was.
"""

import logging
from typing import Optional

from canteen.core.exceptions import ConflictError, ValidationError
from canteen.schemas import Order
from canteen.services.cart import CartStore
from canteen.services.menu import MenuStore
from canteen.services.orders import OrderStore

logger = logging.getLogger(__name__)


async def checkout(
    cart: CartStore,
    session_id: str,
    orders: OrderStore,
    menu: Optional[MenuStore] = None,
    customer_name: Optional[str] = None,
    special_instructions: Optional[str] = None,
) -> Order:
    """
    Place an order for everything in the cart, then empty the cart.

    Args:
        cart: Cart to check out
        session_id: Browsing session owning the cart
        orders: Store receiving the order
        menu: When given, every line must still be on the vendor's menu
            and available

    Raises:
        ValidationError: If the cart is empty
        ConflictError: If a line is no longer orderable
        PersistenceError: If the order could not be saved
    """
    if cart.is_empty:
        raise ValidationError("Cart is empty")

    state = cart.snapshot()

    if menu is not None:
        for line in state.lines:
            item = menu.get_item(state.vendor_id, line.item_id)
            if item is None:
                raise ConflictError(f"{line.name} is no longer on the menu")
            if not item.available:
                raise ConflictError(f"{line.name} is currently unavailable")

    order = await orders.place_order(
        state,
        session_id,
        customer_name=customer_name,
        special_instructions=special_instructions,
    )
    cart.clear_cart()
    logger.info(f"Session {session_id} checked out order {order.id}")
    return order
