"""
                        Services Module

Business logic of the canteen ordering core.

Services:
    - cart: single-vendor session carts (in memory)
    - checkout: turning a cart into an order
    - menu: per-vendor menu catalogs with durable persistence
    - orders: per-vendor order lists and the status workflow
    - qr: QR payload building and decoding
    - storage: durable key-value backends (memory, file, Redis, SQL)
"""

from canteen.services.cart import CartSessions, CartStore
from canteen.services.checkout import checkout
from canteen.services.menu import MenuStore
from canteen.services.orders import OrderStore

__all__ = ["CartStore", "CartSessions", "MenuStore", "OrderStore", "checkout"]
