"""
FastAPI Application Entry Point

Canteen Ordering API: menu management for vendors, single-vendor carts for
students, and QR payloads linking the two.

Endpoints:
    - GET/POST /api/vendors/{vendor_id}/menu: List or create menu items
    - PUT/PATCH/DELETE /api/vendors/{vendor_id}/menu/{item_id}: Edit items
    - POST /api/menu/reload: Re-read the catalog from storage
    - GET /api/vendors/{vendor_id}/qr: QR payloads for a vendor
    - POST /api/qr/resolve: Decode a scanned payload
    - /api/carts/{session_id}/...: Session cart operations
    - POST /api/carts/{session_id}/checkout: Turn a cart into an order
    - GET /api/vendors/{vendor_id}/orders[/{order_id}]: Vendor order queue
    - PATCH /api/vendors/{vendor_id}/orders/{order_id}/status: Advance an order
    - GET /health: System health check

Vendor-only endpoints expect X-User-Role: vendor (or chef). The role is
issued by the authentication service in front of this API and trusted here.

Menu and order writes are serialized by one asyncio.Lock per application,
so concurrent requests never overwrite each other's changes.

Version: 1.0.0
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Optional
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from canteen.core.config import get_settings, setup_logging
from canteen.core.exceptions import (
    ConflictError,
    InvalidQRPayloadError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from canteen.schemas import (
    AvailabilityUpdate,
    CartAddRequest,
    CartQuantityUpdate,
    CartResponse,
    CartState,
    CheckoutRequest,
    ErrorResponse,
    HealthResponse,
    MenuItem,
    MenuItemCreate,
    MenuListResponse,
    Order,
    OrderListResponse,
    OrderStatus,
    OrderStatusUpdate,
    QRCodeResponse,
    QRPayload,
    QRResolveRequest,
    ReloadResponse,
    UserRole,
)
from canteen.services.cart import CartSessions
from canteen.services.checkout import checkout
from canteen.services.menu import MenuStore
from canteen.services.orders import OrderStore
from canteen.services.qr import build_menu_payload, build_shop_payload, parse_payload
from canteen.services.storage import (
    BaseKeyValueStore,
    get_key_value_store,
    reset_key_value_store,
)

logger = logging.getLogger(__name__)


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_menu_store(request: Request) -> MenuStore:
    return request.app.state.menu_store


def get_cart_sessions(request: Request) -> CartSessions:
    return request.app.state.carts


def get_order_store(request: Request) -> OrderStore:
    return request.app.state.orders


def get_write_lock(request: Request) -> asyncio.Lock:
    """Lock held by every request that changes menus or orders."""
    return request.app.state.write_lock


def get_role(
    x_user_role: Optional[str] = Header(None, alias="X-User-Role"),
) -> Optional[UserRole]:
    """Role of the caller, None for anonymous requests."""
    if x_user_role is None:
        return None
    try:
        return UserRole(x_user_role.strip().lower())
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid role. Options: {[r.value for r in UserRole]}"
        )


def require_vendor(role: Optional[UserRole] = Depends(get_role)) -> UserRole:
    if role is None or not role.is_vendor:
        raise HTTPException(status_code=403, detail="Vendor role required")
    return role


# =============================================================================
# APPLICATION FACTORY
# =============================================================================

def create_app(storage: Optional[BaseKeyValueStore] = None) -> FastAPI:
    """
    Build the API application.

    Args:
        storage: Key-value backend to use; the configured one when None

    Returns:
        FastAPI: Application whose stores are created in its lifespan
    """
    settings = get_settings()
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Manage application startup and shutdown events.
        """
        # Startup
        logger.info("=" * 60)
        logger.info(f"🚀 Starting {settings.app_name}")
        logger.info(f"   Version: {settings.app_version}")
        logger.info(f"   Environment: {settings.env_mode.value}")
        logger.info(f"   Debug: {settings.debug}")
        logger.info("=" * 60)

        kv_store = storage or get_key_value_store()
        menu_store = MenuStore(kv_store)
        try:
            await menu_store.start()
        except PersistenceError as e:
            logger.error(f"⚠️ Menu catalog could not be loaded: {e}")

        app.state.storage = kv_store
        app.state.menu_store = menu_store
        app.state.carts = CartSessions()
        app.state.orders = OrderStore(kv_store)
        app.state.write_lock = asyncio.Lock()
        logger.info(f"✅ Storage: {kv_store.provider_name}")

        problems = settings.validate_production_config()
        if problems:
            logger.warning(f"⚠️ Configuration problems: {problems}")

        logger.info("✅ Application ready!")

        yield  # Application runs

        # Shutdown
        logger.info("Shutting down...")
        await kv_store.close()
        if storage is None:
            reset_key_value_store()
        logger.info("✅ Cleanup complete")

    app = FastAPI(
        title=settings.app_name,
        description="Menu, cart and QR services for campus canteen ordering.",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_routes(app)
    register_error_handlers(app)
    return app


# =============================================================================
# ROUTES
# =============================================================================

def register_routes(app: FastAPI) -> None:
    settings = get_settings()

    # -------------------------------------------------------------------------
    # Root & health
    # -------------------------------------------------------------------------

    @app.get("/", tags=["Root"])
    async def root() -> dict[str, str]:
        """API root with navigation links."""
        return {
            "message": f"Welcome to {settings.app_name}",
            "version": settings.app_version,
            "environment": settings.env_mode.value,
            "documentation": "/docs",
            "health": "/health",
        }

    @app.get(
        "/health",
        response_model=HealthResponse,
        tags=["Health"],
        summary="System Health Check",
    )
    async def health_check(request: Request) -> HealthResponse:
        """Verify the storage backend is reachable."""
        kv_store: BaseKeyValueStore = request.app.state.storage
        menu_store: MenuStore = request.app.state.menu_store

        storage_status = "healthy" if await kv_store.health_check() else "unhealthy"
        overall = "operational" if storage_status == "healthy" and menu_store.is_loaded else "degraded"

        return HealthResponse(
            status=overall,
            storage=storage_status,
            storage_backend=kv_store.provider_name,
            menu_loaded=menu_store.is_loaded,
            timestamp=datetime.now(),
        )

    # -------------------------------------------------------------------------
    # Menu
    # -------------------------------------------------------------------------

    @app.get(
        "/api/vendors/{vendor_id}/menu",
        response_model=MenuListResponse,
        tags=["Menu"],
    )
    async def list_menu(
        vendor_id: str,
        available_only: bool = Query(False),
        menu: MenuStore = Depends(get_menu_store),
    ) -> MenuListResponse:
        """Items of a vendor's menu in the order they were added."""
        items = menu.get_items(vendor_id)
        if available_only:
            items = [item for item in items if item.available]
        return MenuListResponse(vendor_id=vendor_id, total=len(items), items=items)

    @app.post(
        "/api/vendors/{vendor_id}/menu",
        response_model=MenuItem,
        status_code=201,
        responses={403: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
        tags=["Menu"],
    )
    async def create_menu_item(
        vendor_id: str,
        item: MenuItemCreate,
        menu: MenuStore = Depends(get_menu_store),
        lock: asyncio.Lock = Depends(get_write_lock),
        role: UserRole = Depends(require_vendor),
    ) -> MenuItem:
        """Add an item to a vendor's menu."""
        logger.info(f"Creating menu item {item.name!r} for vendor {vendor_id}")
        async with lock:
            return await menu.add_item(vendor_id, item)

    @app.put(
        "/api/vendors/{vendor_id}/menu/{item_id}",
        response_model=MenuItem,
        responses={404: {"model": ErrorResponse}},
        tags=["Menu"],
    )
    async def replace_menu_item(
        vendor_id: str,
        item_id: str,
        item: MenuItemCreate,
        menu: MenuStore = Depends(get_menu_store),
        lock: asyncio.Lock = Depends(get_write_lock),
        role: UserRole = Depends(require_vendor),
    ) -> MenuItem:
        """Replace a menu item, keeping its id and position."""
        async with lock:
            updated = await menu.update_item(vendor_id, item_id, item)
        if updated is None:
            raise HTTPException(status_code=404, detail=f"Menu item {item_id} not found")
        return updated

    @app.patch(
        "/api/vendors/{vendor_id}/menu/{item_id}/availability",
        response_model=MenuItem,
        responses={404: {"model": ErrorResponse}},
        tags=["Menu"],
    )
    async def set_menu_item_availability(
        vendor_id: str,
        item_id: str,
        body: AvailabilityUpdate,
        menu: MenuStore = Depends(get_menu_store),
        lock: asyncio.Lock = Depends(get_write_lock),
        role: UserRole = Depends(require_vendor),
    ) -> MenuItem:
        """Mark an item available or unavailable."""
        async with lock:
            updated = await menu.set_availability(vendor_id, item_id, body.available)
        if updated is None:
            raise HTTPException(status_code=404, detail=f"Menu item {item_id} not found")
        return updated

    @app.delete(
        "/api/vendors/{vendor_id}/menu/{item_id}",
        status_code=204,
        tags=["Menu"],
    )
    async def delete_menu_item(
        vendor_id: str,
        item_id: str,
        menu: MenuStore = Depends(get_menu_store),
        lock: asyncio.Lock = Depends(get_write_lock),
        role: UserRole = Depends(require_vendor),
    ) -> Response:
        """Remove a menu item. Deleting a missing item also returns 204."""
        async with lock:
            await menu.remove_item(vendor_id, item_id)
        return Response(status_code=204)

    @app.post(
        "/api/menu/reload",
        response_model=ReloadResponse,
        tags=["Menu"],
    )
    async def reload_menu(
        menu: MenuStore = Depends(get_menu_store),
        orders: OrderStore = Depends(get_order_store),
        lock: asyncio.Lock = Depends(get_write_lock),
    ) -> ReloadResponse:
        """Re-read every catalog from durable storage."""
        async with lock:
            await menu.load_all()
            orders.invalidate()
        vendors = menu.vendors()
        return ReloadResponse(
            success=True,
            vendors=len(vendors),
            items=sum(len(menu.get_items(vendor_id)) for vendor_id in vendors),
        )

    @app.delete("/api/menu", status_code=204, tags=["Menu"])
    async def clear_menu(
        menu: MenuStore = Depends(get_menu_store),
        lock: asyncio.Lock = Depends(get_write_lock),
        role: UserRole = Depends(require_vendor),
    ) -> Response:
        """Delete every vendor's catalog."""
        async with lock:
            await menu.clear_all()
        return Response(status_code=204)

    # -------------------------------------------------------------------------
    # QR
    # -------------------------------------------------------------------------

    @app.get(
        "/api/vendors/{vendor_id}/qr",
        response_model=QRCodeResponse,
        responses={409: {"model": ErrorResponse}},
        tags=["QR"],
    )
    async def vendor_qr(
        vendor_id: str,
        vendor_name: Optional[str] = Query(None, max_length=100),
        menu: MenuStore = Depends(get_menu_store),
        role: UserRole = Depends(require_vendor),
    ) -> QRCodeResponse:
        """QR payloads for a vendor; only offered once the menu has items."""
        if not menu.has_items(vendor_id):
            raise HTTPException(status_code=409, detail="No menu items available")

        return QRCodeResponse(
            vendor_id=vendor_id,
            shop_payload=build_shop_payload(vendor_id),
            menu_payload=build_menu_payload(vendor_id, menu.get_items(vendor_id), vendor_name),
        )

    @app.post(
        "/api/qr/resolve",
        response_model=QRPayload,
        responses={400: {"model": ErrorResponse}},
        tags=["QR"],
    )
    async def resolve_qr(body: QRResolveRequest) -> QRPayload:
        """Decode a scanned payload into the vendor it points to."""
        try:
            return parse_payload(body.payload)
        except InvalidQRPayloadError as e:
            raise HTTPException(status_code=400, detail=str(e))

    # -------------------------------------------------------------------------
    # Carts
    # -------------------------------------------------------------------------

    def cart_response(session_id: str, carts: CartSessions) -> CartResponse:
        carts.prune(session_id)
        cart = carts.peek(session_id)
        state = cart.snapshot() if cart else CartState()
        return CartResponse(session_id=session_id, cart=state)

    @app.get("/api/carts/{session_id}", response_model=CartResponse, tags=["Cart"])
    async def get_cart(
        session_id: str,
        carts: CartSessions = Depends(get_cart_sessions),
    ) -> CartResponse:
        return cart_response(session_id, carts)

    @app.post(
        "/api/carts/{session_id}/items",
        response_model=CartResponse,
        responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
        tags=["Cart"],
    )
    async def add_cart_item(
        session_id: str,
        body: CartAddRequest,
        menu: MenuStore = Depends(get_menu_store),
        carts: CartSessions = Depends(get_cart_sessions),
    ) -> CartResponse:
        """
        Add one unit of a menu item.

        Adding an item from a different vendor empties the cart first.
        """
        item = menu.get_item(body.vendor_id, body.item_id)
        if item is None:
            raise NotFoundError(f"Menu item {body.item_id} not found for vendor {body.vendor_id}")
        if not item.available:
            raise HTTPException(status_code=409, detail=f"{item.name} is currently unavailable")

        try:
            carts.get(session_id).add_item(item, body.vendor_id)
        finally:
            carts.prune(session_id)
        return cart_response(session_id, carts)

    @app.put(
        "/api/carts/{session_id}/items/{item_id}",
        response_model=CartResponse,
        tags=["Cart"],
    )
    async def update_cart_item(
        session_id: str,
        item_id: str,
        body: CartQuantityUpdate,
        carts: CartSessions = Depends(get_cart_sessions),
    ) -> CartResponse:
        """Set a line's quantity; 0 removes it."""
        cart = carts.peek(session_id)
        if cart:
            cart.update_quantity(item_id, body.quantity)
        return cart_response(session_id, carts)

    @app.post(
        "/api/carts/{session_id}/items/{item_id}/increment",
        response_model=CartResponse,
        tags=["Cart"],
    )
    async def increment_cart_item(
        session_id: str,
        item_id: str,
        carts: CartSessions = Depends(get_cart_sessions),
    ) -> CartResponse:
        cart = carts.peek(session_id)
        if cart:
            cart.increment_item(item_id)
        return cart_response(session_id, carts)

    @app.post(
        "/api/carts/{session_id}/items/{item_id}/decrement",
        response_model=CartResponse,
        tags=["Cart"],
    )
    async def decrement_cart_item(
        session_id: str,
        item_id: str,
        carts: CartSessions = Depends(get_cart_sessions),
    ) -> CartResponse:
        cart = carts.peek(session_id)
        if cart:
            cart.decrement_item(item_id)
        return cart_response(session_id, carts)

    @app.delete(
        "/api/carts/{session_id}/items/{item_id}",
        response_model=CartResponse,
        tags=["Cart"],
    )
    async def remove_cart_item(
        session_id: str,
        item_id: str,
        carts: CartSessions = Depends(get_cart_sessions),
    ) -> CartResponse:
        cart = carts.peek(session_id)
        if cart:
            cart.remove_item(item_id)
        return cart_response(session_id, carts)

    @app.delete("/api/carts/{session_id}", status_code=204, tags=["Cart"])
    async def clear_cart(
        session_id: str,
        carts: CartSessions = Depends(get_cart_sessions),
    ) -> Response:
        cart = carts.peek(session_id)
        if cart:
            cart.clear_cart()
        carts.discard(session_id)
        return Response(status_code=204)

    # -------------------------------------------------------------------------
    # Orders
    # -------------------------------------------------------------------------

    @app.post(
        "/api/carts/{session_id}/checkout",
        response_model=Order,
        status_code=201,
        responses={409: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
        tags=["Orders"],
    )
    async def checkout_cart(
        session_id: str,
        body: Optional[CheckoutRequest] = None,
        menu: MenuStore = Depends(get_menu_store),
        carts: CartSessions = Depends(get_cart_sessions),
        orders: OrderStore = Depends(get_order_store),
        lock: asyncio.Lock = Depends(get_write_lock),
    ) -> Order:
        """
        Place an order for the session's cart and empty the cart.

        Every line must still be available on the vendor's menu. If the
        order cannot be saved the cart is kept for another attempt.
        """
        cart = carts.peek(session_id)
        if cart is None or cart.is_empty:
            raise HTTPException(status_code=409, detail="Cart is empty")

        body = body or CheckoutRequest()
        async with lock:
            order = await checkout(
                cart,
                session_id,
                orders,
                menu=menu,
                customer_name=body.customer_name,
                special_instructions=body.special_instructions,
            )
        carts.discard(session_id)
        return order

    @app.get(
        "/api/vendors/{vendor_id}/orders",
        response_model=OrderListResponse,
        tags=["Orders"],
    )
    async def list_orders(
        vendor_id: str,
        status: Optional[str] = Query(None),
        orders: OrderStore = Depends(get_order_store),
        role: UserRole = Depends(require_vendor),
    ) -> OrderListResponse:
        """A vendor's orders, oldest first, optionally filtered by status."""
        status_filter = None
        if status:
            try:
                status_filter = OrderStatus(status.lower())
            except ValueError:
                raise HTTPException(
                    status_code=400,
                    detail=f"Invalid status. Options: {[s.value for s in OrderStatus]}"
                )

        found = await orders.list_orders(vendor_id, status_filter)
        return OrderListResponse(vendor_id=vendor_id, total=len(found), orders=found)

    @app.get(
        "/api/vendors/{vendor_id}/orders/{order_id}",
        response_model=Order,
        responses={404: {"model": ErrorResponse}},
        tags=["Orders"],
    )
    async def get_order(
        vendor_id: str,
        order_id: str,
        orders: OrderStore = Depends(get_order_store),
    ) -> Order:
        """One order, for the vendor's queue or the student's receipt."""
        order = await orders.get_order(vendor_id, order_id)
        if order is None:
            raise HTTPException(status_code=404, detail=f"Order {order_id} not found")
        return order

    @app.patch(
        "/api/vendors/{vendor_id}/orders/{order_id}/status",
        response_model=Order,
        responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
        tags=["Orders"],
    )
    async def update_order_status(
        vendor_id: str,
        order_id: str,
        body: OrderStatusUpdate,
        orders: OrderStore = Depends(get_order_store),
        lock: asyncio.Lock = Depends(get_write_lock),
        role: UserRole = Depends(require_vendor),
    ) -> Order:
        """Advance an order (pending → accepted → preparing → ready → completed) or cancel it."""
        async with lock:
            updated = await orders.update_status(vendor_id, order_id, body.status)
        if updated is None:
            raise HTTPException(status_code=404, detail=f"Order {order_id} not found")
        return updated


# =============================================================================
# ERROR HANDLERS
# =============================================================================

def register_error_handlers(app: FastAPI) -> None:
    settings = get_settings()

    @app.exception_handler(ValidationError)
    async def validation_exception_handler(request: Request, exc: ValidationError) -> JSONResponse:
        logger.info(f"Rejected input on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=422,
            content=jsonable_encoder(
                ErrorResponse(error=str(exc), detail=exc.errors or None)
            ),
        )

    @app.exception_handler(NotFoundError)
    async def not_found_exception_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(
            status_code=404,
            content=jsonable_encoder(ErrorResponse(error=str(exc))),
        )

    @app.exception_handler(ConflictError)
    async def conflict_exception_handler(request: Request, exc: ConflictError) -> JSONResponse:
        return JSONResponse(
            status_code=409,
            content=jsonable_encoder(ErrorResponse(error=str(exc))),
        )

    @app.exception_handler(PersistenceError)
    async def persistence_exception_handler(request: Request, exc: PersistenceError) -> JSONResponse:
        logger.error(f"Storage failure on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=503,
            content=jsonable_encoder(
                ErrorResponse(
                    error="Storage unavailable",
                    detail=str(exc) if settings.debug else None,
                )
            ),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all exception handler."""
        logger.exception(f"Unhandled exception: {exc}")

        content: dict[str, Any] = {
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        }
        return JSONResponse(status_code=500, content=content)


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "canteen.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
