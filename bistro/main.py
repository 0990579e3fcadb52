"""
FastAPI Application Entry Point

Bistro Ordering - backend for a single-restaurant website.
Supports both Mock services (development) and Real APIs (production).

Public endpoints:
    - GET  /api/menu: Available dishes, optionally by category
    - POST /api/cart/quote: Price a cart from current menu prices
    - POST /api/orders: Submit an order
    - GET  /api/settings/payments: Whether card payments are offered
    - GET  /api/delivery/address: Resolve a map pin to an address
    - POST /api/reservations: Request a table
    - POST /api/contact: Send a message
    - GET  /health: System health check

Admin endpoints (X-Admin-Token header):
    - /api/admin/menu: Create, update and delete dishes
    - /api/admin/orders: List orders, view one, confirm/cancel
    - /api/admin/settings/{payments,maps,notifications}: Integrations
    - /api/admin/reservations, /api/admin/contact: Inbox
    - WS /ws/admin/orders?token=...: Live new orders (with alert), status
      changes and menu edits

Author: Bistro Engineering
Version: 1.0.0
"""

import logging
import secrets
from datetime import datetime, timezone
from typing import Optional
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import (
    APIRouter,
    FastAPI,
    HTTPException,
    Depends,
    Query,
    Request,
    Header,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from fastapi.responses import JSONResponse, Response
from fastapi.middleware.cors import CORSMiddleware
from redis.exceptions import RedisError
from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

# Internal imports
from bistro.core.config import get_settings, setup_logging
from bistro.core.exceptions import (
    ValidationError,
    PersistenceError,
    InvalidStateTransition,
    NotFound,
)
from bistro.database import get_db, init_db, engine
from bistro.models import MenuCategory, OrderStatus
from bistro.schemas import (
    MenuItemCreate,
    MenuItemUpdate,
    MenuItemResponse,
    CartItemRequest,
    CartQuoteRequest,
    CartQuoteResponse,
    OrderCreate,
    OrderResponse,
    OrderDetailResponse,
    OrderCreateResponse,
    OrderListResponse,
    OrderStatusUpdate,
    PaymentInstructions,
    PaymentSettingsUpdate,
    PaymentSettingsResponse,
    PublicPaymentSettings,
    MapsSettingsUpdate,
    MapsSettingsResponse,
    NotificationSettingsUpdate,
    NotificationSettingsResponse,
    AddressLookupResponse,
    ReservationCreate,
    ReservationResponse,
    ContactMessageCreate,
    ContactMessageResponse,
    ErrorResponse,
    HealthResponse,
)
from bistro.services import integrations
from bistro.services.cart import Cart
from bistro.services.geo import BaseGeoService, get_geo_service
from bistro.services.integrations import IntegrationConfig, load_integration_config
from bistro.services.notifications import OrderNotifier
from bistro.services.ordering import OrderWorkflow
from bistro.services.payment import BasePaymentService, get_payment_service
from bistro.services.realtime import (
    BaseOrderFeed,
    FeedEvent,
    FeedEventType,
    get_order_feed,
)
from bistro.services.store import (
    BaseStore,
    BaseSettingsStore,
    StoreError,
    get_store,
    get_settings_store,
)

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    # Initialize database
    await init_db()

    feed = get_order_feed()
    logger.info(f"Order feed: {feed.provider_name}")

    # Validate production config
    missing = settings.validate_production_config()
    if missing:
        logger.warning(f"Missing production config: {missing}")
    if not settings.admin_api_token and not settings.is_development:
        logger.warning("ADMIN_API_TOKEN is not set; admin endpoints will refuse every request")

    logger.info("Application ready")

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    await feed.close()
    await engine.dispose()
    logger.info("Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Ordering backend for a single restaurant: menu, cart pricing, "
        "takeout/delivery orders and the admin dashboard API."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_feed() -> BaseOrderFeed:
    return get_order_feed()


def get_notifier() -> OrderNotifier:
    return OrderNotifier()


def get_payments() -> Optional[BasePaymentService]:
    """Payment service, or None when the provider is not configured."""
    try:
        return get_payment_service()
    except ValueError as e:
        logger.error(f"Payment service unavailable - {e}")
        return None


async def get_integration_config(
    settings_store: BaseSettingsStore = Depends(get_settings_store),
) -> IntegrationConfig:
    return await load_integration_config(settings_store, get_settings())


def get_geo(
    config: IntegrationConfig = Depends(get_integration_config),
) -> Optional[BaseGeoService]:
    return get_geo_service(config.maps_api_key)


def get_workflow(
    store: BaseStore = Depends(get_store),
    feed: BaseOrderFeed = Depends(get_feed),
    notifier: OrderNotifier = Depends(get_notifier),
    geo: Optional[BaseGeoService] = Depends(get_geo),
) -> OrderWorkflow:
    return OrderWorkflow(store, feed=feed, notifier=notifier, geo_service=geo)


def _admin_token_valid(token: Optional[str]) -> bool:
    current = get_settings()
    expected = current.admin_api_token
    if not expected:
        # Only a local development server runs without an admin token
        return current.is_development
    return bool(token) and secrets.compare_digest(token, expected)


async def require_admin(x_admin_token: Optional[str] = Header(None)) -> None:
    """Gate for every admin endpoint."""
    if not _admin_token_valid(x_admin_token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Admin token missing or invalid",
        )


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

async def build_cart(store: BaseStore, requested: list[CartItemRequest]) -> Cart:
    """
    Build a cart from menu ids and quantities using current menu prices.

    Raises:
        NotFound: An id is unknown or the dish is not available
    """
    cart = Cart()
    if not requested:
        return cart

    menu = await store.get_menu_items([r.menu_item_id for r in requested])

    for r in requested:
        item = menu.get(r.menu_item_id)
        if item is None or not item.available:
            raise NotFound("Menu item", r.menu_item_id)
        line = cart.get_line(item.id)
        previous = line.quantity if line else 0
        cart.add_item(item)
        cart.update_quantity(item.id, previous + r.quantity)

    return cart


async def start_payment(
    payments: Optional[BasePaymentService],
    order: OrderResponse,
    config: IntegrationConfig,
) -> PaymentInstructions:
    """Create a payment intent for a stored order; the order stands either way."""
    if payments is None:
        return PaymentInstructions(
            available=False,
            error_message="Card payments are temporarily unavailable",
        )

    result = await payments.create_payment_intent(
        amount=order.total_amount,
        currency=settings.stripe_currency,
        metadata={"order_id": str(order.id), "customer_name": order.customer_name},
    )

    if not result.success:
        logger.warning(f"Order #{order.id}: payment intent failed - {result.error_code}")
        return PaymentInstructions(
            available=False,
            provider=payments.provider_name,
            error_message=result.error_message,
        )

    return PaymentInstructions(
        available=True,
        provider=payments.provider_name,
        payment_intent_id=result.payment_intent_id,
        client_secret=result.client_secret,
        publishable_key=config.publishable_key,
    )


# =============================================================================
# ROOT & HEALTH
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "docs": "/docs",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    db: AsyncSession = Depends(get_db),
    settings_store: BaseSettingsStore = Depends(get_settings_store),
    payments: Optional[BasePaymentService] = Depends(get_payments),
) -> HealthResponse:
    """Verify all system components are operational."""

    # Check database
    db_status = "healthy"
    try:
        await db.execute(select(func.now()))
    except SQLAlchemyError as e:
        db_status = f"unhealthy: {e.__class__.__name__}"
        logger.error(f"Database health check failed: {e}")

    # Check Redis
    redis_status = "healthy"
    r = aioredis.from_url(settings.redis_url, socket_timeout=2)
    try:
        await r.ping()
    except RedisError as e:
        redis_status = f"unhealthy: {e.__class__.__name__}"
        logger.error(f"Redis health check failed: {e}")
    finally:
        await r.aclose()

    # Check payment service
    if payments is None:
        payment_status = "unconfigured"
    else:
        payment_status = "healthy" if await payments.health_check() else "unhealthy"

    # Check geo service
    maps_key = settings.google_maps_api_key
    if db_status == "healthy":
        try:
            maps_key = (await load_integration_config(settings_store, settings)).maps_api_key
        except StoreError as e:
            logger.error(f"Could not load integration settings: {e}")
    geo_service = get_geo_service(maps_key)
    if geo_service is None:
        geo_status = "unconfigured"
    else:
        geo_status = "healthy" if await geo_service.health_check() else "unhealthy"

    overall = "operational" if all(
        s == "healthy" for s in [db_status, redis_status]
    ) and "unhealthy" not in (payment_status, geo_status) else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        redis=redis_status,
        payment_service=payment_status,
        geo_service=geo_status,
        timestamp=datetime.now(timezone.utc),
    )


# =============================================================================
# MENU & CART
# =============================================================================

@app.get("/api/menu", response_model=list[MenuItemResponse], tags=["Menu"])
async def list_menu(
    category: Optional[MenuCategory] = Query(None),
    store: BaseStore = Depends(get_store),
) -> list[MenuItemResponse]:
    """Dishes currently on offer."""
    return await store.list_menu_items(category=category, available_only=True)


@app.post("/api/cart/quote", response_model=CartQuoteResponse, tags=["Cart"])
async def quote_cart(
    request: CartQuoteRequest,
    store: BaseStore = Depends(get_store),
) -> CartQuoteResponse:
    """Price a cart with the current menu."""
    cart = await build_cart(store, request.items)
    return cart.to_quote()


# =============================================================================
# ORDER API ENDPOINTS
# =============================================================================

@app.post(
    "/api/orders",
    response_model=OrderCreateResponse,
    responses={
        404: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
    tags=["Orders"],
    summary="Submit Order",
)
async def create_order(
    order_data: OrderCreate,
    store: BaseStore = Depends(get_store),
    workflow: OrderWorkflow = Depends(get_workflow),
    config: IntegrationConfig = Depends(get_integration_config),
    payments: Optional[BasePaymentService] = Depends(get_payments),
) -> OrderCreateResponse:
    """
    Submit an order from the order page.

    Prices come from the menu; ``client_total`` is only compared. When the
    shopper pays by card and payments are enabled, the response carries the
    payment intent the browser must confirm.
    """
    logger.info(f"Order submission from: {order_data.customer.name or '<no name>'}")

    cart = await build_cart(store, order_data.items)
    result = await workflow.submit_order(
        order_data.customer,
        order_data.fulfillment_method,
        order_data.payment_method,
        cart,
        config,
        delivery_location=order_data.delivery_location,
        client_total=order_data.client_total,
    )

    payment = None
    message = "Order placed successfully!"
    if result.requires_payment:
        payment = await start_payment(payments, result.order, config)
        message = (
            "Order placed. Continue to payment."
            if payment.available
            else "Order placed, but card payment is unavailable. Please pay on delivery or pickup."
        )

    return OrderCreateResponse(
        success=True,
        message=message,
        order_id=result.order.id,
        outcome=result.outcome.value,
        status=result.order.status,
        total_amount=result.order.total_amount,
        payment=payment,
    )


@app.get(
    "/api/settings/payments",
    response_model=PublicPaymentSettings,
    tags=["Settings"],
)
async def public_payment_settings(
    settings_store: BaseSettingsStore = Depends(get_settings_store),
) -> PublicPaymentSettings:
    """Whether the order page should offer card payments."""
    return await integrations.get_public_payment_settings(settings_store)


@app.get(
    "/api/delivery/address",
    response_model=AddressLookupResponse,
    tags=["Delivery"],
)
async def lookup_delivery_address(
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    geo: Optional[BaseGeoService] = Depends(get_geo),
) -> AddressLookupResponse:
    """Resolve a map pin to a delivery address."""
    if geo is None:
        return AddressLookupResponse(
            success=False,
            latitude=lat,
            longitude=lng,
            error_message="Address lookup is not configured",
        )

    result = await geo.reverse_geocode(lat, lng)
    return AddressLookupResponse(
        success=result.success,
        address=result.formatted_address,
        latitude=lat,
        longitude=lng,
        error_message=result.error_message,
    )


# =============================================================================
# RESERVATIONS & CONTACT
# =============================================================================

@app.post(
    "/api/reservations",
    response_model=ReservationResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Reservations"],
)
async def create_reservation(
    data: ReservationCreate,
    store: BaseStore = Depends(get_store),
) -> ReservationResponse:
    missing = data.missing_fields()
    if missing:
        raise ValidationError(missing)

    reservation = await store.create_reservation(data)
    logger.info(f"Reservation #{reservation.id} requested for {reservation.date} {reservation.time}")
    return reservation


@app.post(
    "/api/contact",
    response_model=ContactMessageResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Contact"],
)
async def send_contact_message(
    data: ContactMessageCreate,
    store: BaseStore = Depends(get_store),
) -> ContactMessageResponse:
    missing = data.missing_fields()
    if missing:
        raise ValidationError(missing)

    message = await store.create_contact_message(data)
    logger.info(f"Contact message #{message.id} received")
    return message


# =============================================================================
# ADMIN API
# =============================================================================

admin = APIRouter(
    prefix="/api/admin",
    tags=["Admin"],
    dependencies=[Depends(require_admin)],
)


async def announce_menu_change(
    feed: BaseOrderFeed,
    event: FeedEventType,
    item: Optional[MenuItemResponse] = None,
    item_id: Optional[int] = None,
) -> None:
    """Push a menu edit to open dashboards; a feed failure never fails the edit."""
    try:
        await feed.publish_menu_change(event, item=item, item_id=item_id)
    except Exception as e:
        logger.error(f"Realtime publish failed for {event.value} - {e}")


@admin.post("/menu", response_model=MenuItemResponse, status_code=status.HTTP_201_CREATED)
async def create_menu_item(
    data: MenuItemCreate,
    store: BaseStore = Depends(get_store),
    feed: BaseOrderFeed = Depends(get_feed),
) -> MenuItemResponse:
    item = await store.create_menu_item(data)
    logger.info(f"Menu item #{item.id} created: {item.name}")
    await announce_menu_change(feed, FeedEventType.MENU_ITEM_CREATED, item=item)
    return item


@admin.patch("/menu/{item_id}", response_model=MenuItemResponse)
async def update_menu_item(
    item_id: int,
    data: MenuItemUpdate,
    store: BaseStore = Depends(get_store),
    feed: BaseOrderFeed = Depends(get_feed),
) -> MenuItemResponse:
    item = await store.update_menu_item(item_id, data)
    if item is None:
        raise NotFound("Menu item", item_id)
    logger.info(f"Menu item #{item_id} updated")
    await announce_menu_change(feed, FeedEventType.MENU_ITEM_UPDATED, item=item)
    return item


@admin.delete("/menu/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_menu_item(
    item_id: int,
    store: BaseStore = Depends(get_store),
    feed: BaseOrderFeed = Depends(get_feed),
) -> Response:
    if not await store.delete_menu_item(item_id):
        raise NotFound("Menu item", item_id)
    logger.info(f"Menu item #{item_id} deleted")
    await announce_menu_change(feed, FeedEventType.MENU_ITEM_DELETED, item_id=item_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@admin.get("/orders", response_model=OrderListResponse)
async def list_orders(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    store: BaseStore = Depends(get_store),
) -> OrderListResponse:
    """Orders newest first."""
    total = await store.count_orders(status_filter)
    orders = await store.list_orders(status_filter, offset=skip, limit=limit)
    return OrderListResponse(total=total, orders=orders)


@admin.get("/orders/{order_id}", response_model=OrderDetailResponse)
async def get_order(
    order_id: int,
    store: BaseStore = Depends(get_store),
) -> OrderDetailResponse:
    order = await store.get_order(order_id)
    if order is None:
        raise NotFound("Order", order_id)
    items = await store.get_order_items(order_id)
    return OrderDetailResponse(**order.model_dump(), items=items)


@admin.post("/orders/{order_id}/status", response_model=OrderResponse)
async def change_order_status(
    order_id: int,
    update: OrderStatusUpdate,
    workflow: OrderWorkflow = Depends(get_workflow),
    config: IntegrationConfig = Depends(get_integration_config),
) -> OrderResponse:
    """Confirm or cancel a pending order."""
    return await workflow.set_order_status(order_id, update.status, config)


@admin.get("/settings/payments", response_model=PaymentSettingsResponse)
async def read_payment_settings(
    settings_store: BaseSettingsStore = Depends(get_settings_store),
) -> PaymentSettingsResponse:
    return await integrations.get_payment_settings(settings_store)


@admin.put("/settings/payments", response_model=PaymentSettingsResponse)
async def write_payment_settings(
    update: PaymentSettingsUpdate,
    settings_store: BaseSettingsStore = Depends(get_settings_store),
) -> PaymentSettingsResponse:
    return await integrations.save_payment_settings(settings_store, update)


@admin.get("/settings/maps", response_model=MapsSettingsResponse)
async def read_maps_settings(
    settings_store: BaseSettingsStore = Depends(get_settings_store),
) -> MapsSettingsResponse:
    return await integrations.get_maps_settings(settings_store, get_settings())


@admin.put("/settings/maps", response_model=MapsSettingsResponse)
async def write_maps_settings(
    update: MapsSettingsUpdate,
    settings_store: BaseSettingsStore = Depends(get_settings_store),
) -> MapsSettingsResponse:
    return await integrations.save_maps_settings(settings_store, get_settings(), update)


@admin.get("/settings/notifications", response_model=NotificationSettingsResponse)
async def read_notification_settings(
    settings_store: BaseSettingsStore = Depends(get_settings_store),
) -> NotificationSettingsResponse:
    return await integrations.get_notification_settings(settings_store)


@admin.put("/settings/notifications", response_model=NotificationSettingsResponse)
async def write_notification_settings(
    update: NotificationSettingsUpdate,
    settings_store: BaseSettingsStore = Depends(get_settings_store),
) -> NotificationSettingsResponse:
    return await integrations.save_notification_settings(settings_store, update)


@admin.get("/reservations", response_model=list[ReservationResponse])
async def list_reservations(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    store: BaseStore = Depends(get_store),
) -> list[ReservationResponse]:
    return await store.list_reservations(offset=skip, limit=limit)


@admin.get("/contact", response_model=list[ContactMessageResponse])
async def list_contact_messages(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    store: BaseStore = Depends(get_store),
) -> list[ContactMessageResponse]:
    return await store.list_contact_messages(offset=skip, limit=limit)


app.include_router(admin)


# =============================================================================
# REALTIME ADMIN FEED
# =============================================================================

@app.websocket("/ws/admin/orders")
async def admin_order_feed(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    feed: BaseOrderFeed = Depends(get_feed),
):
    """
    Push live changes to an admin dashboard session.

    Frames are ``FeedEvent.to_message()``: new orders (``alert: true``,
    the dashboard's sound/visual alert), status changes and menu edits.
    One subscription per connection, released when the socket closes. If
    the feed dies underneath the session, the socket is closed with 1011 on
    the next keepalive so the dashboard reconnects.
    """
    if not _admin_token_valid(token):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    async def push(event: FeedEvent) -> None:
        await websocket.send_json(event.to_message())

    # Accept and subscribe run back to back on this task, so nothing is
    # published to a socket that is not accepted yet
    await websocket.accept()
    subscription = await feed.subscribe(push)
    logger.info("Admin order feed connected")

    try:
        while True:
            # Incoming frames are only keepalives
            await websocket.receive_text()
            if subscription.failed:
                logger.warning("Admin order feed lost its subscription; closing session")
                await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
                break
    except WebSocketDisconnect:
        logger.info("Admin order feed disconnected")
    finally:
        await subscription.unsubscribe()


# =============================================================================
# ERROR HANDLERS
# =============================================================================

def _error(status_code: int, body: dict) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, **body})


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return _error(422, exc.to_dict())


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound) -> JSONResponse:
    return _error(status.HTTP_404_NOT_FOUND, exc.to_dict())


@app.exception_handler(InvalidStateTransition)
async def invalid_transition_handler(request: Request, exc: InvalidStateTransition) -> JSONResponse:
    return _error(status.HTTP_409_CONFLICT, exc.to_dict())


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    if exc.transient and not exc.incomplete:
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return _error(code, exc.to_dict())


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    code = (
        status.HTTP_503_SERVICE_UNAVAILABLE
        if exc.transient
        else status.HTTP_500_INTERNAL_SERVER_ERROR
    )
    return _error(code, {"error": "StoreError", "detail": "The data store is unavailable"})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return _error(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        {
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )
