"""
Order Submission Workflow

Turns a priced cart plus customer details into a persisted order, and
drives the order through its status lifecycle:

    pending ──► confirmed
        └─────► cancelled

Submission steps:
    1. Validate customer, fulfillment and cart; nothing is written on failure
    2. Take the total from the cart (a client-supplied total is only compared)
    3. Write the order and one item per cart line, in one transaction when
       the store supports it, otherwise as two writes with bounded retries
       (each submission carries an idempotency key, so a retry after a lost
       acknowledgement never stores the order twice)
    4. Clear the cart and pick the outcome (order complete / proceed to payment)
    5. Announce the committed order on the admin feed and the webhook;
       both are best-effort

Usage:
    workflow = OrderWorkflow(store, feed=get_order_feed(), notifier=OrderNotifier())
    result = await workflow.submit_order(
        customer, FulfillmentMethod.PICKUP, PaymentMethod.CASH, cart, config,
    )

Author: Bistro Engineering
Version: 1.0.0
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

from bistro.core.config import get_settings
from bistro.core.exceptions import (
    ValidationError,
    PersistenceError,
    InvalidStateTransition,
    NotFound,
)
from bistro.models import OrderStatus, FulfillmentMethod, PaymentMethod
from bistro.schemas import CustomerInfo, DeliveryLocation, OrderResponse, OrderItemResponse
from bistro.services.cart import Cart, quantize_money
from bistro.services.geo import BaseGeoService, get_geo_service
from bistro.services.integrations import IntegrationConfig
from bistro.services.notifications import OrderNotifier
from bistro.services.realtime import BaseOrderFeed
from bistro.services.store.base import BaseStore, NewOrder, NewOrderItem, StoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SubmissionOutcome(str, Enum):
    """What the shopper does next after a successful submission."""
    ORDER_COMPLETE = "order_complete"
    PROCEED_TO_PAYMENT = "proceed_to_payment"


@dataclass
class SubmissionResult:
    order: OrderResponse
    items: list[OrderItemResponse] = field(default_factory=list)
    outcome: SubmissionOutcome = SubmissionOutcome.ORDER_COMPLETE

    @property
    def order_id(self) -> int:
        return self.order.id

    @property
    def requires_payment(self) -> bool:
        return self.outcome is SubmissionOutcome.PROCEED_TO_PAYMENT


class OrderWorkflow:
    """
    Order submission and administrator status changes.

    Args:
        store: Persistence layer for orders
        feed: Realtime feed for new-order alerts (optional)
        notifier: Outbound webhook notifier (optional)
        geo_service: Resolver for map-picked delivery locations; when omitted
            one is chosen from the maps key in the integration config
        retry_attempts: Attempts per store write on transient errors
        retry_delay: Seconds to wait between attempts
    """

    def __init__(
        self,
        store: BaseStore,
        feed: Optional[BaseOrderFeed] = None,
        notifier: Optional[OrderNotifier] = None,
        geo_service: Optional[BaseGeoService] = None,
        retry_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ):
        settings = get_settings()
        self._store = store
        self._feed = feed
        self._notifier = notifier
        self._geo_service = geo_service
        self._retry_attempts = max(1, retry_attempts or settings.persistence_retry_attempts)
        self._retry_delay = (
            settings.persistence_retry_delay if retry_delay is None else retry_delay
        )

    # =========================================================================
    # SUBMISSION
    # =========================================================================

    async def submit_order(
        self,
        customer: CustomerInfo,
        fulfillment: FulfillmentMethod,
        payment: PaymentMethod,
        cart: Cart,
        config: IntegrationConfig,
        delivery_location: Optional[DeliveryLocation] = None,
        client_total: Optional[Decimal] = None,
    ) -> SubmissionResult:
        """
        Validate and persist an order built from ``cart``.

        Raises:
            ValidationError: Required fields are missing; nothing was written
            PersistenceError: The store failed. ``incomplete=True`` means the
                order row exists without its items
        """
        address = await self._delivery_address(customer, fulfillment, config, delivery_location)

        missing = []
        if not customer.name:
            missing.append("name")
        if not customer.phone:
            missing.append("phone")
        if fulfillment is FulfillmentMethod.DELIVERY and not address:
            missing.append("address")
        if cart.is_empty:
            missing.append("cart")
        if missing:
            logger.info(f"Order rejected, missing fields: {missing}")
            raise ValidationError(missing)

        if payment is PaymentMethod.CARD and not config.payments_enabled:
            logger.warning("Card payment requested while payments are disabled; recording as cash")
            payment = PaymentMethod.CASH

        total = cart.total()
        if client_total is not None and quantize_money(client_total) != quantize_money(total):
            logger.warning(
                f"Client total {client_total} does not match cart total {total}; "
                f"using cart total"
            )

        new_order = NewOrder(
            customer_name=customer.name,
            customer_phone=customer.phone,
            customer_email=customer.email,
            fulfillment_method=fulfillment,
            delivery_address=address if fulfillment is FulfillmentMethod.DELIVERY else None,
            payment_method=payment,
            total_amount=quantize_money(total),
            status=OrderStatus.PENDING,
            idempotency_key=uuid.uuid4().hex,
        )
        # Prices are the cart's snapshot, never a fresh menu lookup
        new_items = [
            NewOrderItem(
                menu_item_id=line.item_id,
                quantity=line.quantity,
                price_at_purchase=line.unit_price,
                notes=customer.notes,
            )
            for line in cart
        ]

        if self._store.supports_transactions:
            order, items = await self._write_atomically(new_order, new_items)
        else:
            order, items = await self._write_in_two_steps(new_order, new_items)

        cart.clear()

        outcome = (
            SubmissionOutcome.PROCEED_TO_PAYMENT
            if payment is PaymentMethod.CARD and config.payments_enabled
            else SubmissionOutcome.ORDER_COMPLETE
        )

        logger.info(
            f"Order #{order.id} created: {len(items)} item(s), "
            f"total ${order.total_amount}, {fulfillment.value}, {outcome.value}"
        )

        await self._announce_new_order(order, config)

        return SubmissionResult(order=order, items=items, outcome=outcome)

    async def _delivery_address(
        self,
        customer: CustomerInfo,
        fulfillment: FulfillmentMethod,
        config: IntegrationConfig,
        location: Optional[DeliveryLocation],
    ) -> Optional[str]:
        """Typed address first; otherwise resolve the map-picked location."""
        if customer.address:
            return customer.address
        if fulfillment is not FulfillmentMethod.DELIVERY or location is None:
            return None

        geo = self._geo_service or get_geo_service(config.maps_api_key)
        if geo is None:
            logger.warning("Delivery location given but address lookup is not configured")
            return None

        result = await geo.reverse_geocode(location.lat, location.lng)
        if not result.success:
            logger.warning(
                f"Could not resolve delivery location ({location.lat}, {location.lng}): "
                f"{result.error_code}"
            )
            return None
        return result.formatted_address

    async def _write_atomically(
        self,
        new_order: NewOrder,
        new_items: list[NewOrderItem],
    ) -> tuple[OrderResponse, list[OrderItemResponse]]:
        try:
            return await self._with_retry(
                "create_order_with_items",
                lambda: self._store.create_order_with_items(new_order, new_items),
            )
        except StoreError as e:
            logger.error(f"Order write failed, nothing stored - {e}")
            raise PersistenceError(
                "The order could not be saved",
                transient=e.transient,
            ) from e

    async def _write_in_two_steps(
        self,
        new_order: NewOrder,
        new_items: list[NewOrderItem],
    ) -> tuple[OrderResponse, list[OrderItemResponse]]:
        try:
            order = await self._with_retry(
                "insert_order",
                lambda: self._store.insert_order(new_order),
            )
        except StoreError as e:
            logger.error(f"Order insert failed, nothing stored - {e}")
            raise PersistenceError(
                "The order could not be saved",
                transient=e.transient,
            ) from e

        try:
            items = await self._with_retry(
                "insert_order_items",
                lambda: self._store.insert_order_items(order.id, new_items),
            )
        except StoreError as e:
            logger.error(
                f"Order #{order.id} was stored but its items were not - {e}. "
                f"Needs reconciliation."
            )
            raise PersistenceError(
                f"Order #{order.id} was created without its items",
                order_id=order.id,
                incomplete=True,
                transient=e.transient,
            ) from e

        return order, items

    async def _with_retry(self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        """Run ``call``, retrying transient StoreErrors up to the attempt limit."""
        attempt = 1
        while True:
            try:
                return await call()
            except StoreError as e:
                if not e.transient or attempt >= self._retry_attempts:
                    raise
                logger.warning(
                    f"{operation} failed transiently "
                    f"(attempt {attempt}/{self._retry_attempts}), retrying - {e}"
                )
                attempt += 1
                if self._retry_delay:
                    await asyncio.sleep(self._retry_delay)

    async def _announce_new_order(self, order: OrderResponse, config: IntegrationConfig) -> None:
        if self._feed is not None:
            try:
                await self._feed.publish_order_created(order)
            except Exception as e:
                logger.error(f"Realtime publish failed for order #{order.id} - {e}")

        if self._notifier is not None:
            await self._notifier.notify_new_order(order, config)

    # =========================================================================
    # STATUS CHANGES
    # =========================================================================

    async def set_order_status(
        self,
        order_id: int,
        new_status: OrderStatus,
        config: Optional[IntegrationConfig] = None,
    ) -> OrderResponse:
        """
        Move a pending order to confirmed or cancelled.

        The store update is compare-and-set on the pending status, so of two
        concurrent changes only one wins; the other gets
        ``InvalidStateTransition``.

        Raises:
            NotFound: No order with ``order_id``
            InvalidStateTransition: The order is no longer pending, or the
                target status is not reachable
            PersistenceError: The store failed
        """
        order = await self._read_order(order_id)
        if order is None:
            raise NotFound("Order", order_id)

        if not order.status.can_transition_to(new_status):
            logger.info(
                f"Order #{order_id}: rejected transition "
                f"{order.status.value} -> {new_status.value}"
            )
            raise InvalidStateTransition(order_id, order.status.value, new_status.value)

        try:
            updated = await self._store.update_order_status(
                order_id,
                expected=order.status,
                new=new_status,
            )
        except StoreError as e:
            logger.error(f"Order #{order_id}: status update failed - {e}")
            raise PersistenceError(
                f"Status of order #{order_id} could not be updated",
                order_id=order_id,
                transient=e.transient,
            ) from e

        if updated is None:
            # Lost the race to another status change
            current = await self._read_order(order_id)
            if current is None:
                raise NotFound("Order", order_id)
            raise InvalidStateTransition(order_id, current.status.value, new_status.value)

        logger.info(f"Order #{order_id}: {order.status.value} -> {updated.status.value}")

        await self._announce_status_change(updated, config)

        return updated

    async def _announce_status_change(
        self,
        order: OrderResponse,
        config: Optional[IntegrationConfig],
    ) -> None:
        if self._feed is not None:
            try:
                await self._feed.publish_order_status_changed(order)
            except Exception as e:
                logger.error(f"Realtime publish failed for order #{order.id} status - {e}")

        if self._notifier is not None and config is not None:
            await self._notifier.notify_status_change(order, config)

    async def _read_order(self, order_id: int) -> Optional[OrderResponse]:
        try:
            return await self._store.get_order(order_id)
        except StoreError as e:
            raise PersistenceError(
                f"Order #{order_id} could not be read",
                order_id=order_id,
                transient=e.transient,
            ) from e
