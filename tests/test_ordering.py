import logging
from decimal import Decimal

import pytest

from bistro.core.exceptions import ValidationError, PersistenceError
from bistro.models import OrderStatus, FulfillmentMethod, PaymentMethod
from bistro.schemas import CustomerInfo, DeliveryLocation
from bistro.services.cart import Cart
from bistro.services.geo import MockGeoService
from bistro.services.integrations import IntegrationConfig
from bistro.services.notifications import OrderNotifier
from bistro.services.ordering import OrderWorkflow, SubmissionOutcome
from bistro.services.realtime import InMemoryOrderFeed
from bistro.services.store import MemoryStore

PICKUP = FulfillmentMethod.PICKUP
DELIVERY = FulfillmentMethod.DELIVERY
CASH = PaymentMethod.CASH
CARD = PaymentMethod.CARD


# =============================================================================
# VALIDATION
# =============================================================================

async def test_empty_cart_is_rejected_without_store_calls(workflow, store, customer, config):
    with pytest.raises(ValidationError) as exc_info:
        await workflow.submit_order(customer, PICKUP, CASH, Cart(), config)

    assert exc_info.value.fields == ["cart"]
    assert store.calls == []
    assert store.orders == {}


async def test_all_missing_fields_are_reported(workflow, store, config):
    with pytest.raises(ValidationError) as exc_info:
        await workflow.submit_order(CustomerInfo(), DELIVERY, CASH, Cart(), config)

    assert exc_info.value.fields == ["name", "phone", "address", "cart"]
    assert store.calls == []


async def test_blank_name_and_phone_are_missing(workflow, store, make_cart, config):
    customer = CustomerInfo(name="   ", phone="")
    cart = make_cart(("Margherita Pizza", 1))

    with pytest.raises(ValidationError) as exc_info:
        await workflow.submit_order(customer, PICKUP, CASH, cart, config)

    assert exc_info.value.fields == ["name", "phone"]
    assert store.calls == []
    assert len(cart) == 1


async def test_delivery_without_address_is_rejected(workflow, store, customer, make_cart, config):
    cart = make_cart(("Margherita Pizza", 1), ("Caprese Salad", 2))

    with pytest.raises(ValidationError) as exc_info:
        await workflow.submit_order(customer, DELIVERY, CASH, cart, config)

    assert exc_info.value.fields == ["address"]
    assert store.calls == []


async def test_pickup_needs_no_address(workflow, customer, make_cart, config):
    result = await workflow.submit_order(
        customer, PICKUP, CASH, make_cart(("Truffle Pasta", 1)), config,
    )
    assert result.order.delivery_address is None
    assert result.order.fulfillment_method is PICKUP


async def test_delivery_address_from_map_location(workflow, geo, customer, make_cart, config):
    location = DeliveryLocation(lat=40.7128, lng=-74.0060)
    expected = (await geo.reverse_geocode(location.lat, location.lng)).formatted_address

    result = await workflow.submit_order(
        customer, DELIVERY, CASH, make_cart(("Margherita Pizza", 1)), config,
        delivery_location=location,
    )

    assert result.order.delivery_address == expected


async def test_typed_address_wins_over_map_location(workflow, make_cart, config):
    customer = CustomerInfo(name="Jane Roe", phone="555-000-1111", address="350 Fifth Avenue")

    result = await workflow.submit_order(
        customer, DELIVERY, CASH, make_cart(("Margherita Pizza", 1)), config,
        delivery_location=DeliveryLocation(lat=1.0, lng=2.0),
    )

    assert result.order.delivery_address == "350 Fifth Avenue"


async def test_unresolvable_map_location_counts_as_missing_address(store, customer, make_cart, config):
    workflow = OrderWorkflow(
        store,
        geo_service=MockGeoService(failure_rate=1.0),
        retry_delay=0,
    )

    with pytest.raises(ValidationError) as exc_info:
        await workflow.submit_order(
            customer, DELIVERY, CASH, make_cart(("Margherita Pizza", 1)), config,
            delivery_location=DeliveryLocation(lat=40.0, lng=-73.0),
        )

    assert exc_info.value.fields == ["address"]
    assert store.calls == []


# =============================================================================
# TOTALS & ITEMS
# =============================================================================

async def test_tampered_client_total_is_ignored(workflow, store, customer, make_cart, config, caplog):
    cart = make_cart(("Margherita Pizza", 1), ("Truffle Pasta", 1))

    with caplog.at_level(logging.WARNING, logger="bistro.services.ordering"):
        result = await workflow.submit_order(
            customer, PICKUP, CASH, cart, config, client_total=Decimal("0.01"),
        )

    assert result.order.total_amount == Decimal("33.98")
    assert store.orders[result.order_id].total_amount == Decimal("33.98")
    assert "does not match cart total" in caplog.text


async def test_end_to_end_order_with_items(workflow, store, menu, customer, make_cart, config):
    cart = make_cart(("Margherita Pizza", 1), ("Caprese Salad", 2))

    result = await workflow.submit_order(customer, PICKUP, CASH, cart, config)

    stored = store.orders[result.order_id]
    assert stored.total_amount == Decimal("40.97")
    assert stored.status is OrderStatus.PENDING

    items = store.order_items[result.order_id]
    assert len(items) == 2
    assert [(i.menu_item_id, i.quantity, i.price_at_purchase) for i in items] == [
        (menu["Margherita Pizza"].id, 1, Decimal("14.99")),
        (menu["Caprese Salad"].id, 2, Decimal("12.99")),
    ]
    assert result.outcome is SubmissionOutcome.ORDER_COMPLETE


async def test_item_prices_are_cart_snapshots(workflow, store, menu, customer, make_cart, config):
    cart = make_cart(("Margherita Pizza", 1))
    # A later menu price change must not leak into the order
    store.menu_items[menu["Margherita Pizza"].id] = menu["Margherita Pizza"].model_copy(
        update={"price": Decimal("99.00")}
    )

    result = await workflow.submit_order(customer, PICKUP, CASH, cart, config)

    assert result.items[0].price_at_purchase == Decimal("14.99")
    assert result.order.total_amount == Decimal("14.99")


async def test_notes_are_copied_to_every_item(workflow, make_cart, config):
    customer = CustomerInfo(name="John Doe", phone="555-123-4567", notes="No onions please")

    result = await workflow.submit_order(
        customer, PICKUP, CASH,
        make_cart(("Margherita Pizza", 1), ("Caprese Salad", 1)),
        config,
    )

    assert [i.notes for i in result.items] == ["No onions please", "No onions please"]


async def test_cart_is_cleared_after_success(workflow, customer, make_cart, config):
    cart = make_cart(("Margherita Pizza", 2))
    await workflow.submit_order(customer, PICKUP, CASH, cart, config)
    assert cart.is_empty


# =============================================================================
# OUTCOMES
# =============================================================================

async def test_card_with_payments_enabled_proceeds_to_payment(workflow, customer, make_cart):
    config = IntegrationConfig(payments_enabled=True, publishable_key="pk_test_123")

    result = await workflow.submit_order(
        customer, PICKUP, CARD, make_cart(("Truffle Pasta", 1)), config,
    )

    assert result.outcome is SubmissionOutcome.PROCEED_TO_PAYMENT
    assert result.requires_payment
    assert result.order.payment_method is CARD


async def test_card_with_payments_disabled_completes_as_cash(workflow, customer, make_cart, config):
    result = await workflow.submit_order(
        customer, PICKUP, CARD, make_cart(("Truffle Pasta", 1)), config,
    )

    assert result.outcome is SubmissionOutcome.ORDER_COMPLETE
    assert result.order.payment_method is CASH


async def test_cash_always_completes(workflow, customer, make_cart):
    config = IntegrationConfig(payments_enabled=True)
    result = await workflow.submit_order(
        customer, PICKUP, CASH, make_cart(("Truffle Pasta", 1)), config,
    )
    assert result.outcome is SubmissionOutcome.ORDER_COMPLETE


# =============================================================================
# PERSISTENCE FAILURES
# =============================================================================

async def test_transactional_store_writes_once(feed, notifier, customer, make_cart, config):
    store = MemoryStore(transactional=True)
    store.seed_menu([{"name": "Soup", "price": "7.50", "category": "starters"}])
    cart = Cart()
    cart.add_item(next(iter(store.menu_items.values())))
    workflow = OrderWorkflow(store, feed=feed, notifier=notifier, retry_delay=0)

    result = await workflow.submit_order(customer, PICKUP, CASH, cart, config)

    assert store.calls == ["create_order_with_items"]
    assert len(store.order_items[result.order_id]) == 1


async def test_transactional_failure_writes_nothing(customer, config):
    store = MemoryStore(transactional=True)
    store.seed_menu([{"name": "Soup", "price": "7.50", "category": "starters"}])
    store.fail_on("create_order_with_items", transient=True, times=3)
    cart = Cart()
    cart.add_item(next(iter(store.menu_items.values())))
    workflow = OrderWorkflow(store, retry_attempts=3, retry_delay=0)

    with pytest.raises(PersistenceError) as exc_info:
        await workflow.submit_order(customer, PICKUP, CASH, cart, config)

    error = exc_info.value
    assert not error.incomplete
    assert error.transient
    assert error.order_id is None
    assert store.orders == {}
    assert store.calls.count("create_order_with_items") == 3
    assert not cart.is_empty


async def test_retry_after_lost_commit_keeps_one_order(customer, config):
    store = MemoryStore(transactional=True)
    store.seed_menu([{"name": "Soup", "price": "7.50", "category": "starters"}])
    # The first commit lands but the caller only sees a dropped connection
    store.fail_on("create_order_with_items", transient=True, after_write=True)
    cart = Cart()
    cart.add_item(next(iter(store.menu_items.values())))
    workflow = OrderWorkflow(store, retry_attempts=3, retry_delay=0)

    result = await workflow.submit_order(customer, PICKUP, CASH, cart, config)

    assert store.calls == ["create_order_with_items", "create_order_with_items"]
    assert list(store.orders) == [result.order_id]
    assert len(store.order_items[result.order_id]) == 1
    assert len(result.items) == 1


async def test_order_insert_failure_reports_nothing_written(workflow, store, customer, make_cart, config, feed, sent_webhooks):
    store.fail_on("insert_order")
    cart = make_cart(("Margherita Pizza", 1))

    with pytest.raises(PersistenceError) as exc_info:
        await workflow.submit_order(customer, PICKUP, CASH, cart, config)

    assert not exc_info.value.incomplete
    assert not exc_info.value.transient
    assert store.orders == {}
    assert "insert_order_items" not in store.calls
    assert not cart.is_empty
    assert sent_webhooks == []


async def test_item_insert_failure_reports_incomplete_order(workflow, store, customer, make_cart, config, feed, sent_webhooks):
    received = []

    async def handler(order):
        received.append(order)

    await feed.on_order_created(handler)
    store.fail_on("insert_order_items")

    with pytest.raises(PersistenceError) as exc_info:
        await workflow.submit_order(
            customer, PICKUP, CASH, make_cart(("Margherita Pizza", 1)), config,
        )

    error = exc_info.value
    assert error.incomplete
    order_id = error.order_id
    assert order_id in store.orders
    assert store.order_items.get(order_id, []) == []
    assert str(order_id) in str(error)
    assert received == []
    assert sent_webhooks == []


async def test_transient_item_failure_is_retried(workflow, store, customer, make_cart, config):
    store.fail_on("insert_order_items", transient=True, times=2)

    result = await workflow.submit_order(
        customer, PICKUP, CASH, make_cart(("Caprese Salad", 2)), config,
    )

    assert store.calls.count("insert_order_items") == 3
    assert store.calls.count("insert_order") == 1
    assert len(store.order_items[result.order_id]) == 1


async def test_two_step_retries_after_lost_writes_store_once(workflow, store, customer, make_cart, config):
    store.fail_on("insert_order", transient=True, after_write=True)
    store.fail_on("insert_order_items", transient=True, after_write=True)

    result = await workflow.submit_order(
        customer, PICKUP, CASH, make_cart(("Caprese Salad", 2), ("Truffle Pasta", 1)), config,
    )

    assert store.calls.count("insert_order") == 2
    assert store.calls.count("insert_order_items") == 2
    assert list(store.orders) == [result.order_id]
    assert len(store.order_items[result.order_id]) == 2


async def test_retries_are_bounded(workflow, store, customer, make_cart, config):
    store.fail_on("insert_order_items", transient=True, times=5)

    with pytest.raises(PersistenceError) as exc_info:
        await workflow.submit_order(
            customer, PICKUP, CASH, make_cart(("Caprese Salad", 2)), config,
        )

    assert exc_info.value.incomplete
    assert exc_info.value.transient
    assert store.calls.count("insert_order_items") == 3


async def test_permanent_item_failure_is_not_retried(workflow, store, customer, make_cart, config):
    store.fail_on("insert_order_items", transient=False)

    with pytest.raises(PersistenceError):
        await workflow.submit_order(
            customer, PICKUP, CASH, make_cart(("Caprese Salad", 2)), config,
        )

    assert store.calls.count("insert_order_items") == 1


# =============================================================================
# NOTIFICATIONS
# =============================================================================

async def test_new_order_is_published_and_sent_to_webhook(workflow, feed, customer, make_cart, config, sent_webhooks):
    received = []

    async def handler(order):
        received.append(order)

    await feed.on_order_created(handler)

    result = await workflow.submit_order(
        customer, PICKUP, CASH, make_cart(("Margherita Pizza", 1)), config,
    )

    assert [o.id for o in received] == [result.order_id]
    assert len(sent_webhooks) == 1
    url, payload = sent_webhooks[0]
    assert url == config.webhook_url
    assert payload["event"] == "new_order"
    assert payload["order"]["id"] == result.order_id


async def test_no_webhook_without_url(workflow, customer, make_cart, sent_webhooks):
    await workflow.submit_order(
        customer, PICKUP, CASH, make_cart(("Margherita Pizza", 1)), IntegrationConfig(),
    )
    assert sent_webhooks == []


async def test_notification_failures_do_not_fail_the_order(store, customer, make_cart, config):
    class BrokenFeed(InMemoryOrderFeed):
        async def publish_order_created(self, order):
            raise ConnectionError("redis down")

    def broken_dispatch(url, payload):
        raise ConnectionError("broker down")

    workflow = OrderWorkflow(
        store,
        feed=BrokenFeed(),
        notifier=OrderNotifier(dispatch=broken_dispatch),
        retry_delay=0,
    )

    result = await workflow.submit_order(
        customer, PICKUP, CASH, make_cart(("Margherita Pizza", 1)), config,
    )

    assert result.order_id in store.orders
