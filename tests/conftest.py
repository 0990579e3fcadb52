"""
Shared fixtures: in-memory store, feed and collaborators, plus a TestClient
wired to them through FastAPI dependency overrides.
"""

import os
from contextlib import asynccontextmanager

# Settings are cached on first use, so the environment is fixed before any
# bistro module is imported.
os.environ["ENV_MODE"] = "development"
os.environ["ADMIN_API_TOKEN"] = "test-admin-token"
os.environ["PERSISTENCE_RETRY_DELAY"] = "0"

import pytest
from fastapi.testclient import TestClient

from bistro.schemas import CustomerInfo
from bistro.services.cart import Cart
from bistro.services.geo import MockGeoService
from bistro.services.integrations import IntegrationConfig
from bistro.services.notifications import OrderNotifier
from bistro.services.ordering import OrderWorkflow
from bistro.services.payment import MockPaymentService
from bistro.services.realtime import InMemoryOrderFeed
from bistro.services.store import MemoryStore, MemorySettingsStore

WEBHOOK_URL = "https://hooks.example.com/orders"
ADMIN_TOKEN = "test-admin-token"

SAMPLE_MENU = [
    {
        "name": "Margherita Pizza",
        "description": "Tomato, mozzarella, basil",
        "price": "14.99",
        "category": "mains",
    },
    {
        "name": "Truffle Pasta",
        "description": "Tagliatelle, black truffle, parmesan",
        "price": "18.99",
        "category": "mains",
    },
    {
        "name": "Caprese Salad",
        "description": "Buffalo mozzarella, heirloom tomatoes",
        "price": "12.99",
        "category": "starters",
    },
    {
        "name": "Seasonal Sorbet",
        "description": "Ask your server",
        "price": "6.50",
        "category": "desserts",
        "available": False,
    },
]


@pytest.fixture
def store() -> MemoryStore:
    store = MemoryStore()
    store.seed_menu(SAMPLE_MENU)
    return store


@pytest.fixture
def menu(store):
    """Seeded menu items keyed by name."""
    return {item.name: item for item in store.menu_items.values()}


@pytest.fixture
def settings_store() -> MemorySettingsStore:
    return MemorySettingsStore()


@pytest.fixture
def feed() -> InMemoryOrderFeed:
    return InMemoryOrderFeed()


@pytest.fixture
def sent_webhooks() -> list:
    return []


@pytest.fixture
def notifier(sent_webhooks) -> OrderNotifier:
    return OrderNotifier(dispatch=lambda url, payload: sent_webhooks.append((url, payload)))


@pytest.fixture
def geo() -> MockGeoService:
    return MockGeoService()


@pytest.fixture
def workflow(store, feed, notifier, geo) -> OrderWorkflow:
    return OrderWorkflow(
        store,
        feed=feed,
        notifier=notifier,
        geo_service=geo,
        retry_attempts=3,
        retry_delay=0,
    )


@pytest.fixture
def config() -> IntegrationConfig:
    return IntegrationConfig(webhook_url=WEBHOOK_URL)


@pytest.fixture
def customer() -> CustomerInfo:
    return CustomerInfo(name="John Doe", phone="555-123-4567", email="john@example.com")


@pytest.fixture
def make_cart(menu):
    """Build a cart from (name, quantity) pairs."""
    def _make(*lines: tuple[str, int]) -> Cart:
        cart = Cart()
        for name, quantity in lines:
            cart.add_item(menu[name])
            cart.update_quantity(menu[name].id, quantity)
        return cart
    return _make


@pytest.fixture
def payments() -> MockPaymentService:
    return MockPaymentService()


@asynccontextmanager
async def no_lifespan(app):
    yield


@pytest.fixture
def client(monkeypatch, store, settings_store, feed, notifier, geo, payments):
    """
    TestClient on the in-memory collaborators.

    The lifespan (database setup) is replaced so no PostgreSQL is needed;
    entering the client keeps HTTP calls and websockets on one event loop.
    """
    from bistro import main

    monkeypatch.setattr(main.app.router, "lifespan_context", no_lifespan)
    main.app.dependency_overrides.update({
        main.get_store: lambda: store,
        main.get_settings_store: lambda: settings_store,
        main.get_feed: lambda: feed,
        main.get_notifier: lambda: notifier,
        main.get_geo: lambda: geo,
        main.get_payments: lambda: payments,
    })
    with TestClient(main.app) as test_client:
        yield test_client
    main.app.dependency_overrides.clear()


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-Admin-Token": ADMIN_TOKEN}
