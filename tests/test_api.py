from decimal import Decimal

import pytest
from starlette.websockets import WebSocketDisconnect

from bistro import main
from bistro.services.payment import MockPaymentService
from bistro.services.realtime import InMemoryOrderFeed

ADMIN_TOKEN = "test-admin-token"
WEBHOOK_URL = "https://hooks.example.com/orders"


@pytest.fixture
def ids(menu):
    return {name: item.id for name, item in menu.items()}


def order_body(ids, *lines, **overrides):
    body = {
        "customer": {"name": "John Doe", "phone": "555-123-4567", "email": "john@example.com"},
        "fulfillment_method": "pickup",
        "payment_method": "cash",
        "items": [{"menu_item_id": ids[name], "quantity": qty} for name, qty in lines],
    }
    body.update(overrides)
    return body


# =============================================================================
# MENU & CART
# =============================================================================

def test_menu_lists_available_dishes(client):
    response = client.get("/api/menu")

    assert response.status_code == 200
    names = [item["name"] for item in response.json()]
    assert names == ["Margherita Pizza", "Truffle Pasta", "Caprese Salad"]


def test_menu_by_category(client):
    response = client.get("/api/menu", params={"category": "starters"})
    assert [item["name"] for item in response.json()] == ["Caprese Salad"]


def test_cart_quote(client, ids):
    response = client.post("/api/cart/quote", json={"items": [
        {"menu_item_id": ids["Margherita Pizza"], "quantity": 1},
        {"menu_item_id": ids["Caprese Salad"], "quantity": 2},
    ]})

    assert response.status_code == 200
    quote = response.json()
    assert Decimal(quote["total"]) == Decimal("40.97")
    assert quote["item_count"] == 3
    assert [line["name"] for line in quote["lines"]] == ["Margherita Pizza", "Caprese Salad"]


def test_cart_quote_merges_repeated_ids(client, ids):
    pizza = ids["Margherita Pizza"]
    response = client.post("/api/cart/quote", json={"items": [
        {"menu_item_id": pizza, "quantity": 1},
        {"menu_item_id": pizza, "quantity": 2},
    ]})

    quote = response.json()
    assert len(quote["lines"]) == 1
    assert quote["lines"][0]["quantity"] == 3
    assert Decimal(quote["total"]) == Decimal("44.97")


@pytest.mark.parametrize("dish", ["Seasonal Sorbet", None])
def test_cart_quote_rejects_unknown_or_unavailable(client, ids, dish):
    menu_item_id = ids[dish] if dish else 999
    response = client.post("/api/cart/quote", json={"items": [{"menu_item_id": menu_item_id}]})

    assert response.status_code == 404
    assert response.json()["success"] is False


# =============================================================================
# ORDERS
# =============================================================================

def test_place_order(client, store, ids, sent_webhooks):
    body = order_body(ids, ("Margherita Pizza", 1), ("Caprese Salad", 2), client_total="0.01")

    response = client.post("/api/orders", json=body)

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["message"] == "Order placed successfully!"
    assert data["outcome"] == "order_complete"
    assert data["status"] == "pending"
    assert data["payment"] is None
    assert Decimal(data["total_amount"]) == Decimal("40.97")

    assert store.orders[data["order_id"]].total_amount == Decimal("40.97")
    assert len(store.order_items[data["order_id"]]) == 2
    # Without a configured webhook URL nothing is sent
    assert sent_webhooks == []


def test_empty_order_is_rejected(client, store, ids):
    response = client.post("/api/orders", json=order_body(ids))

    assert response.status_code == 422
    assert response.json()["fields"] == ["cart"]
    assert store.orders == {}


def test_delivery_order_needs_address(client, store, ids):
    body = order_body(ids, ("Truffle Pasta", 1), fulfillment_method="delivery")

    response = client.post("/api/orders", json=body)

    assert response.status_code == 422
    assert response.json()["fields"] == ["address"]
    assert store.calls == ["get_menu_items"]


def test_delivery_order_from_map_pin(client, store, ids):
    body = order_body(
        ids,
        ("Truffle Pasta", 1),
        fulfillment_method="delivery",
        delivery_location={"lat": 40.7128, "lng": -74.0060},
    )

    response = client.post("/api/orders", json=body)

    assert response.status_code == 200
    order = store.orders[response.json()["order_id"]]
    assert order.delivery_address == "389 Greenwich Avenue, New York"


def test_card_order_returns_payment_intent(client, ids, admin_headers):
    client.put(
        "/api/admin/settings/payments",
        json={"enabled": True, "publishable_key": "pk_test_123", "test_mode": True},
        headers=admin_headers,
    )

    response = client.post(
        "/api/orders",
        json=order_body(ids, ("Truffle Pasta", 1), payment_method="card"),
    )

    data = response.json()
    assert data["outcome"] == "proceed_to_payment"
    payment = data["payment"]
    assert payment["available"] is True
    assert payment["provider"] == "mock"
    assert payment["client_secret"].endswith("_secret_mock")
    assert payment["publishable_key"] == "pk_test_123"


def test_card_order_stands_when_intent_fails(client, store, ids, admin_headers):
    main.app.dependency_overrides[main.get_payments] = lambda: MockPaymentService(failure_rate=1.0)
    client.put(
        "/api/admin/settings/payments",
        json={"enabled": True, "publishable_key": "pk_test_123"},
        headers=admin_headers,
    )

    response = client.post(
        "/api/orders",
        json=order_body(ids, ("Truffle Pasta", 1), payment_method="card"),
    )

    assert response.status_code == 200
    data = response.json()
    assert data["payment"]["available"] is False
    assert data["order_id"] in store.orders


def test_card_order_with_payments_disabled_is_cash(client, store, ids):
    response = client.post(
        "/api/orders",
        json=order_body(ids, ("Truffle Pasta", 1), payment_method="card"),
    )

    data = response.json()
    assert data["outcome"] == "order_complete"
    assert data["payment"] is None
    assert store.orders[data["order_id"]].payment_method.value == "cash"


def test_incomplete_order_reports_order_id(client, store, ids):
    store.fail_on("insert_order_items")

    response = client.post("/api/orders", json=order_body(ids, ("Truffle Pasta", 1)))

    assert response.status_code == 500
    data = response.json()
    assert data["incomplete"] is True
    assert data["order_id"] in store.orders


def test_store_outage_is_service_unavailable(client, store, ids):
    store.fail_on("insert_order", transient=True, times=3)

    response = client.post("/api/orders", json=order_body(ids, ("Truffle Pasta", 1)))

    assert response.status_code == 503
    assert response.json()["incomplete"] is False
    assert store.orders == {}


def test_public_payment_settings(client):
    assert client.get("/api/settings/payments").json() == {
        "enabled": False,
        "publishable_key": None,
    }


def test_delivery_address_lookup(client):
    response = client.get("/api/delivery/address", params={"lat": 40.7128, "lng": -74.0060})

    data = response.json()
    assert data["success"] is True
    assert data["address"] == "389 Greenwich Avenue, New York"


def test_delivery_address_lookup_unconfigured(client):
    main.app.dependency_overrides[main.get_geo] = lambda: None

    data = client.get("/api/delivery/address", params={"lat": 1, "lng": 2}).json()

    assert data["success"] is False
    assert data["error_message"] == "Address lookup is not configured"


# =============================================================================
# RESERVATIONS & CONTACT
# =============================================================================

def test_reservation(client, store):
    response = client.post("/api/reservations", json={"name": "Ana", "phone": "555-0100"})
    assert response.status_code == 422
    assert response.json()["fields"] == ["date", "time"]

    response = client.post("/api/reservations", json={
        "name": "Ana", "phone": "555-0100", "date": "2026-11-05", "time": "19:30", "guests": 4,
    })
    assert response.status_code == 201
    assert response.json()["status"] == "requested"
    assert len(store.reservations) == 1


def test_contact_message(client, store):
    response = client.post("/api/contact", json={"name": "Ana"})
    assert response.status_code == 422
    assert response.json()["fields"] == ["email", "message"]

    response = client.post("/api/contact", json={
        "name": "Ana", "email": "ana@example.com", "message": "Do you cater?",
    })
    assert response.status_code == 201
    assert len(store.contact_messages) == 1


# =============================================================================
# ADMIN
# =============================================================================

@pytest.mark.parametrize("headers", [{}, {"X-Admin-Token": "wrong"}])
def test_admin_requires_token(client, headers):
    assert client.get("/api/admin/orders", headers=headers).status_code == 401


def test_admin_order_lifecycle(client, ids, admin_headers, settings_store, sent_webhooks):
    client.put(
        "/api/admin/settings/notifications",
        json={"webhook_url": WEBHOOK_URL},
        headers=admin_headers,
    )
    order_id = client.post(
        "/api/orders", json=order_body(ids, ("Margherita Pizza", 2)),
    ).json()["order_id"]

    listing = client.get("/api/admin/orders", params={"status": "pending"}, headers=admin_headers).json()
    assert listing["total"] == 1
    assert listing["orders"][0]["id"] == order_id

    detail = client.get(f"/api/admin/orders/{order_id}", headers=admin_headers).json()
    assert detail["items"][0]["quantity"] == 2
    assert Decimal(detail["items"][0]["price_at_purchase"]) == Decimal("14.99")

    response = client.post(
        f"/api/admin/orders/{order_id}/status",
        json={"status": "confirmed"},
        headers=admin_headers,
    )
    assert response.status_code == 200
    assert response.json()["status"] == "confirmed"
    assert [payload["event"] for _, payload in sent_webhooks] == ["new_order", "order_status_changed"]

    response = client.post(
        f"/api/admin/orders/{order_id}/status",
        json={"status": "cancelled"},
        headers=admin_headers,
    )
    assert response.status_code == 409
    assert response.json()["current"] == "confirmed"

    response = client.post(
        "/api/admin/orders/9999/status",
        json={"status": "confirmed"},
        headers=admin_headers,
    )
    assert response.status_code == 404

    assert client.get("/api/admin/orders/9999", headers=admin_headers).status_code == 404


def test_admin_menu_crud(client, admin_headers):
    response = client.post("/api/admin/menu", json={
        "name": "Tiramisu", "price": "8.50", "category": "desserts",
    }, headers=admin_headers)
    assert response.status_code == 201
    item_id = response.json()["id"]

    response = client.patch(f"/api/admin/menu/{item_id}", json={"price": "9.00"}, headers=admin_headers)
    assert Decimal(response.json()["price"]) == Decimal("9.00")
    assert response.json()["name"] == "Tiramisu"

    assert client.delete(f"/api/admin/menu/{item_id}", headers=admin_headers).status_code == 204
    assert client.delete(f"/api/admin/menu/{item_id}", headers=admin_headers).status_code == 404
    assert client.patch("/api/admin/menu/9999", json={}, headers=admin_headers).status_code == 404


def test_admin_settings(client, admin_headers):
    response = client.put(
        "/api/admin/settings/payments",
        json={"enabled": True, "publishable_key": "pk_live_abc", "test_mode": False},
        headers=admin_headers,
    )
    assert response.status_code == 200
    assert client.get("/api/admin/settings/payments", headers=admin_headers).json()["test_mode"] is False
    assert client.get("/api/settings/payments").json()["publishable_key"] == "pk_live_abc"

    response = client.put("/api/admin/settings/maps", json={"api_key": "AIza-key"}, headers=admin_headers)
    assert response.json()["configured"] is True
    assert "AIza-key" not in response.text

    response = client.put(
        "/api/admin/settings/notifications",
        json={"webhook_url": "ftp://example.com"},
        headers=admin_headers,
    )
    assert response.status_code == 422


def test_admin_inbox(client, admin_headers):
    client.post("/api/reservations", json={
        "name": "Ana", "phone": "555-0100", "date": "2026-11-05", "time": "19:30",
    })
    client.post("/api/contact", json={"name": "Ana", "email": "ana@example.com", "message": "Hi"})

    assert len(client.get("/api/admin/reservations", headers=admin_headers).json()) == 1
    assert len(client.get("/api/admin/contact", headers=admin_headers).json()) == 1


# =============================================================================
# REALTIME FEED
# =============================================================================

def test_admin_feed_receives_new_orders(client, feed, ids):
    with client.websocket_connect(f"/ws/admin/orders?token={ADMIN_TOKEN}") as websocket:
        order_id = client.post(
            "/api/orders", json=order_body(ids, ("Caprese Salad", 1)),
        ).json()["order_id"]

        message = websocket.receive_json()
        assert feed.subscriber_count == 1

    assert message["event"] == "new_order"
    assert message["alert"] is True
    assert message["order"]["id"] == order_id
    assert feed.subscriber_count == 0


def test_admin_feed_rejects_missing_token(client, feed):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/ws/admin/orders"):
            pass
    assert feed.subscriber_count == 0


def test_admin_feed_forwards_status_changes_and_menu_edits(client, ids, admin_headers):
    order_id = client.post(
        "/api/orders", json=order_body(ids, ("Truffle Pasta", 1)),
    ).json()["order_id"]

    with client.websocket_connect(f"/ws/admin/orders?token={ADMIN_TOKEN}") as websocket:
        client.post(
            f"/api/admin/orders/{order_id}/status",
            json={"status": "cancelled"},
            headers=admin_headers,
        )
        status_change = websocket.receive_json()

        item_id = client.post("/api/admin/menu", json={
            "name": "Tiramisu", "price": "8.50", "category": "desserts",
        }, headers=admin_headers).json()["id"]
        created = websocket.receive_json()

        client.patch(f"/api/admin/menu/{item_id}", json={"price": "9.00"}, headers=admin_headers)
        updated = websocket.receive_json()

        client.delete(f"/api/admin/menu/{item_id}", headers=admin_headers)
        deleted = websocket.receive_json()

    assert status_change["event"] == "order_status_changed"
    assert status_change["alert"] is False
    assert status_change["order"]["id"] == order_id
    assert status_change["order"]["status"] == "cancelled"

    assert created["event"] == "menu_item_created"
    assert created["menu_item"]["name"] == "Tiramisu"
    assert created["alert"] is False

    assert updated["event"] == "menu_item_updated"
    assert Decimal(updated["menu_item"]["price"]) == Decimal("9.00")

    assert deleted == {"event": "menu_item_deleted", "menu_item_id": item_id, "alert": False}


def test_admin_feed_delivers_order_published_while_subscribing(client, store, ids):
    order_id = client.post(
        "/api/orders", json=order_body(ids, ("Caprese Salad", 1)),
    ).json()["order_id"]

    class BusyFeed(InMemoryOrderFeed):
        """An order lands in the same instant the session subscribes."""

        async def subscribe(self, handler):
            subscription = await super().subscribe(handler)
            await self.publish_order_created(store.orders[order_id])
            return subscription

    busy = BusyFeed()
    main.app.dependency_overrides[main.get_feed] = lambda: busy

    with client.websocket_connect(f"/ws/admin/orders?token={ADMIN_TOKEN}") as websocket:
        message = websocket.receive_json()

    assert message["event"] == "new_order"
    assert message["order"]["id"] == order_id


def test_admin_feed_closes_when_subscription_fails(client):
    class DroppedFeed(InMemoryOrderFeed):
        async def subscribe(self, handler):
            subscription = await super().subscribe(handler)
            subscription.mark_failed(ConnectionError("redis connection lost"))
            return subscription

    dropped = DroppedFeed()
    main.app.dependency_overrides[main.get_feed] = lambda: dropped

    with client.websocket_connect(f"/ws/admin/orders?token={ADMIN_TOKEN}") as websocket:
        websocket.send_text("ping")
        with pytest.raises(WebSocketDisconnect) as exc_info:
            websocket.receive_json()

    assert exc_info.value.code == 1011
    assert dropped.subscriber_count == 0
