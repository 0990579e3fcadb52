import asyncio
import json
import threading
from datetime import datetime, timezone
from decimal import Decimal

import httpx
import pytest

from bistro import tasks
from bistro.models import OrderStatus, FulfillmentMethod, PaymentMethod
from bistro.schemas import OrderResponse
from bistro.services.integrations import IntegrationConfig
from bistro.services.notifications import (
    OrderNotifier,
    build_payload,
    post_webhook,
    NEW_ORDER_EVENT,
    STATUS_CHANGED_EVENT,
)

WEBHOOK_URL = "https://hooks.example.com/orders"


@pytest.fixture
def order() -> OrderResponse:
    return OrderResponse(
        id=42,
        customer_name="John Doe",
        customer_phone="555-123-4567",
        fulfillment_method=FulfillmentMethod.DELIVERY,
        delivery_address="350 Fifth Avenue",
        payment_method=PaymentMethod.CASH,
        total_amount=Decimal("40.97"),
        status=OrderStatus.PENDING,
        created_at=datetime(2026, 10, 19, 18, 30, tzinfo=timezone.utc),
    )


def client_for(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


# =============================================================================
# PAYLOAD
# =============================================================================

def test_payload_is_json_ready(order):
    payload = build_payload(NEW_ORDER_EVENT, order)

    assert payload["event"] == "new_order"
    assert payload["order"]["id"] == 42
    assert payload["order"]["total_amount"] == "40.97"
    assert payload["order"]["status"] == "pending"
    json.dumps(payload)


# =============================================================================
# HTTP DELIVERY
# =============================================================================

def test_post_webhook_success(order):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(204)

    with client_for(handler) as client:
        result = post_webhook(WEBHOOK_URL, build_payload(NEW_ORDER_EVENT, order), client=client)

    assert result["success"]
    assert result["status_code"] == 204
    assert result["error"] is None
    assert seen[0]["order"]["id"] == 42


def test_post_webhook_server_error(order):
    with client_for(lambda request: httpx.Response(500)) as client:
        result = post_webhook(WEBHOOK_URL, build_payload(NEW_ORDER_EVENT, order), client=client)

    assert not result["success"]
    assert result["status_code"] == 500
    assert result["error"] == "HTTP 500"


def test_post_webhook_connection_error(order):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with client_for(handler) as client:
        result = post_webhook(WEBHOOK_URL, build_payload(NEW_ORDER_EVENT, order), client=client)

    assert not result["success"]
    assert result["status_code"] is None
    assert "connection refused" in result["error"]


def test_post_webhook_timeout(order):
    def handler(request):
        raise httpx.ReadTimeout("slow hook", request=request)

    with client_for(handler) as client:
        result = post_webhook(
            WEBHOOK_URL, build_payload(NEW_ORDER_EVENT, order), timeout=0.5, client=client,
        )

    assert not result["success"]
    assert result["error"] == "timeout"


def test_celery_task_makes_one_attempt(monkeypatch, order):
    calls = []

    def fake_post(url, payload, timeout):
        calls.append((url, payload["event"], timeout))
        return {"success": False, "status_code": 502, "error": "HTTP 502", "response_time_ms": 3.0}

    monkeypatch.setattr(tasks, "post_webhook", fake_post)

    result = tasks.deliver_order_webhook.apply(
        args=(WEBHOOK_URL, build_payload(NEW_ORDER_EVENT, order)),
    ).get()

    assert calls == [(WEBHOOK_URL, "new_order", 5.0)]
    assert result["error"] == "HTTP 502"
    assert "task_id" in result


# =============================================================================
# NOTIFIER
# =============================================================================

async def test_notifier_dispatches_new_order_and_status_change(order):
    sent = []
    notifier = OrderNotifier(dispatch=lambda url, payload: sent.append((url, payload["event"])))
    config = IntegrationConfig(webhook_url=WEBHOOK_URL)

    assert await notifier.notify_new_order(order, config)
    assert await notifier.notify_status_change(order, config)

    assert sent == [(WEBHOOK_URL, NEW_ORDER_EVENT), (WEBHOOK_URL, STATUS_CHANGED_EVENT)]


async def test_notifier_without_url_is_noop(order):
    sent = []
    notifier = OrderNotifier(dispatch=lambda url, payload: sent.append(url))

    assert not await notifier.notify_new_order(order, IntegrationConfig())
    assert not await notifier.notify_new_order(order, None)
    assert sent == []


async def test_notifier_swallows_dispatch_failure(order, caplog):
    def broken(url, payload):
        raise ConnectionError("broker unreachable")

    notifier = OrderNotifier(dispatch=broken)

    assert not await notifier.notify_new_order(order, IntegrationConfig(webhook_url=WEBHOOK_URL))
    assert "broker unreachable" in caplog.text


async def test_blocking_dispatch_leaves_event_loop_free(order):
    started = threading.Event()
    release = threading.Event()

    def slow_publish(url, payload):
        started.set()
        release.wait(timeout=5)

    notifier = OrderNotifier(dispatch=slow_publish)
    pending = asyncio.create_task(
        notifier.notify_new_order(order, IntegrationConfig(webhook_url=WEBHOOK_URL)),
    )

    while not started.is_set():
        await asyncio.sleep(0.01)

    # The publish is still blocked, yet this coroutine keeps running
    assert not pending.done()
    release.set()
    assert await pending
