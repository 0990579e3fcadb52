"""
Outbound Order Webhook

Posts order events to an operator-configured URL. Delivery is best-effort:
one attempt, a short timeout, and every failure is logged and returned as a
result instead of raised.

Payload:
    {"event": "new_order" | "order_status_changed", "order": <Order JSON>}

Usage:
    notifier = OrderNotifier()            # queues deliveries on Celery
    await notifier.notify_new_order(order, config)

    # Tests pass their own dispatcher
    sent = []
    notifier = OrderNotifier(dispatch=lambda url, payload: sent.append(payload))

Author: Bistro Engineering
Version: 1.0.0
"""

import asyncio
import logging
import time
from typing import Any, Callable, Optional

import httpx

from bistro.schemas import OrderResponse

logger = logging.getLogger(__name__)

NEW_ORDER_EVENT = "new_order"
STATUS_CHANGED_EVENT = "order_status_changed"

Dispatcher = Callable[[str, dict[str, Any]], None]


def build_payload(event: str, order: OrderResponse) -> dict[str, Any]:
    """JSON-serializable webhook body for ``order``."""
    return {"event": event, "order": order.model_dump(mode="json")}


def post_webhook(
    url: str,
    payload: dict[str, Any],
    timeout: float = 5.0,
    client: Optional[httpx.Client] = None,
) -> dict[str, Any]:
    """
    Make a single POST of ``payload`` to ``url``.

    Args:
        url: Webhook target
        payload: JSON body
        timeout: Seconds before the call is abandoned
        client: Optional pre-built client (tests inject a MockTransport)

    Returns:
        dict with success, status_code, error and response_time_ms
    """
    start = time.perf_counter()
    event = payload.get("event", "unknown")
    owns_client = client is None
    http = client or httpx.Client(timeout=timeout)

    try:
        response = http.post(url, json=payload, timeout=timeout)
        elapsed_ms = round((time.perf_counter() - start) * 1000, 1)

        if response.is_success:
            logger.info(f"Webhook: {event} delivered ({response.status_code}, {elapsed_ms}ms)")
            return {
                "success": True,
                "status_code": response.status_code,
                "error": None,
                "response_time_ms": elapsed_ms,
            }

        logger.warning(f"Webhook: {event} rejected with HTTP {response.status_code}")
        return {
            "success": False,
            "status_code": response.status_code,
            "error": f"HTTP {response.status_code}",
            "response_time_ms": elapsed_ms,
        }

    except httpx.TimeoutException:
        elapsed_ms = round((time.perf_counter() - start) * 1000, 1)
        logger.error(f"Webhook: {event} timed out after {timeout}s")
        return {
            "success": False,
            "status_code": None,
            "error": "timeout",
            "response_time_ms": elapsed_ms,
        }

    except httpx.HTTPError as e:
        elapsed_ms = round((time.perf_counter() - start) * 1000, 1)
        logger.error(f"Webhook: {event} delivery failed - {e}")
        return {
            "success": False,
            "status_code": None,
            "error": str(e) or e.__class__.__name__,
            "response_time_ms": elapsed_ms,
        }

    finally:
        if owns_client:
            http.close()


def queue_webhook(url: str, payload: dict[str, Any]) -> None:
    """Default dispatcher: hand the delivery to the Celery worker (blocking publish)."""
    # Imported here because bistro.tasks imports this module
    from bistro.tasks import deliver_order_webhook

    deliver_order_webhook.delay(url, payload)


class OrderNotifier:
    """
    Sends order events to the configured webhook.

    The notifier never raises: a missing URL is a no-op and a dispatch
    failure (broker down, bad URL) is logged. Return values tell the caller
    whether a delivery was handed off.

    Dispatchers are blocking callables (a Celery publish waits on the
    broker), so they run in the default executor and never hold up the
    event loop serving requests.
    """

    def __init__(self, dispatch: Optional[Dispatcher] = None):
        self._dispatch = dispatch or queue_webhook

    async def notify_new_order(self, order: OrderResponse, config) -> bool:
        return await self._send(NEW_ORDER_EVENT, order, config)

    async def notify_status_change(self, order: OrderResponse, config) -> bool:
        return await self._send(STATUS_CHANGED_EVENT, order, config)

    async def _send(self, event: str, order: OrderResponse, config) -> bool:
        url = config.webhook_url if config is not None else None
        if not url:
            logger.debug(f"Webhook: no URL configured, skipping {event} for order #{order.id}")
            return False

        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._dispatch, url, build_payload(event, order))
        except Exception as e:
            logger.error(f"Webhook: could not dispatch {event} for order #{order.id} - {e}")
            return False

        logger.debug(f"Webhook: {event} for order #{order.id} dispatched")
        return True
