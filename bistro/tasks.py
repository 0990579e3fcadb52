"""
Celery Tasks
Background delivery of order webhooks.
"""

import logging

from bistro.celery_worker import celery_app
from bistro.core.config import get_settings
from bistro.services.notifications.webhook import post_webhook

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=0, ignore_result=False)
def deliver_order_webhook(self, url: str, payload: dict) -> dict:
    """
    POST one order event to the operator's webhook.

    Single attempt, no retries; the outcome is logged and returned.

    Args:
        url: Webhook target
        payload: ``{"event": ..., "order": {...}}``

    Returns:
        dict: Result of the delivery attempt
    """
    task_id = self.request.id
    order_id = (payload.get("order") or {}).get("id", "unknown")

    logger.info(f"Task {task_id}: delivering {payload.get('event')} for order #{order_id}")

    result = post_webhook(url, payload, timeout=get_settings().webhook_timeout_seconds)
    result["task_id"] = task_id

    if not result["success"]:
        logger.warning(f"Task {task_id}: webhook for order #{order_id} not delivered - {result['error']}")

    return result
