"""
Notifications Package

Outbound webhook for new orders and status changes.

Usage:
    from bistro.services.notifications import OrderNotifier

    notifier = OrderNotifier()
    await notifier.notify_new_order(order, config)

Author: Bistro Engineering
Version: 1.0.0
"""

from bistro.services.notifications.webhook import (
    OrderNotifier,
    Dispatcher,
    build_payload,
    post_webhook,
    queue_webhook,
    NEW_ORDER_EVENT,
    STATUS_CHANGED_EVENT,
)

__all__ = [
    "OrderNotifier",
    "Dispatcher",
    "build_payload",
    "post_webhook",
    "queue_webhook",
    "NEW_ORDER_EVENT",
    "STATUS_CHANGED_EVENT",
]
