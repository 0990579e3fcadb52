"""
Realtime Admin Feed Abstract Base Class

Push channel for changes an admin dashboard shows live:

    new_order              a new order was committed (triggers the alert)
    order_status_changed   an order was confirmed or cancelled
    menu_item_created      \\
    menu_item_updated       > the menu was edited
    menu_item_deleted      /

Admin websocket sessions subscribe once on connect and dispose of the
subscription when the session ends, so each session receives each event
exactly once.

Design Pattern: Observer
    - ``publish(event)`` is called after the change is committed
    - ``subscribe(handler)`` returns a disposable ``Subscription``
    - ``publish_order_created`` / ``on_order_created`` are the new-order
      shortcuts used by the order workflow

Author: Bistro Engineering
Version: 1.0.0
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel

from bistro.schemas import MenuItemResponse, OrderResponse

logger = logging.getLogger(__name__)


class FeedEventType(str, Enum):
    NEW_ORDER = "new_order"
    ORDER_STATUS_CHANGED = "order_status_changed"
    MENU_ITEM_CREATED = "menu_item_created"
    MENU_ITEM_UPDATED = "menu_item_updated"
    MENU_ITEM_DELETED = "menu_item_deleted"


class FeedEvent(BaseModel):
    """One change pushed to admin sessions."""

    event: FeedEventType
    order: Optional[OrderResponse] = None
    menu_item: Optional[MenuItemResponse] = None
    menu_item_id: Optional[int] = None

    @property
    def alert(self) -> bool:
        """Only new orders make the dashboard ring."""
        return self.event is FeedEventType.NEW_ORDER

    @property
    def subject(self) -> str:
        if self.order is not None:
            return f"order #{self.order.id}"
        return f"menu item #{self.menu_item_id}"

    def to_message(self) -> dict[str, Any]:
        """Websocket frame for the admin dashboard."""
        message = self.model_dump(mode="json", exclude_none=True)
        message["alert"] = self.alert
        return message


OrderHandler = Callable[[OrderResponse], Awaitable[None]]
EventHandler = Callable[[FeedEvent], Awaitable[None]]


class Subscription:
    """
    Handle returned by ``subscribe`` and ``on_order_created``.

    ``unsubscribe`` may be called any number of times; only the first call
    tears anything down. Also usable as an async context manager:

        async with await feed.on_order_created(handler):
            ...

    ``failed`` is set when the feed stops delivering on its own (for
    example a dropped Redis connection); the session should reconnect.
    """

    def __init__(self, cancel: Callable[[], Awaitable[None]]):
        self._cancel: Optional[Callable[[], Awaitable[None]]] = cancel
        self.error: Optional[BaseException] = None

    @property
    def active(self) -> bool:
        return self._cancel is not None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def mark_failed(self, error: BaseException) -> None:
        self.error = error

    async def unsubscribe(self) -> None:
        cancel, self._cancel = self._cancel, None
        if cancel is not None:
            await cancel()

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.unsubscribe()


async def deliver(handler: EventHandler, event: FeedEvent) -> None:
    """Run one handler; its failure is logged and never reaches other handlers."""
    try:
        await handler(event)
    except Exception as e:
        logger.exception(f"Feed handler failed for {event.subject}: {e}")


class BaseOrderFeed(ABC):
    """Abstract realtime feed for admin dashboards."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        pass

    @abstractmethod
    async def publish(self, event: FeedEvent) -> None:
        """Announce a committed change to every current subscriber."""
        pass

    @abstractmethod
    async def subscribe(self, handler: EventHandler) -> Subscription:
        """Register ``handler`` for every event until the subscription is disposed."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        pass

    async def close(self) -> None:
        """Release connections held by the feed."""
        pass

    # =========================================================================
    # SHORTCUTS
    # =========================================================================

    async def publish_order_created(self, order: OrderResponse) -> None:
        await self.publish(FeedEvent(event=FeedEventType.NEW_ORDER, order=order))

    async def publish_order_status_changed(self, order: OrderResponse) -> None:
        await self.publish(FeedEvent(event=FeedEventType.ORDER_STATUS_CHANGED, order=order))

    async def publish_menu_change(
        self,
        event: FeedEventType,
        item: Optional[MenuItemResponse] = None,
        item_id: Optional[int] = None,
    ) -> None:
        await self.publish(FeedEvent(
            event=event,
            menu_item=item,
            menu_item_id=item.id if item is not None else item_id,
        ))

    async def on_order_created(self, handler: OrderHandler) -> Subscription:
        """Register ``handler`` for new orders only."""
        async def on_event(event: FeedEvent) -> None:
            if event.event is FeedEventType.NEW_ORDER:
                await handler(event.order)

        return await self.subscribe(on_event)
