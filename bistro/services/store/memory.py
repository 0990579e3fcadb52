"""
In-Memory Store Implementation

Process-local implementation of the store contract, used by the test suite
and by local simulations that should not need PostgreSQL.

Behavior:
    - Non-transactional by default, like a hosted REST table API: an order
      and its items are two separate writes. Pass ``transactional=True`` to
      make ``create_order_with_items`` all-or-nothing.
    - Failures can be injected per operation with ``fail_on`` to exercise
      the workflow's error paths, either before the write or after it has
      landed (a commit whose acknowledgement was lost)
    - Orders carrying an idempotency key are written at most once
    - Every call is recorded in ``calls``

Author: Bistro Engineering
Version: 1.0.0
"""

import json
import logging
from collections import defaultdict
from dataclasses import asdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from bistro.models import MenuCategory, OrderStatus, ReservationStatus
from bistro.schemas import (
    MenuItemCreate,
    MenuItemUpdate,
    MenuItemResponse,
    OrderResponse,
    OrderItemResponse,
    ReservationCreate,
    ReservationResponse,
    ContactMessageCreate,
    ContactMessageResponse,
)
from bistro.services.cart import quantize_money
from bistro.services.store.base import (
    BaseStore,
    BaseSettingsStore,
    NewOrder,
    NewOrderItem,
    StoreError,
)

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class MemoryStore(BaseStore):
    """
    Dictionary-backed store.

    Example:
        >>> store = MemoryStore()
        >>> store.fail_on("insert_order_items", transient=False)
        >>> # next insert_order_items call raises StoreError
    """

    def __init__(self, transactional: bool = False):
        self._transactional = transactional
        self.orders: dict[int, OrderResponse] = {}
        self.order_items: dict[int, list[OrderItemResponse]] = defaultdict(list)
        self.menu_items: dict[int, MenuItemResponse] = {}
        self.reservations: dict[int, ReservationResponse] = {}
        self.contact_messages: dict[int, ContactMessageResponse] = {}
        self.calls: list[str] = []
        self._failures: dict[str, list[tuple[StoreError, bool]]] = defaultdict(list)
        self._order_keys: dict[str, int] = {}
        self._ids: dict[str, int] = defaultdict(int)

    @property
    def supports_transactions(self) -> bool:
        return self._transactional

    # =========================================================================
    # TEST HOOKS
    # =========================================================================

    def fail_on(
        self,
        operation: str,
        transient: bool = False,
        times: int = 1,
        after_write: bool = False,
    ) -> None:
        """
        Make the next ``times`` calls of ``operation`` raise StoreError.

        With ``after_write=True`` the write is kept and the error is raised
        afterwards (order writes only).
        """
        for _ in range(times):
            error = StoreError(
                f"Simulated {operation} failure",
                operation=operation,
                transient=transient,
            )
            self._failures[operation].append((error, after_write))

    def _raise_injected(self, operation: str, after_write: bool) -> None:
        pending = self._failures.get(operation)
        if pending and pending[0][1] == after_write:
            error, _ = pending.pop(0)
            logger.debug(f"Memory: injected failure for {operation}")
            raise error

    def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        self._raise_injected(operation, after_write=False)

    def _leave(self, operation: str) -> None:
        self._raise_injected(operation, after_write=True)

    def _next_id(self, table: str) -> int:
        self._ids[table] += 1
        return self._ids[table]

    # =========================================================================
    # ORDERS
    # =========================================================================

    def _build_order(self, order: NewOrder) -> OrderResponse:
        fields = asdict(order)
        key = fields.pop("idempotency_key")
        fields["total_amount"] = quantize_money(order.total_amount)
        row = OrderResponse(id=self._next_id("orders"), created_at=_now(), **fields)
        if key:
            self._order_keys[key] = row.id
        return row

    def _existing_order(self, order: NewOrder) -> Optional[OrderResponse]:
        if not order.idempotency_key:
            return None
        order_id = self._order_keys.get(order.idempotency_key)
        return self.orders.get(order_id) if order_id is not None else None

    def _build_items(
        self,
        order_id: int,
        items: list[NewOrderItem],
    ) -> list[OrderItemResponse]:
        rows = []
        for item in items:
            fields = asdict(item)
            fields["price_at_purchase"] = quantize_money(item.price_at_purchase)
            rows.append(
                OrderItemResponse(id=self._next_id("order_items"), order_id=order_id, **fields)
            )
        return rows

    async def insert_order(self, order: NewOrder) -> OrderResponse:
        self._enter("insert_order")
        existing = self._existing_order(order)
        if existing is not None:
            return existing
        row = self._build_order(order)
        self.orders[row.id] = row
        self._leave("insert_order")
        return row

    async def insert_order_items(
        self,
        order_id: int,
        items: list[NewOrderItem],
    ) -> list[OrderItemResponse]:
        self._enter("insert_order_items")
        if order_id not in self.orders:
            raise StoreError(
                f"Order #{order_id} does not exist",
                operation="insert_order_items",
            )
        if self.order_items.get(order_id):
            # Items of an order are written once
            return list(self.order_items[order_id])
        rows = self._build_items(order_id, items)
        self.order_items[order_id].extend(rows)
        self._leave("insert_order_items")
        return rows

    async def create_order_with_items(
        self,
        order: NewOrder,
        items: list[NewOrderItem],
    ) -> tuple[OrderResponse, list[OrderItemResponse]]:
        if not self._transactional:
            created = await self.insert_order(order)
            return created, await self.insert_order_items(created.id, items)

        # Nothing is stored unless the whole unit succeeds
        self._enter("create_order_with_items")
        existing = self._existing_order(order)
        if existing is not None:
            return existing, list(self.order_items[existing.id])
        row = self._build_order(order)
        rows = self._build_items(row.id, items)
        self.orders[row.id] = row
        self.order_items[row.id] = rows
        self._leave("create_order_with_items")
        return row, rows

    async def get_order(self, order_id: int) -> Optional[OrderResponse]:
        self._enter("get_order")
        return self.orders.get(order_id)

    async def get_order_items(self, order_id: int) -> list[OrderItemResponse]:
        self._enter("get_order_items")
        return list(self.order_items.get(order_id, []))

    def _filtered_orders(self, status: Optional[OrderStatus]) -> list[OrderResponse]:
        orders = [o for o in self.orders.values() if status is None or o.status == status]
        return sorted(orders, key=lambda o: (o.created_at, o.id), reverse=True)

    async def list_orders(
        self,
        status: Optional[OrderStatus] = None,
        offset: int = 0,
        limit: int = 50,
    ) -> list[OrderResponse]:
        self._enter("list_orders")
        return self._filtered_orders(status)[offset:offset + limit]

    async def count_orders(self, status: Optional[OrderStatus] = None) -> int:
        self._enter("count_orders")
        return len(self._filtered_orders(status))

    async def update_order_status(
        self,
        order_id: int,
        expected: OrderStatus,
        new: OrderStatus,
    ) -> Optional[OrderResponse]:
        self._enter("update_order_status")
        current = self.orders.get(order_id)
        if current is None or current.status != expected:
            return None
        updated = current.model_copy(update={"status": new, "updated_at": _now()})
        self.orders[order_id] = updated
        return updated

    # =========================================================================
    # MENU
    # =========================================================================

    async def list_menu_items(
        self,
        category: Optional[MenuCategory] = None,
        available_only: bool = False,
    ) -> list[MenuItemResponse]:
        self._enter("list_menu_items")
        items = [
            item for item in self.menu_items.values()
            if (category is None or item.category == category)
            and (item.available or not available_only)
        ]
        return sorted(items, key=lambda i: (i.category.value, i.name))

    async def get_menu_items(self, item_ids: list[int]) -> dict[int, MenuItemResponse]:
        self._enter("get_menu_items")
        return {i: self.menu_items[i] for i in item_ids if i in self.menu_items}

    async def get_menu_item(self, item_id: int) -> Optional[MenuItemResponse]:
        self._enter("get_menu_item")
        return self.menu_items.get(item_id)

    async def create_menu_item(self, data: MenuItemCreate) -> MenuItemResponse:
        self._enter("create_menu_item")
        item = MenuItemResponse(id=self._next_id("menu_items"), **data.model_dump())
        self.menu_items[item.id] = item
        return item

    async def update_menu_item(
        self,
        item_id: int,
        data: MenuItemUpdate,
    ) -> Optional[MenuItemResponse]:
        self._enter("update_menu_item")
        current = self.menu_items.get(item_id)
        if current is None:
            return None
        updated = current.model_copy(update=data.model_dump(exclude_unset=True))
        self.menu_items[item_id] = updated
        return updated

    async def delete_menu_item(self, item_id: int) -> bool:
        self._enter("delete_menu_item")
        return self.menu_items.pop(item_id, None) is not None

    def seed_menu(self, items: list[dict[str, Any]]) -> list[MenuItemResponse]:
        """Synchronously load menu items (test fixtures, simulations)."""
        created = []
        for data in items:
            payload = dict(data)
            payload["price"] = Decimal(str(payload["price"]))
            item = MenuItemResponse(id=self._next_id("menu_items"), **payload)
            self.menu_items[item.id] = item
            created.append(item)
        return created

    # =========================================================================
    # RESERVATIONS & CONTACT
    # =========================================================================

    async def create_reservation(self, data: ReservationCreate) -> ReservationResponse:
        self._enter("create_reservation")
        row = ReservationResponse(
            id=self._next_id("reservations"),
            status=ReservationStatus.REQUESTED,
            created_at=_now(),
            **data.model_dump(),
        )
        self.reservations[row.id] = row
        return row

    async def list_reservations(
        self,
        offset: int = 0,
        limit: int = 50,
    ) -> list[ReservationResponse]:
        self._enter("list_reservations")
        rows = sorted(self.reservations.values(), key=lambda r: r.id, reverse=True)
        return rows[offset:offset + limit]

    async def create_contact_message(
        self,
        data: ContactMessageCreate,
    ) -> ContactMessageResponse:
        self._enter("create_contact_message")
        row = ContactMessageResponse(
            id=self._next_id("contact_messages"),
            created_at=_now(),
            **data.model_dump(),
        )
        self.contact_messages[row.id] = row
        return row

    async def list_contact_messages(
        self,
        offset: int = 0,
        limit: int = 50,
    ) -> list[ContactMessageResponse]:
        self._enter("list_contact_messages")
        rows = sorted(self.contact_messages.values(), key=lambda r: r.id, reverse=True)
        return rows[offset:offset + limit]


class MemorySettingsStore(BaseSettingsStore):
    """Settings kept as JSON text, exactly as the settings table holds them."""

    def __init__(self):
        self._values: dict[str, str] = {}

    def set_raw(self, key: str, text: str) -> None:
        self._values[key] = text

    async def get(self, key: str) -> Optional[dict[str, Any]]:
        text = self._values.get(key)
        if text is None:
            return None
        try:
            value = json.loads(text)
        except json.JSONDecodeError:
            logger.error(f"Setting '{key}' is not valid JSON; ignoring it")
            return None
        return value if isinstance(value, dict) else None

    async def upsert(self, key: str, value: dict[str, Any]) -> None:
        self._values[key] = json.dumps(value)
