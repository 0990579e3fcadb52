"""
SQLAlchemy Store Implementation

Production implementation of the store contract on an ``AsyncSession``.
Orders and their items are written in one database transaction, so the
workflow never has to deal with an order that exists without its items.
A commit can succeed on the server while the client sees a connection
error; the retried write then finds the order by its idempotency key and
returns it instead of inserting a duplicate.

SQLAlchemy errors are rolled back and re-raised as ``StoreError``;
connection-level failures (OperationalError, InterfaceError, pool timeouts)
are flagged as transient so the workflow can retry them.

Author: Bistro Engineering
Version: 1.0.0
"""

import json
import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any, Optional

from sqlalchemy import select, update, delete, func
from sqlalchemy.exc import (
    SQLAlchemyError,
    OperationalError,
    InterfaceError,
    TimeoutError as PoolTimeoutError,
)
from sqlalchemy.ext.asyncio import AsyncSession

from bistro.models import (
    MenuCategory,
    MenuItem,
    Order,
    OrderItem,
    OrderStatus,
    Setting,
    Reservation,
    ContactMessage,
)
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

TRANSIENT_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError)


def _order_row(order: NewOrder) -> Order:
    fields = asdict(order)
    fields["total_amount"] = quantize_money(order.total_amount)
    return Order(**fields)


def _item_row(order_id: int, item: NewOrderItem) -> OrderItem:
    fields = asdict(item)
    fields["price_at_purchase"] = quantize_money(item.price_at_purchase)
    return OrderItem(order_id=order_id, **fields)


class SqlStore(BaseStore):
    """
    Store backed by PostgreSQL through SQLAlchemy.

    One instance wraps one request-scoped session.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    @property
    def supports_transactions(self) -> bool:
        return True

    @asynccontextmanager
    async def _guard(self, operation: str):
        """Roll back and translate any SQLAlchemy error raised inside."""
        try:
            yield
        except SQLAlchemyError as e:
            await self._session.rollback()
            transient = isinstance(e, TRANSIENT_ERRORS)
            logger.error(f"SQL: {operation} failed (transient={transient}) - {e}")
            raise StoreError(
                f"{operation} failed: {e.__class__.__name__}",
                operation=operation,
                transient=transient,
            ) from e

    # =========================================================================
    # ORDERS
    # =========================================================================

    async def _order_by_key(self, key: Optional[str]) -> Optional[Order]:
        if not key:
            return None
        result = await self._session.execute(
            select(Order).where(Order.idempotency_key == key)
        )
        row = result.scalar_one_or_none()
        if row is not None:
            logger.info(f"SQL: Order #{row.id} already stored for this submission")
        return row

    async def insert_order(self, order: NewOrder) -> OrderResponse:
        async with self._guard("insert_order"):
            existing = await self._order_by_key(order.idempotency_key)
            if existing is not None:
                return OrderResponse.model_validate(existing)
            row = _order_row(order)
            self._session.add(row)
            await self._session.commit()
            await self._session.refresh(row)
            return OrderResponse.model_validate(row)

    async def insert_order_items(
        self,
        order_id: int,
        items: list[NewOrderItem],
    ) -> list[OrderItemResponse]:
        async with self._guard("insert_order_items"):
            stored = await self._session.execute(
                select(OrderItem)
                .where(OrderItem.order_id == order_id)
                .order_by(OrderItem.id)
            )
            existing = stored.scalars().all()
            if existing:
                # Items of an order are written once
                return [OrderItemResponse.model_validate(r) for r in existing]
            rows = [_item_row(order_id, item) for item in items]
            self._session.add_all(rows)
            await self._session.commit()
            return [OrderItemResponse.model_validate(r) for r in rows]

    async def create_order_with_items(
        self,
        order: NewOrder,
        items: list[NewOrderItem],
    ) -> tuple[OrderResponse, list[OrderItemResponse]]:
        async with self._guard("create_order_with_items"):
            existing = await self._order_by_key(order.idempotency_key)
            if existing is not None:
                return (
                    OrderResponse.model_validate(existing),
                    await self.get_order_items(existing.id),
                )
            row = _order_row(order)
            self._session.add(row)
            # Flush assigns the order id without committing
            await self._session.flush()

            item_rows = [_item_row(row.id, item) for item in items]
            self._session.add_all(item_rows)
            await self._session.commit()

            await self._session.refresh(row)
            logger.debug(f"SQL: Order #{row.id} committed with {len(item_rows)} items")
            return (
                OrderResponse.model_validate(row),
                [OrderItemResponse.model_validate(r) for r in item_rows],
            )

    async def get_order(self, order_id: int) -> Optional[OrderResponse]:
        async with self._guard("get_order"):
            result = await self._session.execute(
                select(Order)
                .where(Order.id == order_id)
                .execution_options(populate_existing=True)
            )
            row = result.scalar_one_or_none()
            return OrderResponse.model_validate(row) if row else None

    async def get_order_items(self, order_id: int) -> list[OrderItemResponse]:
        async with self._guard("get_order_items"):
            result = await self._session.execute(
                select(OrderItem)
                .where(OrderItem.order_id == order_id)
                .order_by(OrderItem.id)
            )
            return [OrderItemResponse.model_validate(r) for r in result.scalars().all()]

    async def list_orders(
        self,
        status: Optional[OrderStatus] = None,
        offset: int = 0,
        limit: int = 50,
    ) -> list[OrderResponse]:
        async with self._guard("list_orders"):
            query = select(Order).order_by(Order.created_at.desc(), Order.id.desc())
            if status is not None:
                query = query.where(Order.status == status)
            result = await self._session.execute(query.offset(offset).limit(limit))
            return [OrderResponse.model_validate(r) for r in result.scalars().all()]

    async def count_orders(self, status: Optional[OrderStatus] = None) -> int:
        async with self._guard("count_orders"):
            query = select(func.count(Order.id))
            if status is not None:
                query = query.where(Order.status == status)
            result = await self._session.execute(query)
            return result.scalar() or 0

    async def update_order_status(
        self,
        order_id: int,
        expected: OrderStatus,
        new: OrderStatus,
    ) -> Optional[OrderResponse]:
        async with self._guard("update_order_status"):
            result = await self._session.execute(
                update(Order)
                .where(Order.id == order_id, Order.status == expected)
                .values(status=new, updated_at=func.now())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await self._session.rollback()
                return None
            await self._session.commit()
        return await self.get_order(order_id)

    # =========================================================================
    # MENU
    # =========================================================================

    async def list_menu_items(
        self,
        category: Optional[MenuCategory] = None,
        available_only: bool = False,
    ) -> list[MenuItemResponse]:
        async with self._guard("list_menu_items"):
            query = select(MenuItem).order_by(MenuItem.category, MenuItem.name)
            if category is not None:
                query = query.where(MenuItem.category == category)
            if available_only:
                query = query.where(MenuItem.available.is_(True))
            result = await self._session.execute(query)
            return [MenuItemResponse.model_validate(r) for r in result.scalars().all()]

    async def get_menu_items(self, item_ids: list[int]) -> dict[int, MenuItemResponse]:
        if not item_ids:
            return {}
        async with self._guard("get_menu_items"):
            result = await self._session.execute(
                select(MenuItem).where(MenuItem.id.in_(item_ids))
            )
            return {
                r.id: MenuItemResponse.model_validate(r)
                for r in result.scalars().all()
            }

    async def get_menu_item(self, item_id: int) -> Optional[MenuItemResponse]:
        async with self._guard("get_menu_item"):
            row = await self._session.get(MenuItem, item_id)
            return MenuItemResponse.model_validate(row) if row else None

    async def create_menu_item(self, data: MenuItemCreate) -> MenuItemResponse:
        async with self._guard("create_menu_item"):
            row = MenuItem(**data.model_dump())
            self._session.add(row)
            await self._session.commit()
            await self._session.refresh(row)
            return MenuItemResponse.model_validate(row)

    async def update_menu_item(
        self,
        item_id: int,
        data: MenuItemUpdate,
    ) -> Optional[MenuItemResponse]:
        async with self._guard("update_menu_item"):
            row = await self._session.get(MenuItem, item_id)
            if row is None:
                return None
            for field, value in data.model_dump(exclude_unset=True).items():
                setattr(row, field, value)
            await self._session.commit()
            await self._session.refresh(row)
            return MenuItemResponse.model_validate(row)

    async def delete_menu_item(self, item_id: int) -> bool:
        async with self._guard("delete_menu_item"):
            result = await self._session.execute(
                delete(MenuItem).where(MenuItem.id == item_id)
            )
            await self._session.commit()
            return result.rowcount > 0

    # =========================================================================
    # RESERVATIONS & CONTACT
    # =========================================================================

    async def create_reservation(self, data: ReservationCreate) -> ReservationResponse:
        async with self._guard("create_reservation"):
            row = Reservation(**data.model_dump())
            self._session.add(row)
            await self._session.commit()
            await self._session.refresh(row)
            return ReservationResponse.model_validate(row)

    async def list_reservations(
        self,
        offset: int = 0,
        limit: int = 50,
    ) -> list[ReservationResponse]:
        async with self._guard("list_reservations"):
            result = await self._session.execute(
                select(Reservation)
                .order_by(Reservation.id.desc())
                .offset(offset)
                .limit(limit)
            )
            return [ReservationResponse.model_validate(r) for r in result.scalars().all()]

    async def create_contact_message(
        self,
        data: ContactMessageCreate,
    ) -> ContactMessageResponse:
        async with self._guard("create_contact_message"):
            row = ContactMessage(**data.model_dump())
            self._session.add(row)
            await self._session.commit()
            await self._session.refresh(row)
            return ContactMessageResponse.model_validate(row)

    async def list_contact_messages(
        self,
        offset: int = 0,
        limit: int = 50,
    ) -> list[ContactMessageResponse]:
        async with self._guard("list_contact_messages"):
            result = await self._session.execute(
                select(ContactMessage)
                .order_by(ContactMessage.id.desc())
                .offset(offset)
                .limit(limit)
            )
            return [ContactMessageResponse.model_validate(r) for r in result.scalars().all()]


class SqlSettingsStore(BaseSettingsStore):
    """Settings rows holding JSON text in ``settings.value``."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, key: str) -> Optional[dict[str, Any]]:
        try:
            result = await self._session.execute(
                select(Setting.value).where(Setting.key == key)
            )
            text = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            await self._session.rollback()
            raise StoreError(
                f"get setting '{key}' failed: {e.__class__.__name__}",
                operation="get_setting",
                transient=isinstance(e, TRANSIENT_ERRORS),
            ) from e

        if text is None:
            return None
        try:
            value = json.loads(text)
        except json.JSONDecodeError:
            logger.error(f"Setting '{key}' is not valid JSON; ignoring it")
            return None
        return value if isinstance(value, dict) else None

    async def upsert(self, key: str, value: dict[str, Any]) -> None:
        try:
            row = (
                await self._session.execute(select(Setting).where(Setting.key == key))
            ).scalar_one_or_none()
            if row is None:
                self._session.add(Setting(key=key, value=json.dumps(value)))
            else:
                row.value = json.dumps(value)
            await self._session.commit()
        except SQLAlchemyError as e:
            await self._session.rollback()
            raise StoreError(
                f"upsert setting '{key}' failed: {e.__class__.__name__}",
                operation="upsert_setting",
                transient=isinstance(e, TRANSIENT_ERRORS),
            ) from e
