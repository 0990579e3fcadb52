"""
Store Abstract Base Classes

Defines the persistence contract consumed by the order workflow and the API.
Both the SQL store (production) and the in-memory store (tests, simulations)
implement these methods and return the same Pydantic read models, so callers
never touch ORM rows directly.

Design Pattern: Strategy Pattern
    - The workflow only depends on BaseStore
    - ``supports_transactions`` tells the workflow whether an order and its
      items can be written as one unit or need the two-step path

Author: Bistro Engineering
Version: 1.0.0
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from bistro.models import (
    MenuCategory,
    OrderStatus,
    FulfillmentMethod,
    PaymentMethod,
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


class StoreError(Exception):
    """
    A store operation failed.

    Attributes:
        operation: Name of the store method that failed
        transient: True when retrying the same call may succeed
            (connection drop, timeout); False for constraint violations
            and other deterministic failures
    """

    def __init__(self, message: str, operation: str = "", transient: bool = False):
        self.operation = operation
        self.transient = transient
        super().__init__(message)


@dataclass
class NewOrder:
    """Fields of an order row before the store assigns id and timestamps."""
    customer_name: str
    customer_phone: str
    customer_email: Optional[str]
    fulfillment_method: FulfillmentMethod
    delivery_address: Optional[str]
    payment_method: PaymentMethod
    total_amount: Decimal
    status: OrderStatus = OrderStatus.PENDING
    # One key per submission; a retried write with the same key returns the
    # stored order instead of creating a second one
    idempotency_key: Optional[str] = None


@dataclass
class NewOrderItem:
    """One cart line snapshot, written alongside its order."""
    menu_item_id: int
    quantity: int
    price_at_purchase: Decimal
    notes: Optional[str] = None


class BaseStore(ABC):
    """
    Abstract persistence layer for orders, menu, reservations and messages.

    Every method raises ``StoreError`` on failure.
    """

    @property
    @abstractmethod
    def supports_transactions(self) -> bool:
        """True when ``create_order_with_items`` is atomic."""
        pass

    # =========================================================================
    # ORDERS
    # =========================================================================

    @abstractmethod
    async def insert_order(self, order: NewOrder) -> OrderResponse:
        """
        Insert an order row and return it with its assigned id.

        If an order with the same ``idempotency_key`` exists, it is returned
        unchanged.
        """
        pass

    @abstractmethod
    async def insert_order_items(
        self,
        order_id: int,
        items: list[NewOrderItem],
    ) -> list[OrderItemResponse]:
        """
        Insert every item for ``order_id`` in one call.

        An order that already has items keeps them; they are returned as is.
        """
        pass

    @abstractmethod
    async def create_order_with_items(
        self,
        order: NewOrder,
        items: list[NewOrderItem],
    ) -> tuple[OrderResponse, list[OrderItemResponse]]:
        """
        Write an order and its items as a single unit.

        Only atomic when ``supports_transactions`` is True; callers must
        check that flag before relying on all-or-nothing behaviour. Replays
        of the same ``idempotency_key`` return the stored order and items.
        """
        pass

    @abstractmethod
    async def get_order(self, order_id: int) -> Optional[OrderResponse]:
        pass

    @abstractmethod
    async def get_order_items(self, order_id: int) -> list[OrderItemResponse]:
        pass

    @abstractmethod
    async def list_orders(
        self,
        status: Optional[OrderStatus] = None,
        offset: int = 0,
        limit: int = 50,
    ) -> list[OrderResponse]:
        """Orders newest first, optionally filtered by status."""
        pass

    @abstractmethod
    async def count_orders(self, status: Optional[OrderStatus] = None) -> int:
        pass

    @abstractmethod
    async def update_order_status(
        self,
        order_id: int,
        expected: OrderStatus,
        new: OrderStatus,
    ) -> Optional[OrderResponse]:
        """
        Compare-and-set the status.

        Returns the updated order, or None when the order does not exist or
        its status is no longer ``expected``. The record is left untouched
        in the latter case.
        """
        pass

    # =========================================================================
    # MENU
    # =========================================================================

    @abstractmethod
    async def list_menu_items(
        self,
        category: Optional[MenuCategory] = None,
        available_only: bool = False,
    ) -> list[MenuItemResponse]:
        """Menu ordered by category then name."""
        pass

    @abstractmethod
    async def get_menu_items(self, item_ids: list[int]) -> dict[int, MenuItemResponse]:
        """Fetch several items at once; unknown ids are simply absent."""
        pass

    @abstractmethod
    async def get_menu_item(self, item_id: int) -> Optional[MenuItemResponse]:
        pass

    @abstractmethod
    async def create_menu_item(self, data: MenuItemCreate) -> MenuItemResponse:
        pass

    @abstractmethod
    async def update_menu_item(
        self,
        item_id: int,
        data: MenuItemUpdate,
    ) -> Optional[MenuItemResponse]:
        pass

    @abstractmethod
    async def delete_menu_item(self, item_id: int) -> bool:
        pass

    # =========================================================================
    # RESERVATIONS & CONTACT
    # =========================================================================

    @abstractmethod
    async def create_reservation(self, data: ReservationCreate) -> ReservationResponse:
        pass

    @abstractmethod
    async def list_reservations(
        self,
        offset: int = 0,
        limit: int = 50,
    ) -> list[ReservationResponse]:
        pass

    @abstractmethod
    async def create_contact_message(
        self,
        data: ContactMessageCreate,
    ) -> ContactMessageResponse:
        pass

    @abstractmethod
    async def list_contact_messages(
        self,
        offset: int = 0,
        limit: int = 50,
    ) -> list[ContactMessageResponse]:
        pass


class BaseSettingsStore(ABC):
    """Key/value store for JSON integration settings."""

    @abstractmethod
    async def get(self, key: str) -> Optional[dict[str, Any]]:
        """Return the decoded value, or None when missing or unreadable."""
        pass

    @abstractmethod
    async def upsert(self, key: str, value: dict[str, Any]) -> None:
        pass
