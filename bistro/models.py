"""
SQLAlchemy Database Models

Tables:
    - menu_items: dishes shown on the website and priced into carts
    - orders: one row per checkout, with a small status lifecycle
    - order_items: price/quantity snapshot of each cart line at checkout
    - settings: JSON-encoded integration settings keyed by name
    - reservations: table reservation requests
    - contact_messages: messages sent through the contact form

Author: Bistro Engineering
Version: 1.0.0
"""

import enum

from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    DateTime,
    Text,
    Enum,
    Boolean,
    ForeignKey,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from bistro.database import Base


def _values(enum_cls):
    """Persist enum values ('pending') rather than member names ('PENDING')."""
    return [member.value for member in enum_cls]


class MenuCategory(str, enum.Enum):
    """Menu sections shown on the order page."""
    STARTERS = "starters"
    MAINS = "mains"
    DESSERTS = "desserts"


class OrderStatus(str, enum.Enum):
    """
    Order status workflow.

    pending ──► confirmed
        └─────► cancelled

    Both targets are terminal.
    """
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"

    def can_transition_to(self, target: "OrderStatus") -> bool:
        return self is OrderStatus.PENDING and target in (
            OrderStatus.CONFIRMED,
            OrderStatus.CANCELLED,
        )


class FulfillmentMethod(str, enum.Enum):
    """Fulfillment - Delivery or Pickup."""
    DELIVERY = "delivery"
    PICKUP = "pickup"


class PaymentMethod(str, enum.Enum):
    """How the customer intends to pay."""
    CARD = "card"
    CASH = "cash"


class ReservationStatus(str, enum.Enum):
    REQUESTED = "requested"
    CONFIRMED = "confirmed"
    DECLINED = "declined"


class MenuItem(Base):
    """A dish on the menu. Prices are exact decimals."""
    __tablename__ = "menu_items"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=False, default="")
    price = Column(Numeric(10, 2), nullable=False)
    image_url = Column(String(500), nullable=True)
    category = Column(
        Enum(MenuCategory, name="menu_category", values_callable=_values),
        nullable=False,
        index=True,
    )
    available = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<MenuItem #{self.id} - {self.name} - {self.price}>"


class Order(Base):
    """
    Main Order table - one row per submitted cart.

    ``total_amount`` is computed server-side from the cart and never taken
    from the client. Only ``status`` changes after creation.
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # =========================================================================
    # CUSTOMER INFORMATION
    # =========================================================================
    customer_name = Column(String(100), nullable=False)
    customer_email = Column(String(255), nullable=True)
    customer_phone = Column(String(30), nullable=False, index=True)

    # =========================================================================
    # FULFILLMENT & PAYMENT
    # =========================================================================
    fulfillment_method = Column(
        Enum(FulfillmentMethod, name="fulfillment_method", values_callable=_values),
        nullable=False,
        default=FulfillmentMethod.DELIVERY,
    )
    delivery_address = Column(String(500), nullable=True)
    payment_method = Column(
        Enum(PaymentMethod, name="payment_method", values_callable=_values),
        nullable=False,
        default=PaymentMethod.CASH,
    )

    # =========================================================================
    # PRICING & STATUS
    # =========================================================================
    total_amount = Column(Numeric(10, 2), nullable=False)
    status = Column(
        Enum(OrderStatus, name="order_status", values_callable=_values),
        default=OrderStatus.PENDING,
        nullable=False,
        index=True,
    )

    # Set per submission so a retried write cannot create a second order
    idempotency_key = Column(String(64), unique=True, nullable=True)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )

    def __repr__(self):
        return f"<Order #{self.id} - {self.customer_name} - {self.status.value}>"


class OrderItem(Base):
    """Snapshot of one cart line. Immutable once written."""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(
        Integer,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # No FK: the snapshot must survive menu edits and deletions
    menu_item_id = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False)
    price_at_purchase = Column(Numeric(10, 2), nullable=False)
    notes = Column(Text, nullable=True)

    order = relationship("Order", back_populates="items")

    def __repr__(self):
        return f"<OrderItem order=#{self.order_id} item={self.menu_item_id} x{self.quantity}>"


class Setting(Base):
    """Key/value store for integration settings; ``value`` is JSON text."""
    __tablename__ = "settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String(100), nullable=False, unique=True, index=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Reservation(Base):
    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    phone = Column(String(30), nullable=False)
    email = Column(String(255), nullable=True)
    date = Column(String(10), nullable=False)  # YYYY-MM-DD
    time = Column(String(5), nullable=False)   # HH:MM
    guests = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)
    status = Column(
        Enum(ReservationStatus, name="reservation_status", values_callable=_values),
        nullable=False,
        default=ReservationStatus.REQUESTED,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<Reservation #{self.id} - {self.name} - {self.date} {self.time}>"


class ContactMessage(Base):
    __tablename__ = "contact_messages"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
