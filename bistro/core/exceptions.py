"""
Domain Exceptions

Error taxonomy shared by the cart, the order workflow and the HTTP layer.

    OrderingError
    ├── ValidationError          missing/invalid input, nothing was written
    ├── PersistenceError         a store write failed or partially failed
    ├── InvalidStateTransition   status change from a non-pending order
    └── NotFound                 referenced order/menu item does not exist

Author: Bistro Engineering
Version: 1.0.0
"""

from typing import Any, Optional


class OrderingError(Exception):
    """Base class for all ordering domain errors."""

    def to_dict(self) -> dict[str, Any]:
        return {"error": type(self).__name__, "detail": str(self)}


class ValidationError(OrderingError):
    """
    Required input is missing or invalid. No side effect has occurred.

    Attributes:
        fields: Names of every offending field, in the order they were checked
    """

    def __init__(self, fields: list[str], message: Optional[str] = None):
        self.fields = list(fields)
        super().__init__(
            message or f"Missing or invalid fields: {', '.join(self.fields)}"
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["fields"] = self.fields
        return data


class PersistenceError(OrderingError):
    """
    A write to the store failed.

    ``incomplete=True`` means the order row exists but its items do not; the
    order id is carried so an administrator can reconcile it. ``transient``
    tells the caller whether a plain retry is reasonable.
    """

    def __init__(
        self,
        message: str,
        order_id: Optional[int] = None,
        incomplete: bool = False,
        transient: bool = False,
    ):
        self.order_id = order_id
        self.incomplete = incomplete
        self.transient = transient
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            order_id=self.order_id,
            incomplete=self.incomplete,
            transient=self.transient,
        )
        return data


class InvalidStateTransition(OrderingError):
    """An order status change was requested from a state that forbids it."""

    def __init__(self, order_id: int, current: str, requested: str):
        self.order_id = order_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Order #{order_id} cannot move from '{current}' to '{requested}'"
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            order_id=self.order_id,
            current=self.current,
            requested=self.requested,
        )
        return data


class NotFound(OrderingError):
    """A referenced record does not exist."""

    def __init__(self, entity: str, identifier: Any):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} {identifier} not found")
