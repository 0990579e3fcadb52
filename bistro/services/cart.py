"""
Cart Model

Session-scoped collection of menu items with quantities. All arithmetic is
exact ``Decimal``; rounding to cents happens only through ``quantize_money``
at presentation and persistence boundaries.

Invariants:
    - every line has quantity >= 1
    - at most one line per menu item id
    - insertion order is display order only

Usage:
    cart = Cart()
    cart.add_item(margherita)
    cart.add_item(margherita)        # one line, quantity 2
    cart.update_quantity(margherita.id, 0)   # ignored
    cart.total()                     # Decimal('29.98')

Author: Bistro Engineering
Version: 1.0.0
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterator, Optional

from bistro.schemas import MenuItemResponse, CartLineResponse, CartQuoteResponse

CENT = Decimal("0.01")


def quantize_money(amount: Decimal) -> Decimal:
    """Round a monetary amount to cents (half up)."""
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class CartLine:
    """A menu item reference plus a quantity (always >= 1)."""
    item: MenuItemResponse
    quantity: int = 1

    @property
    def item_id(self) -> int:
        return self.item.id

    @property
    def unit_price(self) -> Decimal:
        return self.item.price

    @property
    def line_total(self) -> Decimal:
        return self.item.price * self.quantity


class Cart:
    """In-memory cart owned by one shopper session."""

    def __init__(self) -> None:
        # dicts keep insertion order, which is the display order
        self._lines: dict[int, CartLine] = {}

    def __len__(self) -> int:
        return len(self._lines)

    def __iter__(self) -> Iterator[CartLine]:
        return iter(list(self._lines.values()))

    def __repr__(self) -> str:
        return f"<Cart lines={len(self)} total={self.total()}>"

    @property
    def lines(self) -> list[CartLine]:
        return list(self._lines.values())

    @property
    def is_empty(self) -> bool:
        return not self._lines

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self._lines.values())

    def get_line(self, item_id: int) -> Optional[CartLine]:
        return self._lines.get(item_id)

    @staticmethod
    def line_total(line: CartLine) -> Decimal:
        return line.line_total

    def add_item(self, item: MenuItemResponse) -> CartLine:
        """Add one unit of ``item``; increments the existing line if present."""
        line = self._lines.get(item.id)
        if line is None:
            line = CartLine(item=item, quantity=1)
            self._lines[item.id] = line
        else:
            line.quantity += 1
        return line

    def remove_item(self, item_id: int) -> None:
        """Delete the line for ``item_id``; no-op when absent."""
        self._lines.pop(item_id, None)

    def update_quantity(self, item_id: int, quantity: int) -> None:
        """
        Replace a line's quantity.

        Quantities below 1 are ignored rather than removing the line;
        removal only happens through ``remove_item``. Unknown ids are a no-op.
        """
        if quantity < 1:
            return
        line = self._lines.get(item_id)
        if line is not None:
            line.quantity = quantity

    def total(self) -> Decimal:
        """Exact sum of unit price x quantity over all lines."""
        return sum((line.line_total for line in self._lines.values()), Decimal("0"))

    def clear(self) -> None:
        self._lines.clear()

    def to_quote(self) -> CartQuoteResponse:
        """Presentation view of the cart, rounded to cents."""
        return CartQuoteResponse(
            lines=[
                CartLineResponse(
                    menu_item_id=line.item_id,
                    name=line.item.name,
                    unit_price=quantize_money(line.unit_price),
                    quantity=line.quantity,
                    line_total=quantize_money(line.line_total),
                )
                for line in self._lines.values()
            ],
            item_count=self.item_count,
            total=quantize_money(self.total()),
        )
