from __future__ import annotations

import threading
import time
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Optional, Union

from ..amounts import order_totals, q2
from ..config import settings
from ..logs import json_log
from .availability import check_availability, validate_quantity
from .errors import InsufficientStock, ItemNotFound
from .models import Item


@dataclass(frozen=True)
class DraftOrderLine:
    item_id: int
    name: str
    category: str
    quantity: int
    # Captured when the line is first added; later price edits do not reprice the cart.
    unit_price: Decimal

    @property
    def subtotal(self) -> Decimal:
        return q2(self.unit_price * self.quantity)

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "name": self.name,
            "category": self.category,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "subtotal": self.subtotal,
        }


def _is_number(value) -> bool:
    if isinstance(value, Decimal):
        return not value.is_nan()
    return not isinstance(value, bool) and isinstance(value, (int, float))


class DraftOrder:
    """
    One terminal's in-progress cart. Single owner, never persisted.

    Every mutation that raises a quantity is gated by an availability check and
    leaves the order untouched when that check fails. Totals are derived from the
    lines on every read.
    """

    def __init__(self, store, tax_rate: Optional[Decimal] = None):
        self._store = store
        self._lines: dict[int, DraftOrderLine] = {}
        self.tax_rate = settings.tax_rate if tax_rate is None else tax_rate

    # ---- reads ----
    @property
    def lines(self) -> list[DraftOrderLine]:
        return list(self._lines.values())

    @property
    def line_count(self) -> int:
        return len(self._lines)

    @property
    def is_empty(self) -> bool:
        return not self._lines

    def get_line(self, item_id: int) -> Optional[DraftOrderLine]:
        return self._lines.get(item_id)

    @property
    def subtotal(self) -> Decimal:
        return order_totals((l.subtotal for l in self._lines.values()), self.tax_rate)[0]

    @property
    def tax(self) -> Decimal:
        return order_totals((l.subtotal for l in self._lines.values()), self.tax_rate)[1]

    @property
    def total(self) -> Decimal:
        return order_totals((l.subtotal for l in self._lines.values()), self.tax_rate)[2]

    def to_dict(self) -> dict:
        subtotal, tax, total = order_totals((l.subtotal for l in self._lines.values()), self.tax_rate)
        return {
            "lines": [l.to_dict() for l in self._lines.values()],
            "line_count": self.line_count,
            "subtotal": subtotal,
            "tax_rate": self.tax_rate,
            "tax": tax,
            "total": total,
        }

    # ---- mutations ----
    def _assert_available(self, item_id: int, qty: int) -> None:
        availability = check_availability(self._store, item_id, qty)
        if not availability.available:
            raise InsufficientStock(availability.shortfall)

    def _resolve_item(self, item: Union[Item, int]) -> Item:
        if isinstance(item, Item):
            return item
        with self._store.read() as tx:
            found = tx.get_item(item)
        if found is None:
            raise ItemNotFound(item)
        return found

    def add_line(self, item: Union[Item, int], qty: int = 1) -> DraftOrderLine:
        qty = validate_quantity(qty)
        item = self._resolve_item(item)
        existing = self._lines.get(item.item_id)
        new_qty = qty + (existing.quantity if existing else 0)
        self._assert_available(item.item_id, new_qty)
        if existing:
            line = replace(existing, quantity=new_qty)
        else:
            line = DraftOrderLine(
                item_id=item.item_id,
                name=item.name,
                category=item.category,
                quantity=new_qty,
                unit_price=q2(item.price),
            )
        self._lines[item.item_id] = line
        return line

    def set_line_quantity(self, item_id: int, qty: int) -> Optional[DraftOrderLine]:
        """Any quantity at or below zero removes the line; positive ones must be whole units."""
        if _is_number(qty) and qty <= 0:
            self.remove_line(item_id)
            return None
        qty = validate_quantity(qty)
        existing = self._lines.get(item_id)
        if existing is None:
            raise ItemNotFound(item_id)
        self._assert_available(item_id, qty)
        line = replace(existing, quantity=qty)
        self._lines[item_id] = line
        return line

    def remove_line(self, item_id: int) -> None:
        self._lines.pop(item_id, None)

    def clear(self) -> None:
        self._lines.clear()


class DraftOrderRegistry:
    """
    Open draft orders keyed by terminal id, for terminals driving the cart over HTTP.

    A draft nobody has read or changed for `idle_seconds` is dropped the next time
    the registry is used; the terminal starts over with an empty cart.
    """

    def __init__(self, store, tax_rate: Optional[Decimal] = None, idle_seconds: Optional[float] = None, clock=time.monotonic):
        self._store = store
        self._tax_rate = tax_rate
        self._idle_seconds = settings.draft_idle_seconds if idle_seconds is None else idle_seconds
        self._clock = clock
        self._orders: dict[str, DraftOrder] = {}
        self._touched: dict[str, float] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._orders)

    def evict_idle(self) -> int:
        if self._idle_seconds <= 0:
            return 0
        with self._lock:
            now = self._clock()
            stale = [t for t, seen in self._touched.items() if now - seen >= self._idle_seconds]
            for terminal_id in stale:
                self._orders.pop(terminal_id, None)
                self._touched.pop(terminal_id, None)
        if stale:
            json_log("info", "pos.draft.evicted", terminals=stale, idle_seconds=self._idle_seconds)
        return len(stale)

    def get(self, terminal_id: str) -> Optional[DraftOrder]:
        self.evict_idle()
        with self._lock:
            order = self._orders.get(terminal_id)
            if order is not None:
                self._touched[terminal_id] = self._clock()
            return order

    def get_or_create(self, terminal_id: str) -> DraftOrder:
        self.evict_idle()
        with self._lock:
            order = self._orders.get(terminal_id)
            if order is None:
                order = DraftOrder(self._store, tax_rate=self._tax_rate)
                self._orders[terminal_id] = order
            self._touched[terminal_id] = self._clock()
            return order

    def discard(self, terminal_id: str) -> None:
        with self._lock:
            self._orders.pop(terminal_id, None)
            self._touched.pop(terminal_id, None)
