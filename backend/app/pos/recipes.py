from __future__ import annotations

from decimal import Decimal
from typing import Iterable

from ..amounts import ZERO, q6
from .errors import ItemNotFound
from .models import RecipeLine


def expand_item(tx, item_id: int) -> list[RecipeLine]:
    """
    Recipe lines consumed by one unit of `item_id`.
    Externally-sourced items (flagged, or with no recipe lines) expand to [].
    """
    item = tx.get_item(item_id)
    if item is None:
        raise ItemNotFound(item_id)
    if item.is_externally_sourced:
        return []
    return [r for r in tx.expand_recipe(item_id) if r.quantity_per_unit > 0]


def consumption_for(tx, lines: Iterable[tuple[int, int]]) -> dict[int, Decimal]:
    """
    Aggregate ingredient consumption for (item_id, quantity) pairs.
    Two lines sharing an ingredient (Latte + Cappuccino both use milk) add up.
    """
    out: dict[int, Decimal] = {}
    for item_id, qty in lines:
        for r in expand_item(tx, item_id):
            out[r.ingredient_id] = q6(out.get(r.ingredient_id, ZERO) + r.quantity_per_unit * qty)
    return dict(sorted(out.items()))
