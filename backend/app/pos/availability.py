"""
Advisory stock checks for draft orders.

A positive answer is a point-in-time snapshot, NOT a reservation: two terminals
can both be told the last croissant is available. The only authoritative gate is
the conditional decrement inside the checkout transaction.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Mapping, Optional

from ..amounts import ZERO, q6
from .errors import InvalidQuantity
from .models import Availability, Ingredient, Shortfall
from .recipes import expand_item


def validate_quantity(qty) -> int:
    if isinstance(qty, bool) or not isinstance(qty, int) or qty < 1:
        raise InvalidQuantity()
    return qty


def find_shortfalls(required: Mapping[int, Decimal], ingredients: Mapping[int, Ingredient]) -> list[Shortfall]:
    """Every ingredient whose on-hand quantity cannot cover `required`, not just the first."""
    out = []
    for ing_id, need in sorted(required.items()):
        ing = ingredients.get(ing_id)
        on_hand = ing.quantity if ing is not None else ZERO
        if on_hand < need:
            out.append(
                Shortfall(
                    ingredient_id=ing_id,
                    name=ing.name if ing is not None else f"ingredient {ing_id}",
                    unit=ing.unit if ing is not None else "",
                    required=q6(need),
                    on_hand=q6(on_hand),
                )
            )
    return out


def check_availability_tx(tx, item_id: int, requested: int) -> Availability:
    requested = validate_quantity(requested)
    recipe = expand_item(tx, item_id)
    if not recipe:
        return Availability(item_id=item_id, requested=requested, available=True)

    ingredients = tx.get_ingredients(r.ingredient_id for r in recipe)
    required: dict[int, Decimal] = {}
    producible: Optional[int] = None
    for r in recipe:
        required[r.ingredient_id] = q6(required.get(r.ingredient_id, ZERO) + r.quantity_per_unit * requested)
        ing = ingredients.get(r.ingredient_id)
        units = int((ing.quantity if ing is not None else ZERO) // r.quantity_per_unit)
        producible = units if producible is None else min(producible, units)

    short = find_shortfalls(required, ingredients)
    return Availability(
        item_id=item_id,
        requested=requested,
        available=not short,
        shortfall=tuple(short),
        available_quantity=max(producible or 0, 0),
    )


def check_availability(store, item_id: int, requested: int = 1) -> Availability:
    with store.read() as tx:
        return check_availability_tx(tx, item_id, requested)
