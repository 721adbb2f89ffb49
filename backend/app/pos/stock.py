from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from ..amounts import q6, to_decimal
from ..logs import json_log
from .availability import find_shortfalls
from .errors import IngredientNotFound, InsufficientStock, InvalidQuantity
from .models import Ingredient, StockMovement


def crossed_low_threshold(before: Ingredient, after_qty: Decimal) -> bool:
    # Alert once on the way down, not on every sale while already low.
    return before.quantity > before.minimum_quantity and after_qty <= before.minimum_quantity


def list_ingredients(store) -> list[Ingredient]:
    with store.read() as tx:
        return tx.list_ingredients()


def low_stock(store) -> list[Ingredient]:
    return [i for i in list_ingredients(store) if i.is_low]


def adjust_stock(
    store,
    ingredient_id: int,
    delta,
    reason: str,
    *,
    source_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Ingredient:
    """
    Entry point for receiving, pullouts and count corrections.
    A negative delta is a conditional debit just like a sale.
    """
    delta = q6(to_decimal(delta))
    if delta == 0:
        raise InvalidQuantity("adjustment must be non-zero")
    now = now or datetime.now(timezone.utc)
    reason = (reason or "").strip() or "manual adjustment"

    with store.transaction() as tx:
        before = tx.get_ingredient(ingredient_id)
        if before is None:
            raise IngredientNotFound(ingredient_id)
        if delta < 0:
            new_qty = tx.debit(ingredient_id, -delta)
            if new_qty is None:
                raise InsufficientStock(find_shortfalls({ingredient_id: -delta}, {ingredient_id: before}))
        else:
            new_qty = tx.credit(ingredient_id, delta)
        tx.record_movement(
            StockMovement(
                ingredient_id=ingredient_id,
                quantity=delta,
                source_type="adjustment",
                source_id=source_id,
                reason=reason,
                created_at=now,
            )
        )
        after = tx.get_ingredient(ingredient_id)

    json_log(
        "info",
        "stock.adjusted",
        ingredient_id=ingredient_id,
        delta=delta,
        quantity=new_qty,
        reason=reason,
    )
    if delta < 0 and crossed_low_threshold(before, new_qty):
        json_log("warning", "stock.low", ingredient_id=ingredient_id, name=before.name, quantity=new_qty, unit=before.unit)
    return after
