from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Iterator, Optional

from ..amounts import q6, to_decimal
from .models import Ingredient, Item, RecipeLine, Sale, StockMovement, VoidPatch


class StoreError(Exception):
    """Raised by a store when a transaction cannot be applied or committed."""


class StoreConflict(StoreError):
    """A write collided with a committed row, e.g. a client_ref that is already journalled."""


class PosStore(ABC):
    """
    Transactional home of the recipe catalog, stock ledger and sale journal.

    `transaction()` yields a handle whose effects become visible all at once on
    success and not at all on any exception. `read()` yields a handle over a
    consistent committed snapshot; it never waits on in-flight transactions.

    Handle contract (both implementations):
      get_item, list_items, expand_recipe,
      get_ingredient, get_ingredients, lock_ingredients, list_ingredients, get_quantity,
      debit (conditional, returns None instead of going negative), credit,
      record_movement, list_movements,
      append_sale, get_sale, find_sale_by_ref, update_sale, list_sales.
    """

    @abstractmethod
    def transaction(self):
        raise NotImplementedError

    @abstractmethod
    def read(self):
        raise NotImplementedError


@dataclass
class _State:
    items: dict
    recipes: dict
    ingredients: dict
    sales: dict
    sale_refs: dict
    movements: list
    next_sale_id: int

    def copy(self) -> "_State":
        # Values are frozen dataclasses, so shallow copies are enough.
        return _State(
            items=dict(self.items),
            recipes=dict(self.recipes),
            ingredients=dict(self.ingredients),
            sales=dict(self.sales),
            sale_refs=dict(self.sale_refs),
            movements=list(self.movements),
            next_sale_id=self.next_sale_id,
        )


class _MemoryTx:
    def __init__(self, state: _State, writable: bool):
        self._s = state
        self._writable = writable

    def _require_writable(self):
        if not self._writable:
            raise StoreError("read-only snapshot")

    # ---- catalog ----
    def get_item(self, item_id: int) -> Optional[Item]:
        return self._s.items.get(item_id)

    def list_items(self) -> list[Item]:
        return sorted(self._s.items.values(), key=lambda i: (i.category, i.name))

    def expand_recipe(self, item_id: int) -> list[RecipeLine]:
        return list(self._s.recipes.get(item_id, ()))

    # ---- stock ledger ----
    def get_ingredient(self, ingredient_id: int) -> Optional[Ingredient]:
        return self._s.ingredients.get(ingredient_id)

    def get_ingredients(self, ingredient_ids: Iterable[int]) -> dict[int, Ingredient]:
        return {i: self._s.ingredients[i] for i in sorted(set(ingredient_ids)) if i in self._s.ingredients}

    def lock_ingredients(self, ingredient_ids: Iterable[int]) -> dict[int, Ingredient]:
        # The store-wide write lock already serialises writers.
        self._require_writable()
        return self.get_ingredients(ingredient_ids)

    def list_ingredients(self) -> list[Ingredient]:
        return sorted(self._s.ingredients.values(), key=lambda i: i.name)

    def get_quantity(self, ingredient_id: int) -> Optional[Decimal]:
        ing = self._s.ingredients.get(ingredient_id)
        return None if ing is None else ing.quantity

    def debit(self, ingredient_id: int, quantity: Decimal) -> Optional[Decimal]:
        self._require_writable()
        ing = self._s.ingredients.get(ingredient_id)
        if ing is None:
            return None
        new_qty = q6(ing.quantity - to_decimal(quantity))
        if new_qty < 0:
            return None
        self._s.ingredients[ingredient_id] = replace(ing, quantity=new_qty)
        return new_qty

    def credit(self, ingredient_id: int, quantity: Decimal) -> Optional[Decimal]:
        self._require_writable()
        ing = self._s.ingredients.get(ingredient_id)
        if ing is None:
            return None
        new_qty = q6(ing.quantity + to_decimal(quantity))
        self._s.ingredients[ingredient_id] = replace(ing, quantity=new_qty)
        return new_qty

    def record_movement(self, movement: StockMovement) -> None:
        self._require_writable()
        self._s.movements.append(movement)

    def list_movements(self, *, source_type: Optional[str] = None, source_id: Optional[str] = None) -> list[StockMovement]:
        return [
            m
            for m in self._s.movements
            if (source_type is None or m.source_type == source_type)
            and (source_id is None or m.source_id == source_id)
        ]

    # ---- sale journal ----
    def append_sale(self, sale: Sale) -> Sale:
        self._require_writable()
        if sale.client_ref and sale.client_ref in self._s.sale_refs:
            raise StoreConflict(f"duplicate client_ref {sale.client_ref}")
        sale_id = self._s.next_sale_id
        self._s.next_sale_id += 1
        stored = replace(sale, sale_id=sale_id)
        self._s.sales[sale_id] = stored
        if stored.client_ref:
            self._s.sale_refs[stored.client_ref] = sale_id
        return stored

    def get_sale(self, sale_id: int, *, for_update: bool = False) -> Optional[Sale]:
        if for_update:
            self._require_writable()
        return self._s.sales.get(sale_id)

    def find_sale_by_ref(self, client_ref: str) -> Optional[Sale]:
        sale_id = self._s.sale_refs.get(client_ref)
        return None if sale_id is None else self._s.sales.get(sale_id)

    def update_sale(self, sale_id: int, patch: VoidPatch) -> Optional[Sale]:
        self._require_writable()
        sale = self._s.sales.get(sale_id)
        if sale is None or sale.voided:
            return None
        updated = sale.apply_void(patch)
        self._s.sales[sale_id] = updated
        return updated

    def list_sales(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        *,
        cashier_id: Optional[str] = None,
        payment_method: Optional[str] = None,
        include_voided: bool = True,
    ) -> list[Sale]:
        out = []
        for sale in self._s.sales.values():
            if start is not None and sale.created_at < start:
                continue
            if end is not None and sale.created_at >= end:
                continue
            if cashier_id is not None and sale.cashier_id != cashier_id:
                continue
            if payment_method is not None and sale.payment_method != payment_method:
                continue
            if not include_voided and sale.voided:
                continue
            out.append(sale)
        return sorted(out, key=lambda s: (s.created_at, s.sale_id))


class MemoryPosStore(PosStore):
    """
    Process-local store for demos and tests.

    Writers are serialised by one lock and work on a private copy of the state;
    the copy replaces the committed state only when the transaction body returns.
    Readers grab the current committed state without locking.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._state = _State(
            items={},
            recipes={},
            ingredients={},
            sales={},
            sale_refs={},
            movements=[],
            next_sale_id=1,
        )

    @contextmanager
    def transaction(self) -> Iterator[_MemoryTx]:
        with self._lock:
            working = self._state.copy()
            yield _MemoryTx(working, writable=True)
            self._state = working

    @contextmanager
    def read(self) -> Iterator[_MemoryTx]:
        yield _MemoryTx(self._state, writable=False)

    # ---- reference data (catalog maintenance lives outside the core) ----
    def add_ingredient(self, ingredient: Ingredient) -> Ingredient:
        ingredient = replace(
            ingredient,
            quantity=q6(ingredient.quantity),
            minimum_quantity=q6(ingredient.minimum_quantity),
        )
        with self.transaction() as tx:
            tx._s.ingredients[ingredient.ingredient_id] = ingredient
        return ingredient

    def add_item(self, item: Item, recipe: Iterable[tuple[int, Decimal]] = ()) -> Item:
        with self.transaction() as tx:
            tx._s.items[item.item_id] = item
        self.set_recipe(item.item_id, recipe)
        return item

    def set_recipe(self, item_id: int, recipe: Iterable[tuple[int, Decimal]]) -> None:
        lines = tuple(RecipeLine(item_id, ing_id, q6(qty)) for ing_id, qty in recipe)
        with self.transaction() as tx:
            if lines:
                tx._s.recipes[item_id] = lines
            else:
                tx._s.recipes.pop(item_id, None)

    @classmethod
    def demo(cls) -> "MemoryPosStore":
        """A small coffee-shop menu for local runs with POS_STORE=memory."""
        store = cls()
        for ing in (
            Ingredient(1, "Espresso Beans", "g", Decimal("2000"), Decimal("500")),
            Ingredient(2, "Milk", "ml", Decimal("5000"), Decimal("1000")),
            Ingredient(3, "Caramel Syrup", "ml", Decimal("750"), Decimal("150")),
            Ingredient(4, "Black Tea", "g", Decimal("400"), Decimal("100")),
            Ingredient(5, "Croissant Dough", "pc", Decimal("24"), Decimal("6")),
        ):
            store.add_ingredient(ing)
        store.add_item(Item(1, "Americano", "Coffee", Decimal("120.00")), [(1, Decimal("18"))])
        store.add_item(Item(2, "Latte", "Coffee", Decimal("150.00")), [(1, Decimal("18")), (2, Decimal("200"))])
        store.add_item(Item(3, "Cappuccino", "Coffee", Decimal("150.00")), [(1, Decimal("18")), (2, Decimal("150"))])
        store.add_item(Item(4, "Espresso", "Coffee", Decimal("100.00")), [(1, Decimal("18"))])
        store.add_item(Item(5, "Croissant", "Pastries", Decimal("80.00")), [(5, Decimal("1"))])
        store.add_item(Item(8, "Iced Tea", "Drinks", Decimal("100.00")), [(4, Decimal("8"))])
        store.add_item(Item(10, "Caramel Syrup", "Add Ons", Decimal("30.00")), [(3, Decimal("15"))])
        store.add_item(Item(11, "Bottled Water", "Drinks", Decimal("40.00"), is_externally_sourced=True))
        return store
