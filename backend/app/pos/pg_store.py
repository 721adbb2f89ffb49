from __future__ import annotations

from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Iterator, Optional

import psycopg
from psycopg import errors as pg_errors

from ..amounts import q6
from ..db import get_conn
from .models import Ingredient, Item, RecipeLine, Sale, SaleItem, StockMovement, VoidPatch
from .store import PosStore, StoreConflict, StoreError


_SALE_COLUMNS = """
    sale_id, cashier_id, sale_date, payment_method, subtotal, tax, total_amount,
    cash_tendered, change_due, client_ref, voided, void_reason, voided_at, voided_by
"""


def _item(r) -> Item:
    return Item(
        item_id=r["item_id"],
        name=r["item_name"],
        category=r["category"],
        price=Decimal(str(r["base_price"])),
        is_externally_sourced=bool(r["is_externally_sourced"]),
    )


def _ingredient(r) -> Ingredient:
    return Ingredient(
        ingredient_id=r["ingredient_id"],
        name=r["name"],
        unit=r["unit"],
        quantity=q6(Decimal(str(r["quantity"]))),
        minimum_quantity=q6(Decimal(str(r["minimum_quantity"]))),
    )


def _sale(h, item_rows, consumption_rows) -> Sale:
    return Sale(
        sale_id=h["sale_id"],
        cashier_id=h["cashier_id"],
        created_at=h["sale_date"],
        payment_method=h["payment_method"],
        items=tuple(
            SaleItem(
                item_id=r["item_id"],
                name=r["item_name"],
                category=r["category"],
                quantity=int(r["quantity"]),
                unit_price=Decimal(str(r["unit_price"])),
                subtotal=Decimal(str(r["subtotal"])),
            )
            for r in item_rows
        ),
        subtotal=Decimal(str(h["subtotal"])),
        tax=Decimal(str(h["tax"])),
        total=Decimal(str(h["total_amount"])),
        consumption=tuple((r["ingredient_id"], q6(Decimal(str(r["quantity"])))) for r in consumption_rows),
        cash_tendered=None if h["cash_tendered"] is None else Decimal(str(h["cash_tendered"])),
        change_due=None if h["change_due"] is None else Decimal(str(h["change_due"])),
        client_ref=h["client_ref"],
        voided=bool(h["voided"]),
        void_reason=h["void_reason"],
        voided_at=h["voided_at"],
        voided_by=h["voided_by"],
    )


class PgPosTx:
    def __init__(self, cur, writable: bool = True):
        self.cur = cur
        self._writable = writable

    def _require_writable(self):
        if not self._writable:
            raise StoreError("read-only transaction")

    # ---- catalog ----
    def get_item(self, item_id: int) -> Optional[Item]:
        self.cur.execute(
            """
            SELECT item_id, item_name, category, base_price, is_externally_sourced
            FROM items
            WHERE item_id = %s
            """,
            (item_id,),
        )
        r = self.cur.fetchone()
        return _item(r) if r else None

    def list_items(self) -> list[Item]:
        self.cur.execute(
            """
            SELECT item_id, item_name, category, base_price, is_externally_sourced
            FROM items
            ORDER BY category, item_name
            """
        )
        return [_item(r) for r in (self.cur.fetchall() or [])]

    def expand_recipe(self, item_id: int) -> list[RecipeLine]:
        self.cur.execute(
            """
            SELECT item_id, ingredient_id, quantity
            FROM item_ingredients
            WHERE item_id = %s
            ORDER BY ingredient_id
            """,
            (item_id,),
        )
        return [
            RecipeLine(r["item_id"], r["ingredient_id"], q6(Decimal(str(r["quantity"]))))
            for r in (self.cur.fetchall() or [])
        ]

    # ---- stock ledger ----
    def get_ingredient(self, ingredient_id: int) -> Optional[Ingredient]:
        return self.get_ingredients([ingredient_id]).get(ingredient_id)

    def get_ingredients(self, ingredient_ids: Iterable[int]) -> dict[int, Ingredient]:
        ids = sorted({int(i) for i in ingredient_ids})
        if not ids:
            return {}
        self.cur.execute(
            """
            SELECT ingredient_id, name, unit, quantity, minimum_quantity
            FROM ingredients
            WHERE ingredient_id = ANY(%s)
            ORDER BY ingredient_id
            """,
            (ids,),
        )
        return {r["ingredient_id"]: _ingredient(r) for r in (self.cur.fetchall() or [])}

    def lock_ingredients(self, ingredient_ids: Iterable[int]) -> dict[int, Ingredient]:
        # Ascending id order so two terminals never wait on each other in a cycle.
        self._require_writable()
        ids = sorted({int(i) for i in ingredient_ids})
        if not ids:
            return {}
        self.cur.execute(
            """
            SELECT ingredient_id, name, unit, quantity, minimum_quantity
            FROM ingredients
            WHERE ingredient_id = ANY(%s)
            ORDER BY ingredient_id
            FOR UPDATE
            """,
            (ids,),
        )
        return {r["ingredient_id"]: _ingredient(r) for r in (self.cur.fetchall() or [])}

    def list_ingredients(self) -> list[Ingredient]:
        self.cur.execute(
            """
            SELECT ingredient_id, name, unit, quantity, minimum_quantity
            FROM ingredients
            ORDER BY name
            """
        )
        return [_ingredient(r) for r in (self.cur.fetchall() or [])]

    def get_quantity(self, ingredient_id: int) -> Optional[Decimal]:
        ing = self.get_ingredient(ingredient_id)
        return None if ing is None else ing.quantity

    def debit(self, ingredient_id: int, quantity: Decimal) -> Optional[Decimal]:
        self._require_writable()
        qty = q6(quantity)
        self.cur.execute(
            """
            UPDATE ingredients
            SET quantity = quantity - %s,
                updated_at = now()
            WHERE ingredient_id = %s
              AND quantity >= %s
            RETURNING quantity
            """,
            (qty, ingredient_id, qty),
        )
        r = self.cur.fetchone()
        return None if r is None else q6(Decimal(str(r["quantity"])))

    def credit(self, ingredient_id: int, quantity: Decimal) -> Optional[Decimal]:
        self._require_writable()
        self.cur.execute(
            """
            UPDATE ingredients
            SET quantity = quantity + %s,
                updated_at = now()
            WHERE ingredient_id = %s
            RETURNING quantity
            """,
            (q6(quantity), ingredient_id),
        )
        r = self.cur.fetchone()
        return None if r is None else q6(Decimal(str(r["quantity"])))

    def record_movement(self, movement: StockMovement) -> None:
        self._require_writable()
        self.cur.execute(
            """
            INSERT INTO stock_movements (ingredient_id, qty, source_type, source_id, reason, created_at)
            VALUES (%s, %s, %s, %s, %s, %s)
            """,
            (
                movement.ingredient_id,
                q6(movement.quantity),
                movement.source_type,
                movement.source_id,
                movement.reason,
                movement.created_at,
            ),
        )

    def list_movements(self, *, source_type: Optional[str] = None, source_id: Optional[str] = None) -> list[StockMovement]:
        self.cur.execute(
            """
            SELECT ingredient_id, qty, source_type, source_id, reason, created_at
            FROM stock_movements
            WHERE (%s::text IS NULL OR source_type = %s)
              AND (%s::text IS NULL OR source_id = %s)
            ORDER BY movement_id
            """,
            (source_type, source_type, source_id, source_id),
        )
        return [
            StockMovement(
                ingredient_id=r["ingredient_id"],
                quantity=q6(Decimal(str(r["qty"]))),
                source_type=r["source_type"],
                source_id=r["source_id"],
                reason=r["reason"],
                created_at=r["created_at"],
            )
            for r in (self.cur.fetchall() or [])
        ]

    # ---- sale journal ----
    def append_sale(self, sale: Sale) -> Sale:
        self._require_writable()
        self.cur.execute(
            """
            INSERT INTO sales_header
              (cashier_id, sale_date, payment_method, subtotal, tax, total_amount,
               cash_tendered, change_due, client_ref)
            VALUES
              (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING sale_id
            """,
            (
                sale.cashier_id,
                sale.created_at,
                sale.payment_method,
                sale.subtotal,
                sale.tax,
                sale.total,
                sale.cash_tendered,
                sale.change_due,
                sale.client_ref,
            ),
        )
        sale_id = self.cur.fetchone()["sale_id"]
        for line_no, it in enumerate(sale.items, start=1):
            self.cur.execute(
                """
                INSERT INTO sales_detail
                  (sale_id, line_no, item_id, item_name, category, quantity, unit_price, subtotal)
                VALUES
                  (%s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (sale_id, line_no, it.item_id, it.name, it.category, it.quantity, it.unit_price, it.subtotal),
            )
        for ing_id, qty in sale.consumption:
            self.cur.execute(
                """
                INSERT INTO sale_consumption (sale_id, ingredient_id, quantity)
                VALUES (%s, %s, %s)
                """,
                (sale_id, ing_id, q6(qty)),
            )
        return replace(sale, sale_id=sale_id)

    def _load_sales(self, headers: list) -> list[Sale]:
        if not headers:
            return []
        ids = [h["sale_id"] for h in headers]
        self.cur.execute(
            """
            SELECT sale_id, item_id, item_name, category, quantity, unit_price, subtotal
            FROM sales_detail
            WHERE sale_id = ANY(%s)
            ORDER BY sale_id, line_no
            """,
            (ids,),
        )
        items_by_sale: dict = {}
        for r in self.cur.fetchall() or []:
            items_by_sale.setdefault(r["sale_id"], []).append(r)
        self.cur.execute(
            """
            SELECT sale_id, ingredient_id, quantity
            FROM sale_consumption
            WHERE sale_id = ANY(%s)
            ORDER BY sale_id, ingredient_id
            """,
            (ids,),
        )
        consumption_by_sale: dict = {}
        for r in self.cur.fetchall() or []:
            consumption_by_sale.setdefault(r["sale_id"], []).append(r)
        return [
            _sale(h, items_by_sale.get(h["sale_id"], []), consumption_by_sale.get(h["sale_id"], []))
            for h in headers
        ]

    def get_sale(self, sale_id: int, *, for_update: bool = False) -> Optional[Sale]:
        if for_update:
            self._require_writable()
        self.cur.execute(
            f"""
            SELECT {_SALE_COLUMNS}
            FROM sales_header
            WHERE sale_id = %s
            {"FOR UPDATE" if for_update else ""}
            """,
            (sale_id,),
        )
        h = self.cur.fetchone()
        if not h:
            return None
        return self._load_sales([h])[0]

    def find_sale_by_ref(self, client_ref: str) -> Optional[Sale]:
        self.cur.execute(
            f"""
            SELECT {_SALE_COLUMNS}
            FROM sales_header
            WHERE client_ref = %s
            """,
            (client_ref,),
        )
        h = self.cur.fetchone()
        if not h:
            return None
        return self._load_sales([h])[0]

    def update_sale(self, sale_id: int, patch: VoidPatch) -> Optional[Sale]:
        self._require_writable()
        self.cur.execute(
            """
            UPDATE sales_header
            SET voided = true,
                void_reason = %s,
                voided_at = %s,
                voided_by = %s
            WHERE sale_id = %s
              AND voided = false
            RETURNING sale_id
            """,
            (patch.reason, patch.voided_at, patch.voided_by, sale_id),
        )
        if not self.cur.fetchone():
            return None
        return self.get_sale(sale_id)

    def list_sales(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        *,
        cashier_id: Optional[str] = None,
        payment_method: Optional[str] = None,
        include_voided: bool = True,
    ) -> list[Sale]:
        self.cur.execute(
            f"""
            SELECT {_SALE_COLUMNS}
            FROM sales_header
            WHERE (%s::timestamptz IS NULL OR sale_date >= %s)
              AND (%s::timestamptz IS NULL OR sale_date < %s)
              AND (%s::text IS NULL OR cashier_id = %s)
              AND (%s::text IS NULL OR payment_method = %s)
              AND (%s OR voided = false)
            ORDER BY sale_date, sale_id
            """,
            (
                start,
                start,
                end,
                end,
                cashier_id,
                cashier_id,
                payment_method,
                payment_method,
                include_voided,
            ),
        )
        return self._load_sales(self.cur.fetchall() or [])


class PgPosStore(PosStore):
    """PostgreSQL-backed store; one DB transaction per `transaction()` block."""

    @contextmanager
    def transaction(self) -> Iterator[PgPosTx]:
        try:
            with get_conn() as conn:
                with conn.cursor() as cur:
                    yield PgPosTx(cur)
        except pg_errors.UniqueViolation as ex:
            raise StoreConflict(str(ex)) from ex
        except psycopg.Error as ex:
            raise StoreError(str(ex)) from ex

    @contextmanager
    def read(self) -> Iterator[PgPosTx]:
        try:
            with get_conn() as conn:
                with conn.cursor() as cur:
                    # Header and line queries must see the same committed state.
                    cur.execute("SET TRANSACTION ISOLATION LEVEL REPEATABLE READ READ ONLY")
                    yield PgPosTx(cur, writable=False)
        except psycopg.Error as ex:
            raise StoreError(str(ex)) from ex
