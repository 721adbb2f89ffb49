#!/usr/bin/env python3
import os
import sys
from pathlib import Path

import psycopg
from psycopg.rows import dict_row

from backend.app.pos.store import MemoryPosStore


MIGRATIONS_DIR = Path(__file__).resolve().parents[1] / "db" / "migrations"


def _truthy(v: str) -> bool:
    return (v or "").strip().lower() in {"1", "true", "yes", "y", "on"}


def _apply_migrations(cur) -> int:
    files = sorted(MIGRATIONS_DIR.glob("*.sql"))
    for f in files:
        cur.execute(f.read_text(encoding="utf-8"))
    return len(files)


def _seed_demo_menu(cur) -> tuple[int, int]:
    demo = MemoryPosStore.demo()
    with demo.read() as tx:
        ingredients = tx.list_ingredients()
        items = tx.list_items()
        recipes = {i.item_id: tx.expand_recipe(i.item_id) for i in items}

    for ing in ingredients:
        cur.execute(
            """
            INSERT INTO ingredients (ingredient_id, name, unit, quantity, minimum_quantity)
            VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (ingredient_id) DO NOTHING
            """,
            (ing.ingredient_id, ing.name, ing.unit, ing.quantity, ing.minimum_quantity),
        )
    for it in items:
        cur.execute(
            """
            INSERT INTO items (item_id, item_name, category, base_price, is_externally_sourced)
            VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (item_id) DO NOTHING
            """,
            (it.item_id, it.name, it.category, it.price, it.is_externally_sourced),
        )
        for r in recipes[it.item_id]:
            cur.execute(
                """
                INSERT INTO item_ingredients (item_id, ingredient_id, quantity)
                VALUES (%s, %s, %s)
                ON CONFLICT (item_id, ingredient_id) DO NOTHING
                """,
                (r.item_id, r.ingredient_id, r.quantity_per_unit),
            )

    # Explicit ids above leave the serial sequences behind.
    for table, col in (("ingredients", "ingredient_id"), ("items", "item_id")):
        cur.execute(
            f"SELECT setval(pg_get_serial_sequence('{table}', '{col}'), GREATEST((SELECT MAX({col}) FROM {table}), 1))"
        )
    return len(ingredients), len(items)


def main() -> int:
    db_url = os.getenv("DATABASE_URL")
    if not db_url:
        print("seed_menu: missing DATABASE_URL", file=sys.stderr)
        return 2

    with psycopg.connect(db_url, row_factory=dict_row) as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                applied = _apply_migrations(cur)
                print(f"seed_menu: applied {applied} migration file(s)")
                if not _truthy(os.getenv("SEED_DEMO_MENU", "1")):
                    return 0
                n_ing, n_items = _seed_demo_menu(cur)
                print(f"seed_menu: ensured {n_ing} ingredients and {n_items} items")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
