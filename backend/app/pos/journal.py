"""
Read side of the sale journal: point lookups for the void flow and the
aggregates the reporting screens consume. Everything here reads a committed
snapshot and never holds up a checkout.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from ..amounts import ZERO, q2
from .errors import SaleNotFound
from .models import Sale


def get_sale(store, sale_id: int) -> Sale:
    with store.read() as tx:
        sale = tx.get_sale(sale_id)
    if sale is None:
        raise SaleNotFound(sale_id)
    return sale


def list_sales(
    store,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    *,
    cashier_id: Optional[str] = None,
    payment_method: Optional[str] = None,
    include_voided: bool = True,
) -> list[Sale]:
    with store.read() as tx:
        return tx.list_sales(
            start,
            end,
            cashier_id=cashier_id,
            payment_method=(payment_method or "").strip().lower() or None,
            include_voided=include_voided,
        )


def sales_totals(sales: Iterable[Sale]) -> dict:
    count = 0
    subtotal = tax = total = ZERO
    voided_count = 0
    voided_total = ZERO
    for s in sales:
        if s.voided:
            voided_count += 1
            voided_total += s.total
            continue
        count += 1
        subtotal += s.subtotal
        tax += s.tax
        total += s.total
    return {
        "count": count,
        "subtotal": q2(subtotal),
        "tax": q2(tax),
        "total": q2(total),
        "voided_count": voided_count,
        "voided_total": q2(voided_total),
    }


def _month_before(d: datetime) -> datetime:
    year, month = (d.year, d.month - 1) if d.month > 1 else (d.year - 1, 12)
    for day in (d.day, 30, 29, 28):
        try:
            return d.replace(year=year, month=month, day=day)
        except ValueError:
            continue
    raise ValueError(f"cannot step back a month from {d!r}")


def sales_stats(store, now: Optional[datetime] = None) -> dict:
    """Totals of non-voided sales since midnight, over the last 7 days and the last month."""
    now = now or datetime.now(timezone.utc)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    windows = {
        "daily": midnight,
        "weekly": midnight - timedelta(days=7),
        "monthly": _month_before(midnight),
    }
    sales = list_sales(store, windows["monthly"], now + timedelta(microseconds=1), include_voided=False)
    out = {}
    for name, start in windows.items():
        out[name] = q2(sum((s.total for s in sales if s.created_at >= start), ZERO))
    return out


def sales_by_category(sales: Iterable[Sale]) -> list[dict]:
    buckets: dict[str, dict] = {}
    for s in sales:
        if s.voided:
            continue
        for it in s.items:
            b = buckets.setdefault(it.category or "Uncategorized", {"count": 0, "total": ZERO})
            b["count"] += it.quantity
            b["total"] += it.subtotal
    return [
        {"name": name, "count": b["count"], "total": q2(b["total"])}
        for name, b in sorted(buckets.items(), key=lambda kv: (-kv[1]["total"], kv[0]))
    ]


def top_items(sales: Iterable[Sale], limit: int = 5) -> list[dict]:
    items: dict[int, dict] = {}
    for s in sales:
        if s.voided:
            continue
        for it in s.items:
            row = items.setdefault(it.item_id, {"item_id": it.item_id, "name": it.name, "quantity": 0, "revenue": ZERO})
            row["quantity"] += it.quantity
            row["revenue"] += it.subtotal
    ranked = sorted(items.values(), key=lambda r: (-r["revenue"], r["item_id"]))
    out = []
    for r in ranked[: max(int(limit), 0)]:
        r["revenue"] = q2(r["revenue"])
        out.append(r)
    return out
