from fastapi import APIRouter, Depends, HTTPException, Query
from datetime import datetime, timezone
from typing import Optional
from ..config import settings
from ..deps import get_store
from ..pos.journal import list_sales, sales_by_category, sales_stats, sales_totals, top_items
from ..pos.store import PosStore

router = APIRouter(prefix="/reports", tags=["reports"])


def _aware(d: Optional[datetime]) -> Optional[datetime]:
    # Naive query params are taken as UTC so they compare with stored timestamps.
    if d is None or d.tzinfo is not None:
        return d
    return d.replace(tzinfo=timezone.utc)


def _window(start: Optional[datetime], end: Optional[datetime]) -> tuple[Optional[datetime], Optional[datetime]]:
    start, end = _aware(start), _aware(end)
    if start is not None and end is not None and end <= start:
        raise HTTPException(status_code=400, detail="end must be after start")
    return start, end


@router.get("/sales")
def sales_report(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    cashier_id: Optional[str] = None,
    payment_method: Optional[str] = None,
    include_voided: bool = True,
    store: PosStore = Depends(get_store),
):
    start, end = _window(start, end)
    sales = list_sales(
        store,
        start,
        end,
        cashier_id=(cashier_id or "").strip() or None,
        payment_method=payment_method,
        include_voided=include_voided,
    )
    return {
        "currency": settings.currency,
        "totals": sales_totals(sales),
        "sales": [s.to_dict() for s in sales],
    }


@router.get("/sales/stats")
def sales_stats_report(store: PosStore = Depends(get_store)):
    return {"currency": settings.currency, **sales_stats(store)}


@router.get("/sales/categories")
def sales_categories_report(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    store: PosStore = Depends(get_store),
):
    start, end = _window(start, end)
    sales = list_sales(store, start, end, include_voided=False)
    return {"currency": settings.currency, "categories": sales_by_category(sales)}


@router.get("/sales/top-items")
def top_items_report(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(5, ge=1, le=50),
    store: PosStore = Depends(get_store),
):
    start, end = _window(start, end)
    sales = list_sales(store, start, end, include_voided=False)
    return {"currency": settings.currency, "items": top_items(sales, limit=limit)}
