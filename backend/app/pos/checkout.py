from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional

from ..amounts import order_totals, q2, to_decimal
from ..config import settings
from ..logs import json_log
from .availability import find_shortfalls
from .errors import CommitFailure, EmptyOrder, InsufficientPayment, InsufficientStock
from .models import CheckoutResult, Ingredient, Sale, SaleItem, Shortfall, StockMovement
from .recipes import consumption_for
from .stock import crossed_low_threshold
from .store import StoreConflict, StoreError


def is_cash_method(payment_method: str, cash_methods: Optional[Iterable[str]] = None) -> bool:
    methods = settings.cash_methods if cash_methods is None else cash_methods
    return (payment_method or "").strip().lower() in {m.strip().lower() for m in methods}


def assert_cash_covers_total(total: Decimal, cash_tendered) -> Decimal:
    """Returns the change due; raises InsufficientPayment when tendered < total."""
    tendered = None if cash_tendered is None else q2(to_decimal(cash_tendered))
    if tendered is None or tendered < total:
        raise InsufficientPayment(total=total, cash_tendered=tendered)
    return q2(tendered - total)


def find_replayed_sale(store, client_ref: Optional[str]) -> Optional[Sale]:
    """The committed sale for `client_ref`, if a terminal already submitted it."""
    ref = (client_ref or "").strip()
    if not ref:
        return None
    with store.read() as tx:
        return tx.find_sale_by_ref(ref)


def replayed_result(sale: Sale, client_ref: str) -> CheckoutResult:
    json_log("info", "pos.checkout.duplicate", sale_id=sale.sale_id, client_ref=client_ref)
    return CheckoutResult(sale=sale, change=sale.change_due, duplicate=True)


def _lookup_replay(store, client_ref: Optional[str], cashier_id: str) -> Optional[Sale]:
    try:
        return find_replayed_sale(store, client_ref)
    except StoreError as ex:
        json_log("error", "pos.checkout.commit_failed", cashier_id=cashier_id, error=str(ex))
        raise CommitFailure() from ex


def _commit_shortfall(tx, ingredient_id: int, amount: Decimal, before: Optional[Ingredient]) -> list[Shortfall]:
    current = tx.get_ingredients([ingredient_id])
    short = find_shortfalls({ingredient_id: amount}, current)
    if short:
        return short
    # The row moved under us and back again; report what we last saw.
    return [
        Shortfall(
            ingredient_id=ingredient_id,
            name=before.name if before else f"ingredient {ingredient_id}",
            unit=before.unit if before else "",
            required=amount,
            on_hand=before.quantity if before else Decimal("0"),
        )
    ]


def checkout(
    store,
    draft,
    cashier_id: str,
    payment_method: str,
    cash_tendered=None,
    *,
    client_ref: Optional[str] = None,
    now: Optional[datetime] = None,
    cash_methods: Optional[Iterable[str]] = None,
) -> CheckoutResult:
    """
    Turn a draft order into a committed Sale and debit the stock ledger, atomically.

    Stock is re-validated inside the commit transaction against current quantities,
    never against what the terminal saw while building the cart. Each debit is a
    conditional decrement; if any of them cannot be applied the whole transaction
    is abandoned and InsufficientStock is raised. Storage failures surface as
    CommitFailure with nothing recorded. Callers retrying after a failure must call
    checkout() again from the top.

    A `client_ref` that is already journalled returns that sale with
    duplicate=True, even when the draft was emptied by the first submit.
    """
    payment_method = (payment_method or "").strip().lower()
    replay = _lookup_replay(store, client_ref, cashier_id)
    if replay is not None:
        draft.clear()
        return replayed_result(replay, client_ref)

    lines = draft.lines
    if not lines:
        json_log("warning", "pos.checkout.rejected", reason="empty_order", cashier_id=cashier_id)
        raise EmptyOrder()

    subtotal, tax, total = order_totals((l.subtotal for l in lines), draft.tax_rate)

    change = None
    tendered = None
    if is_cash_method(payment_method, cash_methods):
        change = assert_cash_covers_total(total, cash_tendered)
        tendered = q2(to_decimal(cash_tendered))
    elif cash_tendered is not None:
        tendered = q2(to_decimal(cash_tendered))

    now = now or datetime.now(timezone.utc)
    duplicate = None
    low: list[Ingredient] = []
    try:
        with store.transaction() as tx:
            if client_ref:
                duplicate = tx.find_sale_by_ref(client_ref)
            if duplicate is None:
                consumption = consumption_for(tx, [(l.item_id, l.quantity) for l in lines])
                before = tx.lock_ingredients(consumption.keys())
                short = find_shortfalls(consumption, before)
                if short:
                    raise InsufficientStock(short)

                for ing_id, amount in consumption.items():
                    new_qty = tx.debit(ing_id, amount)
                    if new_qty is None:
                        raise InsufficientStock(_commit_shortfall(tx, ing_id, amount, before.get(ing_id)))
                    prior = before[ing_id]
                    if crossed_low_threshold(prior, new_qty):
                        low.append(replace(prior, quantity=new_qty))

                sale = tx.append_sale(
                    Sale(
                        sale_id=None,
                        cashier_id=str(cashier_id),
                        created_at=now,
                        payment_method=payment_method,
                        items=tuple(
                            SaleItem(
                                item_id=l.item_id,
                                name=l.name,
                                category=l.category,
                                quantity=l.quantity,
                                unit_price=l.unit_price,
                                subtotal=l.subtotal,
                            )
                            for l in lines
                        ),
                        subtotal=subtotal,
                        tax=tax,
                        total=total,
                        consumption=tuple(consumption.items()),
                        cash_tendered=tendered,
                        change_due=change,
                        client_ref=client_ref,
                    )
                )
                for ing_id, amount in consumption.items():
                    tx.record_movement(
                        StockMovement(
                            ingredient_id=ing_id,
                            quantity=-amount,
                            source_type="sale",
                            source_id=str(sale.sale_id),
                            reason="POS sale",
                            created_at=now,
                        )
                    )
    except InsufficientStock as ex:
        json_log(
            "warning",
            "pos.checkout.rejected",
            reason="insufficient_stock",
            cashier_id=cashier_id,
            shortfall=[s.to_dict() for s in ex.shortfall],
        )
        raise
    except StoreConflict as ex:
        # Another submit with the same client_ref committed between our lookup and insert.
        replay = _lookup_replay(store, client_ref, cashier_id)
        if replay is None:
            json_log("error", "pos.checkout.commit_failed", cashier_id=cashier_id, total=total, error=str(ex))
            raise CommitFailure() from ex
        draft.clear()
        return replayed_result(replay, client_ref)
    except StoreError as ex:
        json_log("error", "pos.checkout.commit_failed", cashier_id=cashier_id, total=total, error=str(ex))
        raise CommitFailure() from ex

    draft.clear()

    if duplicate is not None:
        return replayed_result(duplicate, client_ref)

    json_log(
        "info",
        "pos.checkout.committed",
        sale_id=sale.sale_id,
        cashier_id=sale.cashier_id,
        payment_method=payment_method,
        total=total,
        lines=len(sale.items),
    )
    for ing in low:
        json_log("warning", "stock.low", ingredient_id=ing.ingredient_id, name=ing.name, quantity=ing.quantity, unit=ing.unit)
    return CheckoutResult(sale=sale, change=change, low_stock=tuple(low))
