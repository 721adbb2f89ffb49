from decimal import Decimal

import pytest

from backend.app.pos.draft_order import DraftOrderRegistry
from backend.app.pos.errors import DraftOrderNotFound, InsufficientStock
from backend.app.routers import inventory as inventory_router
from backend.app.routers import pos as pos_router
from backend.app.routers import reports as reports_router
from backend.tests.pos_fixtures import CROISSANT, LATTE, MILK, TAX, quantities, sale_count


@pytest.fixture
def registry(store):
    return DraftOrderRegistry(store, tax_rate=TAX)


def _add(registry, item_id, qty=1, terminal_id="t1"):
    return pos_router.add_order_line(pos_router.OrderLineIn(item_id=item_id, qty=qty), terminal_id=terminal_id, registry=registry)


def test_order_endpoints_drive_the_terminal_draft(registry):
    with pytest.raises(DraftOrderNotFound):
        pos_router.get_order(terminal_id="t1", registry=registry)

    out = _add(registry, LATTE, 2)
    assert out["terminal_id"] == "t1"
    assert out["line_count"] == 1
    assert out["total"] == Decimal("336.00")

    out = pos_router.set_order_line(LATTE, pos_router.OrderLineQtyIn(qty=1), terminal_id="t1", registry=registry)
    assert out["subtotal"] == Decimal("150.00")

    out = pos_router.remove_order_line(LATTE, terminal_id="t1", registry=registry)
    assert out["line_count"] == 0

    assert pos_router.clear_order(terminal_id="t1", registry=registry) == {"ok": True}
    assert registry.get("t1") is None


def test_drafts_are_isolated_per_terminal(registry):
    _add(registry, CROISSANT, 1, terminal_id="t1")
    # Availability is advisory: a second terminal may add the same last unit.
    _add(registry, CROISSANT, 1, terminal_id="t2")
    with pytest.raises(InsufficientStock):
        _add(registry, CROISSANT, 1, terminal_id="t1")


def test_checkout_endpoint_commits_and_discards_the_draft(store, registry):
    _add(registry, LATTE, 1)
    out = pos_router.checkout_order(
        pos_router.CheckoutIn(payment_method="Cash", cash_tendered=Decimal("200"), client_ref="t1-0001"),
        terminal_id="t1",
        cashier_id="cashier-1",
        store=store,
        registry=registry,
    )
    assert out["change"] == Decimal("32.00")
    assert out["duplicate"] is False
    assert out["sale"]["client_ref"] == "t1-0001"
    assert registry.get("t1") is None

    with pytest.raises(DraftOrderNotFound):
        pos_router.checkout_order(
            pos_router.CheckoutIn(payment_method="cash", cash_tendered=Decimal("200")),
            terminal_id="t1",
            cashier_id="cashier-1",
            store=store,
            registry=registry,
        )


def test_resubmitted_checkout_returns_the_committed_sale(store, registry):
    body = pos_router.CheckoutIn(payment_method="cash", cash_tendered=Decimal("200"), client_ref="t1-0005")
    _add(registry, LATTE, 1)
    first = pos_router.checkout_order(body, terminal_id="t1", cashier_id="cashier-1", store=store, registry=registry)
    after_first = quantities(store)

    # Same request again after the terminal lost the first response.
    replay = pos_router.checkout_order(body, terminal_id="t1", cashier_id="cashier-1", store=store, registry=registry)

    assert replay["duplicate"] is True
    assert replay["sale"]["sale_id"] == first["sale"]["sale_id"]
    assert replay["change"] == first["change"]
    assert replay["currency"] == first["currency"]
    assert quantities(store) == after_first
    assert sale_count(store) == 1
    assert registry.get("t1") is None


def test_void_endpoint_records_the_approver(store, registry):
    _add(registry, LATTE, 1)
    sale = pos_router.checkout_order(
        pos_router.CheckoutIn(payment_method="gcash"),
        terminal_id="t1",
        cashier_id="cashier-1",
        store=store,
        registry=registry,
    )["sale"]

    out = pos_router.void_sale_by_id(
        sale["sale_id"],
        pos_router.VoidIn(reason="wrong order", approved_by="manager-1"),
        cashier_id="cashier-1",
        store=store,
    )
    assert out["sale"]["voided"] is True
    assert out["sale"]["voided_by"] == "manager-1"

    looked_up = pos_router.get_sale_by_id(sale["sale_id"], store=store)["sale"]
    assert looked_up["void_reason"] == "wrong order"


def test_catalog_and_availability(store):
    items = pos_router.list_items(store=store)["items"]
    assert {i["name"] for i in items} >= {"Latte", "Croissant", "Bottled Water"}
    assert pos_router.item_availability(LATTE, qty=6, store=store)["available"] is False


def test_inventory_endpoints(store):
    out = inventory_router.adjust_ingredient(
        MILK,
        inventory_router.StockAdjustIn(delta=Decimal("-800"), reason="count"),
        cashier_id="cashier-1",
        store=store,
    )
    assert out["ingredient"]["quantity"] == Decimal("200")
    low = inventory_router.ingredients_low_stock(store=store)["ingredients"]
    assert [i["ingredient_id"] for i in low] == [MILK]
    assert len(inventory_router.ingredients(store=store)["ingredients"]) == 3


def test_report_endpoints(store, registry):
    _add(registry, LATTE, 1)
    pos_router.checkout_order(
        pos_router.CheckoutIn(payment_method="gcash"),
        terminal_id="t1",
        cashier_id="cashier-1",
        store=store,
        registry=registry,
    )
    out = reports_router.sales_report(store=store)
    assert out["totals"]["count"] == 1
    assert out["totals"]["total"] == Decimal("168.00")
    assert reports_router.sales_stats_report(store=store)["daily"] == Decimal("168.00")
    cats = reports_router.sales_categories_report(store=store)["categories"]
    assert cats[0]["name"] == "Coffee"
    top = reports_router.top_items_report(limit=5, store=store)["items"]
    assert top[0]["item_id"] == LATTE
