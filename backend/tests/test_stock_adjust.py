from decimal import Decimal

import pytest

from backend.app.pos.errors import IngredientNotFound, InsufficientStock, InvalidQuantity
from backend.app.pos.stock import adjust_stock, crossed_low_threshold, list_ingredients, low_stock
from backend.tests.pos_fixtures import BEANS, DOUGH, MILK, quantities


def test_positive_adjustment_credits_and_records_a_movement(store):
    ing = adjust_stock(store, MILK, "500", "delivery", source_id="cashier-1")
    assert ing.quantity == Decimal("1500")
    with store.read() as tx:
        moves = tx.list_movements(source_type="adjustment")
    assert [(m.ingredient_id, m.quantity, m.reason, m.source_id) for m in moves] == [
        (MILK, Decimal("500"), "delivery", "cashier-1")
    ]


def test_negative_adjustment_is_a_conditional_debit(store):
    assert adjust_stock(store, BEANS, Decimal("-250.5"), "spoilage").quantity == Decimal("749.5")

    with pytest.raises(InsufficientStock):
        adjust_stock(store, BEANS, Decimal("-750"), "pullout")
    assert quantities(store)[BEANS] == Decimal("749.5")


def test_adjustment_rejects_zero_and_unknown_ingredients(store):
    with pytest.raises(InvalidQuantity):
        adjust_stock(store, MILK, 0, "noop")
    with pytest.raises(IngredientNotFound):
        adjust_stock(store, 77, 1, "ghost")


def test_low_stock_lists_ingredients_at_or_below_threshold(store):
    # Dough starts at 1 with threshold 0; milk threshold is 200.
    assert low_stock(store) == []
    adjust_stock(store, MILK, "-800", "count correction")
    adjust_stock(store, DOUGH, "-1", "dropped")
    assert sorted(i.ingredient_id for i in low_stock(store)) == [MILK, DOUGH]
    assert len(list_ingredients(store)) == 3


def test_crossed_low_threshold_only_fires_on_the_way_down(store):
    milk = {i.ingredient_id: i for i in list_ingredients(store)}[MILK]
    assert crossed_low_threshold(milk, Decimal("200")) is True
    assert crossed_low_threshold(milk, Decimal("201")) is False
