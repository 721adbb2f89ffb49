from decimal import Decimal

import pytest

from backend.app.pos.availability import check_availability, find_shortfalls
from backend.app.pos.errors import InvalidQuantity, ItemNotFound
from backend.tests.pos_fixtures import BEANS, CROISSANT, LATTE, MILK, WATER, build_store, quantities


def test_available_when_every_ingredient_covers_the_request(store):
    a = check_availability(store, LATTE, 1)
    assert a.available is True
    assert a.shortfall == ()
    # 1000 ml milk / 200 ml per latte
    assert a.available_quantity == 5


def test_unavailable_reports_the_short_ingredient(store):
    a = check_availability(store, LATTE, 6)
    assert a.available is False
    assert [s.ingredient_id for s in a.shortfall] == [MILK]
    s = a.shortfall[0]
    assert s.required == Decimal("1200")
    assert s.on_hand == Decimal("1000")
    assert s.missing == Decimal("200")


def test_every_short_ingredient_is_listed():
    store = build_store(beans="10", milk="100")
    a = check_availability(store, LATTE, 1)
    assert a.available is False
    assert [s.ingredient_id for s in a.shortfall] == [BEANS, MILK]


def test_boundary_exact_stock_is_available():
    store = build_store(dough="1")
    assert check_availability(store, CROISSANT, 1).available is True
    assert check_availability(store, CROISSANT, 2).available is False


def test_externally_sourced_item_is_always_available(store):
    a = check_availability(store, WATER, 500)
    assert a.available is True
    assert a.available_quantity is None


def test_unknown_item_and_bad_quantity(store):
    with pytest.raises(ItemNotFound):
        check_availability(store, 999, 1)
    with pytest.raises(InvalidQuantity):
        check_availability(store, LATTE, 0)
    with pytest.raises(InvalidQuantity):
        check_availability(store, LATTE, True)


def test_check_does_not_touch_stock(store):
    before = quantities(store)
    check_availability(store, LATTE, 3)
    check_availability(store, LATTE, 30)
    assert quantities(store) == before


def test_find_shortfalls_treats_missing_ingredient_as_zero():
    short = find_shortfalls({42: Decimal("1")}, {})
    assert len(short) == 1
    assert short[0].on_hand == Decimal("0")
    assert short[0].name == "ingredient 42"
