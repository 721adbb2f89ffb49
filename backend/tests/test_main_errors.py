import pytest
from psycopg import errors as pg_errors
from fastapi.testclient import TestClient

from backend.app import deps
from backend.app.config import settings
from backend.app.main import app
from backend.app.pos.draft_order import DraftOrderRegistry
from backend.app.pos import pg_store
from backend.app.pos.pg_store import PgPosStore
from backend.app.pos.store import StoreConflict, StoreError
from backend.tests.pos_fixtures import CROISSANT, LATTE, TAX


HEADERS = {"X-Terminal-Id": "t1", "X-Cashier-Id": "cashier-1"}


@pytest.fixture
def client(store, monkeypatch):
    monkeypatch.setattr(settings, "store_backend", "memory")
    registry = DraftOrderRegistry(store, tax_rate=TAX)
    app.dependency_overrides[deps.get_store] = lambda: store
    app.dependency_overrides[deps.get_registry] = lambda: registry
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def test_insufficient_stock_maps_to_409_with_shortfall(client):
    assert client.post("/pos/order/lines", json={"item_id": CROISSANT, "qty": 1}, headers=HEADERS).status_code == 200
    res = client.post("/pos/order/lines", json={"item_id": CROISSANT, "qty": 1}, headers=HEADERS)
    assert res.status_code == 409
    body = res.json()
    assert body["code"] == "insufficient_stock"
    assert [s["ingredient_id"] for s in body["shortfall"]] == [3]


def test_insufficient_payment_maps_to_400(client):
    client.post("/pos/order/lines", json={"item_id": LATTE, "qty": 1}, headers=HEADERS)
    res = client.post("/pos/checkout", json={"payment_method": "cash", "cash_tendered": "100"}, headers=HEADERS)
    assert res.status_code == 400
    body = res.json()
    assert body["code"] == "insufficient_payment"
    assert body["missing"] == "68.00"


def test_checkout_then_double_void(client):
    client.post("/pos/order/lines", json={"item_id": LATTE, "qty": 1}, headers=HEADERS)
    res = client.post("/pos/checkout", json={"payment_method": "gcash"}, headers=HEADERS)
    assert res.status_code == 200
    sale_id = res.json()["sale"]["sale_id"]

    first = client.post(f"/pos/sales/{sale_id}/void", json={"reason": "wrong order"}, headers=HEADERS)
    assert first.status_code == 200
    assert first.json()["sale"]["voided_by"] == "cashier-1"

    second = client.post(f"/pos/sales/{sale_id}/void", json={"reason": "wrong order"}, headers=HEADERS)
    assert second.status_code == 409
    assert second.json()["code"] == "already_voided"

    assert client.get("/pos/sales/999").json()["code"] == "sale_not_found"


def test_missing_draft_and_headers(client):
    res = client.post("/pos/checkout", json={"payment_method": "cash"}, headers=HEADERS)
    assert res.status_code == 404
    assert res.json()["code"] == "draft_order_not_found"

    assert client.get("/pos/order").status_code == 400
    assert client.post("/pos/checkout", json={"payment_method": "cash"}, headers={"X-Terminal-Id": "t1"}).status_code == 401


def test_request_validation_is_422(client):
    res = client.post("/pos/order/lines", json={"item_id": LATTE, "qty": 0}, headers=HEADERS)
    assert res.status_code == 422
    assert res.json()["detail"] == "validation failed"


def test_request_id_is_echoed_and_health_is_ok(client):
    res = client.get("/health", headers={"X-Request-Id": "abc123"})
    assert res.status_code == 200
    assert res.headers["X-Request-Id"] == "abc123"
    assert res.json()["status"] == "ok"
    assert res.json()["request_id"] == "abc123"
    assert client.get("/meta").json()["currency"] == settings.currency


def test_storage_outage_maps_to_503(client):
    class _DownStore:
        def read(self):
            raise StoreError("connection refused")

    app.dependency_overrides[deps.get_store] = lambda: _DownStore()
    res = client.get("/pos/items")
    assert res.status_code == 503
    assert res.json()["code"] == "store_error"


class _FailingCursor:
    def __init__(self, error):
        self.error = error

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, sql, params=None):
        raise self.error


class _FailingConn:
    def __init__(self, error):
        self.error = error

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def cursor(self):
        return _FailingCursor(self.error)


@pytest.fixture
def pg_client(client):
    app.dependency_overrides[deps.get_store] = lambda: PgPosStore()
    return client


def _fail_db_with(monkeypatch, error):
    monkeypatch.setattr(pg_store, "get_conn", lambda: _FailingConn(error))


@pytest.mark.parametrize(
    "error, status_code, code",
    [
        (pg_errors.ForeignKeyViolation("violates foreign key constraint"), 400, "invalid_reference"),
        (pg_errors.CheckViolation("violates check constraint"), 400, "constraint_violation"),
        (pg_errors.InvalidTextRepresentation("invalid input syntax"), 400, "invalid_value"),
        (pg_errors.UniqueViolation("duplicate key value"), 409, "conflict"),
        (pg_errors.OperationalError("connection refused"), 503, "store_error"),
    ],
)
def test_database_errors_under_a_write_map_by_cause(pg_client, monkeypatch, error, status_code, code):
    _fail_db_with(monkeypatch, error)
    res = pg_client.post("/inventory/ingredients/1/adjust", json={"delta": "5", "reason": "delivery"}, headers=HEADERS)
    assert res.status_code == status_code
    assert res.json()["code"] == code


def test_database_errors_under_a_read_map_by_cause(pg_client, monkeypatch):
    _fail_db_with(monkeypatch, pg_errors.InvalidTextRepresentation("invalid input syntax"))
    res = pg_client.get("/pos/items")
    assert res.status_code == 400
    assert res.json()["detail"] == "invalid value"


def test_memory_conflict_maps_to_409(client):
    class _ConflictStore:
        def transaction(self):
            raise StoreConflict("duplicate client_ref t1-0001")

    app.dependency_overrides[deps.get_store] = lambda: _ConflictStore()
    res = client.post("/inventory/ingredients/1/adjust", json={"delta": "5"}, headers=HEADERS)
    assert res.status_code == 409
    assert res.json()["code"] == "conflict"


def test_resubmitted_checkout_over_http_returns_the_same_sale(client):
    client.post("/pos/order/lines", json={"item_id": LATTE, "qty": 1}, headers=HEADERS)
    body = {"payment_method": "gcash", "client_ref": "t1-0009"}
    first = client.post("/pos/checkout", json=body, headers=HEADERS)
    assert first.status_code == 200

    replay = client.post("/pos/checkout", json=body, headers=HEADERS)
    assert replay.status_code == 200
    assert replay.json()["duplicate"] is True
    assert replay.json()["sale"]["sale_id"] == first.json()["sale"]["sale_id"]
