from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from typing import Optional
from decimal import Decimal
from ..config import settings
from ..deps import get_store, get_registry, get_terminal_id, get_cashier_id
from ..validation import PaymentMethod, ClientRef, VoidReason, LineQuantity
from ..pos.availability import check_availability
from ..pos.checkout import checkout, find_replayed_sale, replayed_result
from ..pos.draft_order import DraftOrderRegistry
from ..pos.errors import DraftOrderNotFound
from ..pos.journal import get_sale
from ..pos.store import PosStore
from ..pos.voids import void_sale

router = APIRouter(prefix="/pos", tags=["pos"])


class OrderLineIn(BaseModel):
    item_id: int
    qty: LineQuantity = 1


class OrderLineQtyIn(BaseModel):
    # 0 removes the line.
    qty: int


class CheckoutIn(BaseModel):
    payment_method: PaymentMethod
    cash_tendered: Optional[Decimal] = None
    client_ref: Optional[ClientRef] = None


class VoidIn(BaseModel):
    reason: VoidReason
    approved_by: Optional[str] = None


def _order_out(order, terminal_id: str) -> dict:
    return {"terminal_id": terminal_id, "currency": settings.currency, **order.to_dict()}


@router.get("/items")
def list_items(store: PosStore = Depends(get_store)):
    with store.read() as tx:
        items = tx.list_items()
    return {"currency": settings.currency, "items": [i.to_dict() for i in items]}


@router.get("/items/{item_id}/availability")
def item_availability(
    item_id: int,
    qty: int = Query(1, ge=1, le=999),
    store: PosStore = Depends(get_store),
):
    return check_availability(store, item_id, qty).to_dict()


@router.get("/order")
def get_order(
    terminal_id: str = Depends(get_terminal_id),
    registry: DraftOrderRegistry = Depends(get_registry),
):
    order = registry.get(terminal_id)
    if order is None:
        raise DraftOrderNotFound()
    return _order_out(order, terminal_id)


@router.post("/order/lines")
def add_order_line(
    data: OrderLineIn,
    terminal_id: str = Depends(get_terminal_id),
    registry: DraftOrderRegistry = Depends(get_registry),
):
    order = registry.get_or_create(terminal_id)
    order.add_line(data.item_id, data.qty)
    return _order_out(order, terminal_id)


@router.put("/order/lines/{item_id}")
def set_order_line(
    item_id: int,
    data: OrderLineQtyIn,
    terminal_id: str = Depends(get_terminal_id),
    registry: DraftOrderRegistry = Depends(get_registry),
):
    order = registry.get(terminal_id)
    if order is None:
        raise DraftOrderNotFound()
    order.set_line_quantity(item_id, data.qty)
    return _order_out(order, terminal_id)


@router.delete("/order/lines/{item_id}")
def remove_order_line(
    item_id: int,
    terminal_id: str = Depends(get_terminal_id),
    registry: DraftOrderRegistry = Depends(get_registry),
):
    order = registry.get(terminal_id)
    if order is None:
        raise DraftOrderNotFound()
    order.remove_line(item_id)
    return _order_out(order, terminal_id)


@router.delete("/order")
def clear_order(
    terminal_id: str = Depends(get_terminal_id),
    registry: DraftOrderRegistry = Depends(get_registry),
):
    registry.discard(terminal_id)
    return {"ok": True}


@router.post("/checkout")
def checkout_order(
    data: CheckoutIn,
    terminal_id: str = Depends(get_terminal_id),
    cashier_id: str = Depends(get_cashier_id),
    store: PosStore = Depends(get_store),
    registry: DraftOrderRegistry = Depends(get_registry),
):
    # A resubmit after a lost response finds no open order; answer from the journal.
    replay = find_replayed_sale(store, data.client_ref)
    if replay is not None:
        registry.discard(terminal_id)
        return {"currency": settings.currency, **replayed_result(replay, data.client_ref).to_dict()}
    order = registry.get(terminal_id)
    if order is None:
        raise DraftOrderNotFound()
    result = checkout(
        store,
        order,
        cashier_id,
        data.payment_method,
        data.cash_tendered,
        client_ref=data.client_ref,
    )
    registry.discard(terminal_id)
    return {"currency": settings.currency, **result.to_dict()}


@router.get("/sales/{sale_id}")
def get_sale_by_id(sale_id: int, store: PosStore = Depends(get_store)):
    return {"currency": settings.currency, "sale": get_sale(store, sale_id).to_dict()}


@router.post("/sales/{sale_id}/void")
def void_sale_by_id(
    sale_id: int,
    data: VoidIn,
    cashier_id: str = Depends(get_cashier_id),
    store: PosStore = Depends(get_store),
):
    # A manager approving on the cashier's terminal is recorded as the voider.
    sale = void_sale(store, sale_id, data.reason, voided_by=(data.approved_by or "").strip() or cashier_id)
    return {"currency": settings.currency, "sale": sale.to_dict()}
