from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from decimal import Decimal
from typing import Optional
from ..deps import get_store, get_cashier_id
from ..pos.stock import adjust_stock, list_ingredients, low_stock
from ..pos.store import PosStore

router = APIRouter(prefix="/inventory", tags=["inventory"])


class StockAdjustIn(BaseModel):
    # Positive for receiving, negative for pullouts/spoilage.
    delta: Decimal
    reason: Optional[str] = Field(default=None, max_length=255)


@router.get("/ingredients")
def ingredients(store: PosStore = Depends(get_store)):
    return {"ingredients": [i.to_dict() for i in list_ingredients(store)]}


@router.get("/ingredients/low-stock")
def ingredients_low_stock(store: PosStore = Depends(get_store)):
    return {"ingredients": [i.to_dict() for i in low_stock(store)]}


@router.post("/ingredients/{ingredient_id}/adjust")
def adjust_ingredient(
    ingredient_id: int,
    data: StockAdjustIn,
    cashier_id: str = Depends(get_cashier_id),
    store: PosStore = Depends(get_store),
):
    ing = adjust_stock(store, ingredient_id, data.delta, data.reason or "", source_id=cashier_id)
    return {"ingredient": ing.to_dict()}
