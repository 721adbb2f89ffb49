from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Optional

from ..amounts import ZERO
from .errors import AlreadyVoided


@dataclass(frozen=True)
class Item:
    item_id: int
    name: str
    category: str
    price: Decimal
    is_externally_sourced: bool = False

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "name": self.name,
            "category": self.category,
            "price": self.price,
            "is_externally_sourced": self.is_externally_sourced,
        }


@dataclass(frozen=True)
class Ingredient:
    ingredient_id: int
    name: str
    unit: str
    quantity: Decimal
    minimum_quantity: Decimal = ZERO

    @property
    def is_low(self) -> bool:
        return self.quantity <= self.minimum_quantity

    def to_dict(self) -> dict:
        return {
            "ingredient_id": self.ingredient_id,
            "name": self.name,
            "unit": self.unit,
            "quantity": self.quantity,
            "minimum_quantity": self.minimum_quantity,
            "is_low": self.is_low,
        }


@dataclass(frozen=True)
class RecipeLine:
    item_id: int
    ingredient_id: int
    quantity_per_unit: Decimal


@dataclass(frozen=True)
class Shortfall:
    ingredient_id: int
    name: str
    unit: str
    required: Decimal
    on_hand: Decimal

    @property
    def missing(self) -> Decimal:
        return self.required - self.on_hand

    def to_dict(self) -> dict:
        return {
            "ingredient_id": self.ingredient_id,
            "name": self.name,
            "unit": self.unit,
            "required": self.required,
            "on_hand": self.on_hand,
            "missing": self.missing,
        }


@dataclass(frozen=True)
class Availability:
    item_id: int
    requested: int
    available: bool
    shortfall: tuple[Shortfall, ...] = ()
    # None means "not limited by ingredients" (externally sourced).
    available_quantity: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "requested": self.requested,
            "available": self.available,
            "available_quantity": self.available_quantity,
            "shortfall": [s.to_dict() for s in self.shortfall],
        }


@dataclass(frozen=True)
class SaleItem:
    item_id: int
    name: str
    category: str
    quantity: int
    unit_price: Decimal
    subtotal: Decimal

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "name": self.name,
            "category": self.category,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "subtotal": self.subtotal,
        }


@dataclass(frozen=True)
class VoidPatch:
    """The only fields of a committed sale that may ever change."""

    reason: str
    voided_at: datetime
    voided_by: Optional[str] = None


@dataclass(frozen=True)
class Sale:
    sale_id: Optional[int]
    cashier_id: str
    created_at: datetime
    payment_method: str
    items: tuple[SaleItem, ...]
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    # (ingredient_id, quantity) pairs debited at commit; voids credit exactly these.
    consumption: tuple[tuple[int, Decimal], ...] = ()
    cash_tendered: Optional[Decimal] = None
    change_due: Optional[Decimal] = None
    client_ref: Optional[str] = None
    voided: bool = False
    void_reason: Optional[str] = None
    voided_at: Optional[datetime] = None
    voided_by: Optional[str] = None

    def consumption_map(self) -> dict[int, Decimal]:
        return {ing_id: qty for ing_id, qty in self.consumption}

    def apply_void(self, patch: VoidPatch) -> "Sale":
        if self.voided:
            raise AlreadyVoided(self.sale_id)
        return replace(
            self,
            voided=True,
            void_reason=patch.reason,
            voided_at=patch.voided_at,
            voided_by=patch.voided_by,
        )

    def to_dict(self) -> dict:
        return {
            "sale_id": self.sale_id,
            "cashier_id": self.cashier_id,
            "created_at": self.created_at.isoformat(),
            "payment_method": self.payment_method,
            "items": [i.to_dict() for i in self.items],
            "subtotal": self.subtotal,
            "tax": self.tax,
            "total": self.total,
            "cash_tendered": self.cash_tendered,
            "change_due": self.change_due,
            "client_ref": self.client_ref,
            "consumption": [{"ingredient_id": i, "quantity": q} for i, q in self.consumption],
            "voided": self.voided,
            "void_reason": self.void_reason,
            "voided_at": self.voided_at.isoformat() if self.voided_at else None,
            "voided_by": self.voided_by,
        }


@dataclass(frozen=True)
class StockMovement:
    ingredient_id: int
    # Signed: negative for debits (sales, pullouts), positive for credits.
    quantity: Decimal
    source_type: str
    source_id: Optional[str]
    reason: Optional[str]
    created_at: datetime


@dataclass(frozen=True)
class CheckoutResult:
    sale: Sale
    change: Optional[Decimal] = None
    low_stock: tuple[Ingredient, ...] = field(default_factory=tuple)
    duplicate: bool = False

    def to_dict(self) -> dict:
        return {
            "sale": self.sale.to_dict(),
            "change": self.change,
            "low_stock": [i.to_dict() for i in self.low_stock],
            "duplicate": self.duplicate,
        }
