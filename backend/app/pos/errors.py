from __future__ import annotations

from decimal import Decimal
from typing import Optional, Sequence


class PosError(Exception):
    """
    Base for every typed failure the order/inventory core hands back to its caller.

    `code` is the stable identifier terminals switch on; `status_code` is what the
    HTTP layer answers with; `detail()` is the structured body.
    """

    code = "pos_error"
    status_code = 400
    message = "point of sale error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)
        self.message = message or self.message

    def detail(self) -> dict:
        return {"detail": self.message, "code": self.code}


class EmptyOrder(PosError):
    code = "empty_order"
    message = "order has no lines"


class InvalidQuantity(PosError):
    code = "invalid_quantity"
    message = "quantity must be a whole number >= 1"


class InsufficientStock(PosError):
    code = "insufficient_stock"
    status_code = 409
    message = "insufficient stock"

    def __init__(self, shortfall: Sequence, message: Optional[str] = None):
        self.shortfall = list(shortfall)
        if message is None and self.shortfall:
            names = ", ".join(f"{s.name} (missing {s.missing} {s.unit})" for s in self.shortfall)
            message = f"insufficient stock: {names}"
        super().__init__(message)

    def detail(self) -> dict:
        out = super().detail()
        out["shortfall"] = [s.to_dict() for s in self.shortfall]
        return out


class InsufficientPayment(PosError):
    code = "insufficient_payment"
    message = "cash tendered is less than the order total"

    def __init__(self, total: Decimal, cash_tendered: Optional[Decimal]):
        self.total = total
        self.cash_tendered = cash_tendered
        super().__init__()

    def detail(self) -> dict:
        out = super().detail()
        tendered = self.cash_tendered if self.cash_tendered is not None else Decimal("0")
        out.update(
            {
                "total": str(self.total),
                "cash_tendered": None if self.cash_tendered is None else str(self.cash_tendered),
                "missing": str(self.total - tendered),
            }
        )
        return out


class CommitFailure(PosError):
    code = "commit_failure"
    status_code = 503
    message = "checkout could not be committed; nothing was recorded"


class SaleNotFound(PosError):
    code = "sale_not_found"
    status_code = 404
    message = "sale not found"

    def __init__(self, sale_id):
        self.sale_id = sale_id
        super().__init__(f"sale {sale_id} not found")


class AlreadyVoided(PosError):
    code = "already_voided"
    status_code = 409
    message = "sale is already voided"

    def __init__(self, sale_id):
        self.sale_id = sale_id
        super().__init__(f"sale {sale_id} is already voided")


class VoidFailure(PosError):
    code = "void_failure"
    status_code = 503
    message = "void could not be committed; stock and sale are unchanged"


class VoidReasonRequired(PosError):
    code = "void_reason_required"
    message = "a void reason is required"


class ItemNotFound(PosError):
    code = "item_not_found"
    status_code = 404

    def __init__(self, item_id):
        self.item_id = item_id
        super().__init__(f"item {item_id} not found")


class IngredientNotFound(PosError):
    code = "ingredient_not_found"
    status_code = 404

    def __init__(self, ingredient_id):
        self.ingredient_id = ingredient_id
        super().__init__(f"ingredient {ingredient_id} not found")


class DraftOrderNotFound(PosError):
    code = "draft_order_not_found"
    status_code = 404
    message = "no open order for this terminal"
