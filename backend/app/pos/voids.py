from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from ..logs import json_log
from .errors import AlreadyVoided, SaleNotFound, VoidFailure, VoidReasonRequired
from .models import Sale, StockMovement, VoidPatch
from .store import StoreError


def void_sale(
    store,
    sale_id: int,
    reason: str,
    *,
    voided_by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Sale:
    """
    Compensate a committed sale: credit back exactly what its checkout debited
    and mark it voided, in one transaction.

    Quantities come from the consumption snapshot taken at checkout, so recipe
    edits made since then do not change what is restored. Voiding twice is an
    operator error (AlreadyVoided), never a silent no-op.
    """
    reason = (reason or "").strip()
    if not reason:
        raise VoidReasonRequired()
    now = now or datetime.now(timezone.utc)

    try:
        with store.transaction() as tx:
            sale = tx.get_sale(sale_id, for_update=True)
            if sale is None:
                raise SaleNotFound(sale_id)
            if sale.voided:
                raise AlreadyVoided(sale_id)

            for ing_id, amount in sale.consumption:
                if tx.credit(ing_id, amount) is None:
                    raise StoreError(f"ingredient {ing_id} consumed by sale {sale_id} no longer exists")
                tx.record_movement(
                    StockMovement(
                        ingredient_id=ing_id,
                        quantity=amount,
                        source_type="void",
                        source_id=str(sale_id),
                        reason=reason,
                        created_at=now,
                    )
                )

            updated = tx.update_sale(sale_id, VoidPatch(reason=reason, voided_at=now, voided_by=voided_by))
            if updated is None:
                # Lost a race with another terminal voiding the same sale.
                raise AlreadyVoided(sale_id)
    except StoreError as ex:
        json_log("error", "pos.void.failed", sale_id=sale_id, error=str(ex))
        raise VoidFailure() from ex

    json_log(
        "info",
        "pos.void.committed",
        sale_id=sale_id,
        total=updated.total,
        reason=reason,
        voided_by=voided_by,
        ingredients=len(updated.consumption),
    )
    return updated
