from typing import Optional

import pytest
from pydantic import BaseModel, ValidationError

from backend.app.validation import ClientRef, LineQuantity, PaymentMethod, VoidReason


class _M(BaseModel):
    method: PaymentMethod
    ref: Optional[ClientRef] = None
    reason: Optional[VoidReason] = None
    qty: LineQuantity = 1


def test_validation_types_normalize_case_and_whitespace():
    m = _M(method=" GCash ", ref=" term-1:0007 ", reason="  wrong order  ")
    assert m.method == "gcash"
    assert m.ref == "term-1:0007"
    assert m.reason == "wrong order"
    assert m.qty == 1


def test_payment_method_rejects_spaces_and_weird_chars():
    # spaces are normalized out by strip, but internal spaces should fail regex
    with pytest.raises(ValidationError):
        _M(method="cash money")
    with pytest.raises(ValidationError):
        _M(method="cash;drop")


def test_void_reason_must_not_be_blank():
    with pytest.raises(ValidationError):
        _M(method="cash", reason="   ")


def test_line_quantity_bounds():
    with pytest.raises(ValidationError):
        _M(method="cash", qty=0)
    with pytest.raises(ValidationError):
        _M(method="cash", qty=1000)
    assert _M(method="cash", qty=999).qty == 999
