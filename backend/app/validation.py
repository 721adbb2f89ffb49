from __future__ import annotations

from typing import Annotated

from pydantic import BeforeValidator, Field, StringConstraints


def _to_lower_str(v):
    if v is None:
        return v
    return str(v).strip().lower()


def _strip_str(v):
    if v is None:
        return v
    return str(v).strip()


# Payment methods mirror what the terminals offer (cash, credit_card, gcash, maya, ...).
# Keep a tight, safe character set so methods are stable identifiers.
PaymentMethod = Annotated[
    str,
    BeforeValidator(_to_lower_str),
    StringConstraints(min_length=1, max_length=32, pattern=r"^[a-z0-9][a-z0-9_-]*$"),
]

# Terminals generate one per checkout attempt; replays with the same ref are deduplicated.
ClientRef = Annotated[
    str,
    BeforeValidator(_strip_str),
    StringConstraints(min_length=1, max_length=64, pattern=r"^[A-Za-z0-9][A-Za-z0-9_.:-]*$"),
]

VoidReason = Annotated[str, BeforeValidator(_strip_str), StringConstraints(min_length=1, max_length=255)]

LineQuantity = Annotated[int, Field(ge=1, le=999)]
