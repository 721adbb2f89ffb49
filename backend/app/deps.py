from fastapi import Header, HTTPException, Depends
from typing import Optional
import threading

from .config import settings
from .pos.draft_order import DraftOrderRegistry
from .pos.store import MemoryPosStore, PosStore
from .pos.pg_store import PgPosStore


_lock = threading.Lock()
_store: Optional[PosStore] = None
_registry: Optional[DraftOrderRegistry] = None


def _build_store() -> PosStore:
    if settings.store_backend == "memory":
        return MemoryPosStore.demo()
    if settings.store_backend == "postgres":
        return PgPosStore()
    raise RuntimeError(f"unknown POS_STORE backend: {settings.store_backend}")


def get_store() -> PosStore:
    global _store
    if _store is None:
        with _lock:
            if _store is None:
                _store = _build_store()
    return _store


def get_registry(store: PosStore = Depends(get_store)) -> DraftOrderRegistry:
    global _registry
    if _registry is None:
        with _lock:
            if _registry is None:
                _registry = DraftOrderRegistry(store, tax_rate=settings.tax_rate)
    return _registry


def get_terminal_id(x_terminal_id: Optional[str] = Header(None, alias="X-Terminal-Id")) -> str:
    terminal_id = (x_terminal_id or "").strip()
    if not terminal_id:
        raise HTTPException(status_code=400, detail="missing terminal id")
    return terminal_id


def get_cashier_id(x_cashier_id: Optional[str] = Header(None, alias="X-Cashier-Id")) -> str:
    # Identity is established upstream; we only require that it is present.
    cashier_id = (x_cashier_id or "").strip()
    if not cashier_id:
        raise HTTPException(status_code=401, detail="missing cashier id")
    return cashier_id
