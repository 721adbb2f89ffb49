import os
from decimal import Decimal, InvalidOperation
from typing import List

class Settings:
    def _split_csv(self, raw: str, *, default: List[str]) -> List[str]:
        parts = [p.strip() for p in (raw or "").split(",")]
        return [p for p in parts if p] or default

    def _decimal(self, name: str, default: str) -> Decimal:
        raw = (os.getenv(name) or "").strip()
        try:
            return Decimal(raw or default)
        except InvalidOperation:
            return Decimal(default)

    def _int(self, name: str, default: int) -> int:
        raw = (os.getenv(name) or "").strip()
        try:
            return int(raw) if raw else default
        except ValueError:
            return default

    def __init__(self) -> None:
        self.env = os.getenv('APP_ENV', 'local')
        self.db_url = os.getenv('DATABASE_URL', 'postgresql://localhost/coffeepos')
        # Comma-separated list of allowed CORS origins for the terminal UI.
        # Default keeps local dev working out of the box.
        self.cors_origins = self._split_csv(
            os.getenv("CORS_ORIGINS", "").strip(),
            default=["http://localhost:5173", "http://127.0.0.1:5173"],
        )
        self.api_version = os.getenv("APP_VERSION", "0.1.0").strip() or "0.1.0"
        # VAT applied to every draft order subtotal.
        self.tax_rate = self._decimal("POS_TAX_RATE", "0.12")
        self.currency = (os.getenv("POS_CURRENCY") or "PHP").strip().upper() or "PHP"
        # Payment methods that take tendered cash and hand back change.
        self.cash_methods = [
            m.lower() for m in self._split_csv(os.getenv("POS_CASH_METHODS", "").strip(), default=["cash"])
        ]
        self.store_backend = (os.getenv("POS_STORE") or "postgres").strip().lower() or "postgres"
        # Drafts of terminals that stop talking to us are dropped after this long. 0 keeps them forever.
        self.draft_idle_seconds = self._int("POS_DRAFT_IDLE_SECONDS", 4 * 3600)

settings = Settings()
