from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

DEFAULT_DATABASE_URL = "sqlite:///./finance.db"
DEFAULT_FRONTEND_ORIGIN = "http://localhost:3000"
DEFAULT_LOG_LEVEL = "INFO"
LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    frontend_origin: str = DEFAULT_FRONTEND_ORIGIN
    log_level: str = DEFAULT_LOG_LEVEL
    default_extra_monthly: Decimal = Decimal("0")

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
            frontend_origin=os.getenv("FRONTEND_ORIGIN", DEFAULT_FRONTEND_ORIGIN),
            log_level=_normalize_log_level(os.getenv("LOG_LEVEL", DEFAULT_LOG_LEVEL)),
            default_extra_monthly=_parse_extra_monthly(os.getenv("DEFAULT_EXTRA_MONTHLY", "0")),
        )


def _normalize_log_level(value: str) -> str:
    normalized = value.strip().upper()
    if normalized not in LOG_LEVELS:
        return DEFAULT_LOG_LEVEL
    return normalized


def _parse_extra_monthly(value: str) -> Decimal:
    try:
        parsed = Decimal(value.strip())
    except InvalidOperation:
        return Decimal("0")
    if not parsed.is_finite() or parsed < 0:
        return Decimal("0")
    return parsed
