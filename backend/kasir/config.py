# backend/kasir/config.py
from __future__ import annotations
import json
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored next to the app; holds the local key-value store
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///kasir.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Checkout policy
    TAX_RATE_BPS = _env_int("TAX_RATE_BPS", 1000)  # 10%
    LOYALTY_POINT_DIVISOR = _env_int("LOYALTY_POINT_DIVISOR", 10000)

    # Tiered discount table: [[threshold, percent], ...]
    DISCOUNT_TIERS = json.loads(
        os.environ.get("DISCOUNT_TIERS", "[[1000000, 15], [500000, 10], [100000, 5]]")
    )

    # Remote backend. Unset URL means the device never reports online.
    REMOTE_API_URL = os.environ.get("REMOTE_API_URL")
    REMOTE_API_KEY = os.environ.get("REMOTE_API_KEY")
    REMOTE_TIMEOUT_SECONDS = float(os.environ.get("REMOTE_TIMEOUT_SECONDS", "10"))

    SYNC_MAX_ATTEMPTS = _env_int("SYNC_MAX_ATTEMPTS", 5)
    STORAGE_WRITE_ATTEMPTS = _env_int("STORAGE_WRITE_ATTEMPTS", 3)

    # Shop-local offset from UTC for report days and hours (WIB is 420)
    REPORT_UTC_OFFSET_MINUTES = _env_int("REPORT_UTC_OFFSET_MINUTES", 0)
