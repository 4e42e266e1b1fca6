# backend/branchpos/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/branchpos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///branchpos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Loyalty program rates in basis points (500 = 5%)
    LOYALTY_EARN_RATE_BPS = _env_int("LOYALTY_EARN_RATE_BPS", 500)
    REFERRAL_BONUS_RATE_BPS = _env_int("REFERRAL_BONUS_RATE_BPS", 200)

    SKU_ALLOCATION_ATTEMPTS = _env_int("SKU_ALLOCATION_ATTEMPTS", 3)
    TRANSACTION_RETRY_ATTEMPTS = _env_int("TRANSACTION_RETRY_ATTEMPTS", 3)

    CURRENCY = os.environ.get("CURRENCY", "KES")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    # "text" or "json"
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")
