# backend/posengine/config.py
from __future__ import annotations
import os


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/posengine.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///posengine.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Shift close: |variance| above this is FLAGGED (minor currency units)
    POS_VARIANCE_THRESHOLD_CENTS = _int_env("POS_VARIANCE_THRESHOLD_CENTS", 500)

    # Discounts above this percentage of subtotal need a manager
    POS_MAX_DISCOUNT_PCT = _int_env("POS_MAX_DISCOUNT_PCT", 10)

    # Outbox dispatcher
    POS_OUTBOX_BATCH_SIZE = _int_env("POS_OUTBOX_BATCH_SIZE", 100)
    POS_OUTBOX_MAX_ATTEMPTS = _int_env("POS_OUTBOX_MAX_ATTEMPTS", 5)
