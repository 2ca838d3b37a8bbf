# backend/stockledger/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stockledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stockledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Recompute the product's daily balance inside POST /api/movements.
    # Off by default: aggregation is an explicit or scheduled step.
    BALANCE_RECOMPUTE_ON_APPEND = _env_bool("BALANCE_RECOMPUTE_ON_APPEND", False)

    # Upper bound for the backward gap walk before a recompute
    BALANCE_MAX_GAP_DAYS = int(os.environ.get("BALANCE_MAX_GAP_DAYS", "3660"))

    # Days per committed chunk in range recompute / backfill
    BALANCE_RECOMPUTE_CHUNK_DAYS = int(os.environ.get("BALANCE_RECOMPUTE_CHUNK_DAYS", "31"))

    CONCURRENCY_RETRY_ATTEMPTS = int(os.environ.get("CONCURRENCY_RETRY_ATTEMPTS", "3"))
    CONCURRENCY_RETRY_BACKOFF = float(os.environ.get("CONCURRENCY_RETRY_BACKOFF", "0.1"))
