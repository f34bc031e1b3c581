# backend/servicebook/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/servicebook.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///servicebook.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Cadence used when a contract is created without an explicit interval
    DEFAULT_SERVICE_INTERVAL_MONTHS = int(os.environ.get("DEFAULT_SERVICE_INTERVAL_MONTHS", "3"))

    LEDGER_RETRY_ATTEMPTS = int(os.environ.get("LEDGER_RETRY_ATTEMPTS", "3"))
    LOW_STOCK_DEFAULT_LIMIT = int(os.environ.get("LOW_STOCK_DEFAULT_LIMIT", "100"))
