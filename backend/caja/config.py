# backend/caja/config.py
from __future__ import annotations
import os


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite file in the instance folder unless DATABASE_URL points elsewhere
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///caja.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Bounded wait for per-entity locks (session, sale, client, register)
    CAJA_LOCK_TIMEOUT_SECONDS = float(os.environ.get("CAJA_LOCK_TIMEOUT_SECONDS", "5"))

    # Optimistic-version conflicts are retried this many times before surfacing Conflict
    CAJA_CONFLICT_RETRY_ATTEMPTS = int(os.environ.get("CAJA_CONFLICT_RETRY_ATTEMPTS", "3"))

    # Receivables due within this many days are reported as POR_VENCER
    CAJA_RECEIVABLE_DUE_SOON_DAYS = int(os.environ.get("CAJA_RECEIVABLE_DUE_SOON_DAYS", "7"))


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    CAJA_LOCK_TIMEOUT_SECONDS = 2.0
