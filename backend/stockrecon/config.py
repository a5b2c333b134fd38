# backend/stockrecon/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stockrecon.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stockrecon.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Tolerance band used when no tolerance row exists for a product/branch
    RECON_DEFAULT_TOLERANCE_PCT = float(os.environ.get("RECON_DEFAULT_TOLERANCE_PCT", "5.0"))

    # Bulk reads for a reconciliation query; 1 runs them inline
    RECON_FETCH_WORKERS = int(os.environ.get("RECON_FETCH_WORKERS", "6"))

    RECON_MAX_PAGE_SIZE = 500


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    RECON_FETCH_WORKERS = 1
    LOG_LEVEL = "DEBUG"
