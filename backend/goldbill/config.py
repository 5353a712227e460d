# backend/goldbill/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/goldbill.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///goldbill.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("GOLDBILL_LOG_LEVEL", "INFO")

    # Width of the numeric suffix in INV-2026-000123
    DOCUMENT_NUMBER_PAD = int(os.environ.get("GOLDBILL_DOCUMENT_NUMBER_PAD", "6"))

    # Applied when a sale request omits tax_percentage
    DEFAULT_TAX_PERCENTAGE = os.environ.get("GOLDBILL_DEFAULT_TAX_PERCENTAGE", "0")


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    LOG_LEVEL = "DEBUG"
    DEFAULT_TAX_PERCENTAGE = "0"
