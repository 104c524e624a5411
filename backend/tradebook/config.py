# backend/tradebook/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/tradebook.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///tradebook.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Retry budget for lock/stale-version conflicts on a single transition
    TRANSACTION_RETRY_ATTEMPTS = int(os.environ.get("TRANSACTION_RETRY_ATTEMPTS", "3"))

    # System ledger accounts (chart-of-accounts codes)
    SALES_ACCOUNT_CODE = os.environ.get("SALES_ACCOUNT_CODE", "4000")
    PURCHASES_ACCOUNT_CODE = os.environ.get("PURCHASES_ACCOUNT_CODE", "5000")
    OUTPUT_TAX_ACCOUNT_CODE = os.environ.get("OUTPUT_TAX_ACCOUNT_CODE", "2200")
    INPUT_TAX_ACCOUNT_CODE = os.environ.get("INPUT_TAX_ACCOUNT_CODE", "1400")
    INCOME_TAX_ACCOUNT_CODE = os.environ.get("INCOME_TAX_ACCOUNT_CODE", "2300")
    TRADE_OFFER_ACCOUNT_CODE = os.environ.get("TRADE_OFFER_ACCOUNT_CODE", "4100")

    # Withholding income tax, 5.5% by default
    INCOME_TAX_RATE_BPS = int(os.environ.get("INCOME_TAX_RATE_BPS", "550"))
