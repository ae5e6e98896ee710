# backend/posledger/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///posledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Returns are accepted until this many days have elapsed since the invoice date
    RETURN_WINDOW_DAYS = int(os.environ.get("RETURN_WINDOW_DAYS", "14"))
    # Default payment term for new invoices
    INVOICE_DUE_DAYS = int(os.environ.get("INVOICE_DUE_DAYS", "30"))
    # Monetary comparisons accept this much drift (1 cent == 0.01)
    AMOUNT_TOLERANCE_CENTS = int(os.environ.get("AMOUNT_TOLERANCE_CENTS", "1"))

    # Low-stock notification sink (SMTP); unset MAIL_SERVER means log-only
    LOW_STOCK_ALERTS_ENABLED = _env_bool("LOW_STOCK_ALERTS_ENABLED", True)
    LOW_STOCK_ALERT_RECIPIENT = os.environ.get("LOW_STOCK_ALERT_RECIPIENT")
    MAIL_SERVER = os.environ.get("MAIL_SERVER")
    MAIL_PORT = int(os.environ.get("MAIL_PORT", "25"))
    MAIL_SENDER = os.environ.get("MAIL_SENDER", "posledger@localhost")
    MAIL_TIMEOUT_SECONDS = float(os.environ.get("MAIL_TIMEOUT_SECONDS", "10"))
