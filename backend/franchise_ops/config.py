# backend/franchise_ops/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///franchise_ops.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "PHP")

    # Reservations left active past this window are swept back into available stock
    RESERVATION_TTL_HOURS = int(os.environ.get("RESERVATION_TTL_HOURS", "24"))

    # Empty URL disables webhook delivery; notifications are still stored
    NOTIFICATION_WEBHOOK_URL = os.environ.get("NOTIFICATION_WEBHOOK_URL", "")
    NOTIFICATION_TIMEOUT_SECONDS = float(os.environ.get("NOTIFICATION_TIMEOUT_SECONDS", "5"))
