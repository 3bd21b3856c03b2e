# backend/hive/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/hive.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///hive.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Payment gateway (Paystack contract)
    PAYSTACK_SECRET_KEY = os.environ.get("PAYSTACK_SECRET_KEY", "")
    PAYSTACK_BASE_URL = os.environ.get("PAYSTACK_BASE_URL", "https://api.paystack.co")
    # Paystack signs webhooks with the secret key unless a dedicated secret is configured
    PAYSTACK_WEBHOOK_SECRET = os.environ.get("PAYSTACK_WEBHOOK_SECRET") or PAYSTACK_SECRET_KEY
    GATEWAY_TIMEOUT_SECONDS = float(os.environ.get("GATEWAY_TIMEOUT_SECONDS", "15"))

    # Storefront used for gateway callbacks and tracking links
    FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:5173")
    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "NGN")

    # Outbound email (SendGrid v3 API)
    SENDGRID_API_KEY = os.environ.get("SENDGRID_API_KEY", "")
    SENDGRID_BASE_URL = os.environ.get("SENDGRID_BASE_URL", "https://api.sendgrid.com")
    EMAIL_FROM = os.environ.get("EMAIL_FROM", "noreply@hive.com")

    OTP_TTL_MINUTES = int(os.environ.get("OTP_TTL_MINUTES", "10"))
    STALE_TRANSACTION_HOURS = int(os.environ.get("STALE_TRANSACTION_HOURS", "24"))
