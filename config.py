"""
Application configuration.

This module defines the configuration settings for the Flask application: database connection, secret key,
logging level and the accounting defaults used by the blueprints. It reads environment variables for anything
deployment-specific and falls back to development defaults. In production, set SECRET_KEY and DATABASE_URL.
"""

import os
from decimal import Decimal
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent


class Config:
    """Base configuration shared by all environments."""

    # IMPORTANT: change this in production
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-change-me-please")

    # Database: SQLite for development (simple file in project folder)
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        f"sqlite:///{BASE_DIR / 'accounting.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # CSRF protection for session-authenticated mutations (X-CSRFToken header)
    WTF_CSRF_ENABLED = True

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Invoice list page size (the dashboard shows 50 rows per page)
    PAGE_SIZE = int(os.environ.get("PAGE_SIZE", "50"))
    MAX_PAGE_SIZE = 500

    # Payments may exceed the invoice remaining amount by at most this much (rounding slack)
    PAYMENT_OVERPAY_TOLERANCE = Decimal(os.environ.get("PAYMENT_OVERPAY_TOLERANCE", "0.01"))

    APP_NAME = "Računovodstvo"


class TestConfig(Config):
    """Configuration used by the pytest suite."""

    TESTING = True
    SECRET_KEY = "test-secret"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    WTF_CSRF_ENABLED = False
    LOG_LEVEL = "WARNING"
