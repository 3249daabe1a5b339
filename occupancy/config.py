"""
Occupancy Transition Service
Configuration classes for the Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])

Request-type policy (which fields are mandatory for submission and which make
a request eligible for auto-approval) is configuration, not code. Override any
of the ``*_FIELDS`` / ``AUTO_APPROVAL_KINDS`` keys to change the rule set per
deployment.
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'occupancy_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Generate a random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)


# ── Request-type policy defaults ─────────────────────────────────────────────

DEFAULT_REQUIRED_FIELDS = {
    "owner": ["adults"],
    "tenant": [
        "first_name",
        "last_name",
        "email",
        "emirates_id_number",
        "tenancy_contract_start_date",
        "tenancy_contract_end_date",
    ],
    "hho-company": ["company", "company_email", "trade_license_number", "unit_permit_number"],
    "hho-owner": ["owner_first_name", "owner_last_name", "email", "unit_permit_number"],
}

# Extra fields a renewal must carry on top of the category's base set
DEFAULT_RENEWAL_REQUIRED_FIELDS = {
    "tenant": ["tenancy_contract_end_date"],
    "hho-company": ["lease_end_date", "dtcm_expiry_date", "trade_license_expiry_date"],
    "hho-owner": ["dtcm_expiry_date"],
}

# Fields that must be present (and unexpired) before the system approves on submission
DEFAULT_AUTO_APPROVAL_FIELDS = {
    "owner": ["adults"],
    "tenant": [
        "first_name",
        "last_name",
        "email",
        "emirates_id_number",
        "emirates_id_expiry_date",
        "tenancy_contract_start_date",
        "tenancy_contract_end_date",
    ],
    "hho-company": [
        "company",
        "company_email",
        "trade_license_number",
        "trade_license_expiry_date",
        "unit_permit_number",
        "unit_permit_expiry_date",
    ],
    "hho-owner": [
        "owner_first_name",
        "owner_last_name",
        "email",
        "unit_permit_number",
        "unit_permit_expiry_date",
    ],
}

# request kind -> categories eligible for auto-approval
DEFAULT_AUTO_APPROVAL_KINDS = {
    "move-in": ["owner"],
    "move-out": [],
    "renewal": ["tenant", "hho-company", "hho-owner"],
}


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,   # recycle connections every 5 min
        "pool_timeout": 20,    # wait max 20s for a connection from pool
    }

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Per-blueprint overrides, e.g. {"transitions": "120/minute"}
    RATE_LIMITS = {}

    # Email / SMTP (optional; dev mode logs without sending)
    MAIL_SERVER = os.getenv("MAIL_SERVER")
    MAIL_PORT = int(os.getenv("MAIL_PORT", "587"))
    MAIL_USE_TLS = os.getenv("MAIL_USE_TLS", "true").lower() == "true"
    MAIL_USERNAME = os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = os.getenv("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", "noreply@occupancy.local")

    # Notifications: "inline" runs after commit on the request thread,
    # "background" hands off to a daemon thread.
    NOTIFICATION_DISPATCH_MODE = os.getenv("NOTIFICATION_DISPATCH_MODE", "background")

    # Request-type policy
    REQUIRED_FIELDS = DEFAULT_REQUIRED_FIELDS
    RENEWAL_REQUIRED_FIELDS = DEFAULT_RENEWAL_REQUIRED_FIELDS
    AUTO_APPROVAL_FIELDS = DEFAULT_AUTO_APPROVAL_FIELDS
    AUTO_APPROVAL_KINDS = DEFAULT_AUTO_APPROVAL_KINDS


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = (
        _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else _SQLITE_DEV
    )
    NOTIFICATION_DISPATCH_MODE = os.getenv("NOTIFICATION_DISPATCH_MODE", "inline")


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    # In-memory SQLite runs on a StaticPool, which rejects pool sizing options
    SQLALCHEMY_ENGINE_OPTIONS = {}
    NOTIFICATION_DISPATCH_MODE = "inline"
    MAIL_SERVER = None
    RATELIMIT_ENABLED = False


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Must be set explicitly in production
    # Railway/Heroku use postgres:// but SQLAlchemy 2.0 requires postgresql://
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else None

    # Override engine options with PostgreSQL statement timeout
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        "connect_args": {
            "options": "-c statement_timeout=30000",  # 30s query timeout
        },
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
