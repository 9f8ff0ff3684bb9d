"""
Property Back Office settings.

``create_app`` picks a class from ``config`` by name (``APP_ENV`` when no
name is passed). Everything deployment-specific comes from the environment:

    DATABASE_URL        SQLAlchemy URL (postgres:// is accepted)
    SECRET_KEY          Flask secret, required in production
    JWT_SECRET_KEY      token signing key, falls back to SECRET_KEY
    JWT_ACCESS_EXPIRES  access token lifetime in seconds
    CORS_ORIGINS        comma-separated origins, "*" for any
"""

import os
import secrets
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent


def _database_url(fallback=None):
    url = os.getenv("DATABASE_URL")
    if not url:
        return fallback
    # SQLAlchemy 2.x only understands the postgresql:// scheme
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    return url


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True, "pool_recycle": 300}

    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")
    JWT_ACCESS_EXPIRES = int(os.getenv("JWT_ACCESS_EXPIRES", "900"))

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Schema comes from create_all outside production; production runs
    # `flask db upgrade`.
    AUTO_CREATE_TABLES = True


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(
        f"sqlite:///{PROJECT_ROOT / 'instance' / 'backoffice_dev.db'}"
    )


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")
    SQLALCHEMY_ENGINE_OPTIONS = {}
    JWT_SECRET_KEY = "test-jwt-secret"


class ProductionConfig(Config):
    AUTO_CREATE_TABLES = False
    SQLALCHEMY_DATABASE_URI = _database_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")

    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        "connect_args": {"options": "-c statement_timeout=30000"},
    }

    def __init__(self):
        missing = [
            name for name, value in (
                ("DATABASE_URL", self.SQLALCHEMY_DATABASE_URI),
                ("SECRET_KEY", os.getenv("SECRET_KEY")),
            ) if not value
        ]
        if missing:
            raise RuntimeError(f"Production requires: {', '.join(missing)}")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
