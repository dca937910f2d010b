"""
Configuration for the signposting service.

One class per environment; ``create_app`` picks it by APP_ENV:

    development   local SQLite unless DATABASE_URL is set, memory view cache
    testing       in-memory SQLite, memory view cache, short retry budget
    production    DATABASE_URL + SECRET_KEY required, Redis view cache
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'signposting_dev.db')}"
_SQLITE_MEMORY = "sqlite:///:memory:"


def _database_url(fallback=None):
    """DATABASE_URL with the legacy ``postgres://`` scheme normalised."""
    raw = os.getenv("DATABASE_URL", "")
    if not raw:
        return fallback
    return raw.replace("postgres://", "postgresql://", 1)


def _env_int(name, default):
    return int(os.getenv(name, str(default)))


_POOL = {
    "pool_pre_ping": True,
    "pool_size": 5,
    "max_overflow": 10,
    "pool_recycle": 300,
    "pool_timeout": 20,
}


class Config:
    ENV_NAME = "base"
    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = dict(_POOL)

    # View cache: memory | redis | none
    VIEW_CACHE_BACKEND = os.getenv("VIEW_CACHE_BACKEND", "memory")
    VIEW_CACHE_TTL = _env_int("VIEW_CACHE_TTL", 300)
    VIEW_CACHE_INVALIDATION_RETRIES = _env_int("VIEW_CACHE_INVALIDATION_RETRIES", 3)
    VIEW_CACHE_PREFIX = os.getenv("VIEW_CACHE_PREFIX", "view:")
    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    # Identity headers are optional unless this is "true"
    API_AUTH_ENABLED = os.getenv("API_AUTH_ENABLED", "false")
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Item bodies (instructions_html / _json) are the largest payloads
    MAX_CONTENT_LENGTH = 2 * 1024 * 1024


class DevelopmentConfig(Config):
    ENV_NAME = "development"
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(_SQLITE_DEV)


class TestingConfig(Config):
    ENV_NAME = "testing"
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_MEMORY)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    API_AUTH_ENABLED = "false"
    VIEW_CACHE_BACKEND = "memory"
    VIEW_CACHE_INVALIDATION_RETRIES = 2


class ProductionConfig(Config):
    """Validated on instantiation; ``create_app`` instantiates it."""

    ENV_NAME = "production"
    SQLALCHEMY_DATABASE_URI = _database_url()
    SQLALCHEMY_ENGINE_OPTIONS = {
        **_POOL,
        "connect_args": {"options": "-c statement_timeout=30000"},
    }
    API_AUTH_ENABLED = os.getenv("API_AUTH_ENABLED", "true")
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    VIEW_CACHE_BACKEND = os.getenv("VIEW_CACHE_BACKEND", "redis")

    def __init__(self):
        missing = [name for name, ok in (
            ("DATABASE_URL", self.SQLALCHEMY_DATABASE_URI),
            ("SECRET_KEY", os.getenv("SECRET_KEY")),
        ) if not ok]
        if missing:
            raise RuntimeError(f"Missing required production settings: {', '.join(missing)}")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
