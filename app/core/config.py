from __future__ import annotations

import os


def _database_url() -> str:
    url = os.getenv("DATABASE_URL", "sqlite:///funeraria.db")
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+psycopg2://", 1)
    return url


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")
    SQLALCHEMY_DATABASE_URI = _database_url()
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    RATELIMIT_ENABLED = os.getenv("RATELIMIT_ENABLED", "1") not in {"0", "false", "False"}
    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")
    RATELIMIT_STRATEGY = "fixed-window"
    SIGNUP_RATE_LIMIT = os.getenv("SIGNUP_RATE_LIMIT", "5 per hour")
    LOGIN_RATE_LIMIT = os.getenv("LOGIN_RATE_LIMIT", "10 per 15 minutes")

    DEFAULT_CURRENCY = "CLP"
    DEFAULT_BRANCH_NAME = "Casa matriz"
