# backend/stockapp/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stockapp.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stockapp.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # "sql" keeps documents in the database above, "memory" keeps them in-process
    DOCUMENT_STORE_BACKEND = os.environ.get("DOCUMENT_STORE_BACKEND", "sql")

    # Conflicting transactions are re-run at most this many times
    STORE_TRANSACTION_ATTEMPTS = int(os.environ.get("STORE_TRANSACTION_ATTEMPTS", "5"))
    STORE_TRANSACTION_BACKOFF = float(os.environ.get("STORE_TRANSACTION_BACKOFF", "0.05"))

    # Designated administrator created on start (see services/bootstrap_service.py)
    BOOTSTRAP_ADMIN_EMAIL = os.environ.get("BOOTSTRAP_ADMIN_EMAIL", "admin@stockapp.local")
    BOOTSTRAP_ADMIN_PASSWORD = os.environ.get("BOOTSTRAP_ADMIN_PASSWORD", "ChangeMe123!")
    BOOTSTRAP_ADMIN_NAME = os.environ.get("BOOTSTRAP_ADMIN_NAME", "Administrator")
    BOOTSTRAP_ADMIN_ON_START = _env_bool("BOOTSTRAP_ADMIN_ON_START", True)

    AUTO_CREATE_TABLES = _env_bool("AUTO_CREATE_TABLES", True)
    ALLOW_SELF_REGISTRATION = _env_bool("ALLOW_SELF_REGISTRATION", True)

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # bcrypt cost factor for new passwords
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))
