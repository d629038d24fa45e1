# backend/branchstock/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/branchstock.sqlite3 unless DATABASE_URL points elsewhere
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///branchstock.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Seconds a caller waits for the (variant, branch) lock before giving up with a transient failure
    STOCK_LOCK_TIMEOUT_SECONDS = float(os.environ.get("STOCK_LOCK_TIMEOUT_SECONDS", "10"))

    # SQLite only: how long a connection waits on the database file lock
    SQLITE_BUSY_TIMEOUT_SECONDS = float(os.environ.get("SQLITE_BUSY_TIMEOUT_SECONDS", "30"))

    # Rebuild rankings on a background thread after each committed change
    RANKING_REFRESH_ASYNC = _env_bool("RANKING_REFRESH_ASYNC", "true")


def engine_options_for(uri: str, busy_timeout: float) -> dict:
    """Engine options derived from the database URL."""
    if uri.startswith("sqlite"):
        return {"connect_args": {"timeout": busy_timeout, "check_same_thread": False}}
    return {"pool_pre_ping": True}
