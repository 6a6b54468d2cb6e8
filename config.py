"""Application configuration loaded from the environment.

Values can be provided through a ``.env`` file at the project root. Tests pass
overrides directly to ``create_app``.
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:  # pragma: no cover - configuration error
        raise RuntimeError(f"{name} must be an integer, got '{raw}'.") from exc


def _env_float(name: str, default: float) -> float:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:  # pragma: no cover - configuration error
        raise RuntimeError(f"{name} must be a number, got '{raw}'.") from exc


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-change-me")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", "sqlite:///repomirror.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    GITHUB_API_BASE = os.environ.get("GITHUB_API_BASE", "https://api.github.com")
    GITHUB_TIMEOUT = _env_float("GITHUB_TIMEOUT", 20.0)
    # Public base URL the provider should deliver webhooks to. Webhook setup is
    # skipped during import when empty.
    WEBHOOK_BASE_URL = os.environ.get("WEBHOOK_BASE_URL", "")

    CACHE_MAX_FILE_SIZE = _env_int("CACHE_MAX_FILE_SIZE", 1024 * 1024)
    FULL_SYNC_PAGE_SIZE = _env_int("FULL_SYNC_PAGE_SIZE", 100)
    FULL_SYNC_TIMEOUT = _env_int("FULL_SYNC_TIMEOUT", 15 * 60)

    RATE_LIMIT_MAX_ATTEMPTS = _env_int("RATE_LIMIT_MAX_ATTEMPTS", 3)
    RATE_LIMIT_BACKOFF_BASE = _env_float("RATE_LIMIT_BACKOFF_BASE", 2.0)
    RATE_LIMIT_BACKOFF_CAP = _env_float("RATE_LIMIT_BACKOFF_CAP", 60.0)

    SYNC_WORKERS = _env_int("SYNC_WORKERS", 4)
    # Run background jobs in the calling thread. Used by the test-suite.
    SYNC_RUN_INLINE = _env_bool("SYNC_RUN_INLINE", False)
