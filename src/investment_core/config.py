"""Configuration helpers and Settings container.

This module provides a small `Settings` dataclass and `get_settings` which
reads the store connection, cache TTLs, pagination limits and media host
settings from the environment.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import os

from dotenv import load_dotenv

# Explicitly load .env from project root
PROJECT_ROOT = Path(__file__).resolve().parents[2]
load_dotenv(PROJECT_ROOT / ".env")

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


@dataclass(frozen=True)
class Settings:
    """Container for service configuration read from the environment.

    Attributes:
        mongo_uri: MongoDB connection URI.
        mongo_db: Target MongoDB database name.
        mongo_tls: Whether to connect with TLS using the certifi CA bundle.
        use_transactions: Wrap multi-document writes in a transaction.
        list_cache_ttl: TTL in seconds for product list results.
        search_cache_ttl: TTL in seconds for search results.
        product_cache_ttl: TTL in seconds for single-product reads.
        analytics_cache_ttl: TTL in seconds for global analytics.
        default_page_limit: Page size used when none (or garbage) is given.
        max_page_limit: Upper bound on a requested page size.
        media_upload_url: Upload endpoint of the media host.
        media_upload_preset: Upload preset/token sent with each upload.
        log_level: Root logging level name.
    """
    mongo_uri: str
    mongo_db: str
    mongo_tls: bool = False
    use_transactions: bool = True
    list_cache_ttl: int = 300
    search_cache_ttl: int = 120
    product_cache_ttl: int = 120
    analytics_cache_ttl: int = 300
    default_page_limit: int = 12
    max_page_limit: int = 100
    media_upload_url: str = ""
    media_upload_preset: str = ""
    log_level: str = "INFO"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from e


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise RuntimeError(f"{name} must be a boolean (true/false), got {raw!r}")


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def get_settings() -> Settings:
    """Read environment variables and return a frozen `Settings` object.

    TTLs are clamped into the windows the read paths are designed for
    (list/search 2-5 minutes, single product 2 minutes, analytics 5-10
    minutes).

    Raises:
        RuntimeError: if a numeric or boolean variable cannot be parsed.
    """
    mongo_uri = os.getenv("MONGO_URI", "mongodb://localhost:27017/?replicaSet=rs0")
    mongo_db = os.getenv("MONGO_DB", "investments")

    default_limit = _env_int("DEFAULT_PAGE_LIMIT", 12)
    max_limit = _env_int("MAX_PAGE_LIMIT", 100)
    if default_limit < 1 or max_limit < default_limit:
        raise RuntimeError(
            "DEFAULT_PAGE_LIMIT must be >= 1 and no larger than MAX_PAGE_LIMIT."
        )

    return Settings(
        mongo_uri=mongo_uri,
        mongo_db=mongo_db,
        mongo_tls=_env_bool("MONGO_TLS", False),
        use_transactions=_env_bool("USE_TRANSACTIONS", True),
        list_cache_ttl=_clamp(_env_int("LIST_CACHE_TTL", 300), 120, 300),
        search_cache_ttl=_clamp(_env_int("SEARCH_CACHE_TTL", 120), 120, 300),
        product_cache_ttl=_clamp(_env_int("PRODUCT_CACHE_TTL", 120), 120, 120),
        analytics_cache_ttl=_clamp(_env_int("ANALYTICS_CACHE_TTL", 300), 300, 600),
        default_page_limit=default_limit,
        max_page_limit=max_limit,
        media_upload_url=os.getenv("MEDIA_UPLOAD_URL", "").strip(),
        media_upload_preset=os.getenv("MEDIA_UPLOAD_PRESET", "").strip(),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
    )
