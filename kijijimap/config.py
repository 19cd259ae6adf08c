"""Environment-driven settings for the sync job."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping

from .db import Database, DocumentStore, resolve_sqlite_path
from .models import DocumentShape, SearchCriteria
from .mongo import MongoDatabase
from .runner import DEFAULT_STAGING_COLLECTION

DEFAULT_DATABASE_URL = "sqlite:///kijiji_map.db"
DEFAULT_DATABASE_NAME = "kijiji-map"
MONGO_PREFIXES = ("mongodb://", "mongodb+srv://")


@dataclass(frozen=True)
class SyncConfig:
    """Settings for one sync job."""

    database_url: str = DEFAULT_DATABASE_URL
    database_name: str = DEFAULT_DATABASE_NAME
    shape: DocumentShape = DocumentShape.FEATURE
    staging_collection: str = DEFAULT_STAGING_COLLECTION
    target_collection: str = ""
    criteria: SearchCriteria = field(default_factory=SearchCriteria)
    fetch_workers: int = 8
    http_timeout: int = 20

    @property
    def uses_mongo(self) -> bool:
        return self.database_url.startswith(MONGO_PREFIXES)

    @property
    def resolved_target_collection(self) -> str:
        return self.target_collection or self.shape.default_collection


def load_config(env: Mapping[str, str] | None = None) -> SyncConfig:
    """Build a SyncConfig from environment variables."""
    if env is None:
        env = os.environ

    shape_name = _get(env, "LISTING_SHAPE", DocumentShape.FEATURE.value).lower()
    try:
        shape = DocumentShape(shape_name)
    except ValueError:
        raise ValueError(
            f"LISTING_SHAPE must be 'feature' or 'flat', got {shape_name!r}"
        ) from None

    defaults = SearchCriteria()
    criteria = SearchCriteria(
        location_slug=_get(env, "KIJIJI_LOCATION_SLUG", defaults.location_slug),
        location_id=_get_int(env, "KIJIJI_LOCATION_ID", defaults.location_id),
        category_slug=_get(env, "KIJIJI_CATEGORY_SLUG", defaults.category_slug),
        category_id=_get_int(env, "KIJIJI_CATEGORY_ID", defaults.category_id),
        sort=_get(env, "KIJIJI_SORT", defaults.sort),
        min_results=_get_int(env, "MIN_RESULTS", defaults.min_results),
    )

    return SyncConfig(
        database_url=_get(env, "DATABASE_URL", DEFAULT_DATABASE_URL),
        database_name=_get(env, "DATABASE_NAME", DEFAULT_DATABASE_NAME),
        shape=shape,
        staging_collection=_get(env, "STAGING_COLLECTION", DEFAULT_STAGING_COLLECTION),
        target_collection=_get(env, "TARGET_COLLECTION", ""),
        criteria=criteria,
        fetch_workers=_get_int(env, "FETCH_WORKERS", 8),
        http_timeout=_get_int(env, "HTTP_TIMEOUT", 20),
    )


def open_database(config: SyncConfig) -> DocumentStore:
    """Return the store selected by the DATABASE_URL scheme."""
    if config.uses_mongo:
        return MongoDatabase.from_uri(
            config.database_url,
            config.database_name,
            timeout_ms=config.http_timeout * 1000,
        )
    return Database(path=resolve_sqlite_path(config.database_url))


def _get(env: Mapping[str, str], name: str, default: str) -> str:
    value = (env.get(name) or "").strip()
    return value or default


def _get_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {value}")
    return value
