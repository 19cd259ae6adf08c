"""kijijimap package initialization."""

from .config import SyncConfig, load_config, open_database
from .db import Database
from .diff import filter_candidates, filter_documents, load_known_ids
from .errors import (
    MalformedAdError,
    SourceUnavailable,
    StagingInconsistent,
    StoreUnavailable,
    SyncError,
)
from .models import (
    DocumentShape,
    ListingSummary,
    RawAd,
    RunRecord,
    RunResult,
    SearchCriteria,
)
from .mongo import MongoDatabase
from .normalize import normalize_ad, normalize_batch
from .runner import SyncRunner, merge_staged, stage_all, staging_area
from .scraper import KijijiAdSource

__all__ = [
    "Database",
    "DocumentShape",
    "KijijiAdSource",
    "ListingSummary",
    "MalformedAdError",
    "MongoDatabase",
    "RawAd",
    "RunRecord",
    "RunResult",
    "SearchCriteria",
    "SourceUnavailable",
    "StagingInconsistent",
    "StoreUnavailable",
    "SyncConfig",
    "SyncError",
    "SyncRunner",
    "filter_candidates",
    "filter_documents",
    "load_config",
    "load_known_ids",
    "merge_staged",
    "normalize_ad",
    "normalize_batch",
    "open_database",
    "stage_all",
    "staging_area",
]
