"""Core execution workflow for kijijimap."""

from __future__ import annotations

import datetime as dt
import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Sequence, Tuple, Union

from .db import INSERT, KEEP_EXISTING, DocumentStore
from .diff import filter_candidates, filter_documents, load_known_ids
from .errors import MalformedAdError, SourceUnavailable, StagingInconsistent, StoreUnavailable
from .models import DocumentShape, ListingSummary, RawAd, RunResult, SearchCriteria
from .normalize import normalize_batch
from .scraper import AdSource

logger = logging.getLogger(__name__)

DEFAULT_STAGING_COLLECTION = "pending-listings"


def stage_all(
    database: DocumentStore, collection: str, batch: Sequence[Dict[str, Any]]
) -> int:
    """Bulk insert ``batch`` into the staging collection."""
    if not batch:
        return 0
    inserted = database.insert_many(collection, batch)
    if inserted != len(batch):
        raise StagingInconsistent(expected=len(batch), inserted=inserted)
    return inserted


def merge_staged(
    database: DocumentStore, staging: str, target: str, key: str
) -> int:
    """Merge staged listings into ``target`` and return how many were added.

    Existing documents win over staged ones with the same key, so merging the
    same batch again adds nothing.
    """
    before = database.count_documents(target)
    logger.info("Merging %s into %s on %s", staging, target, key)
    database.merge(
        source=staging,
        into=target,
        on=key,
        when_matched=KEEP_EXISTING,
        when_not_matched=INSERT,
    )
    after = database.count_documents(target)
    logger.info("Merge finished; %d new listing(s) inserted", after - before)
    return after - before


@contextmanager
def staging_area(database: DocumentStore, collection: str) -> Iterator[str]:
    """Yield the staging collection and empty it on every exit path."""
    try:
        yield collection
    finally:
        logger.info("Deleting pending listings from %s", collection)
        database.delete_many(collection)


@dataclass
class SyncRunner:
    """Coordinates index, scrape, normalize, stage and merge steps."""

    database: DocumentStore
    source: AdSource
    criteria: SearchCriteria = field(default_factory=SearchCriteria)
    shape: DocumentShape = DocumentShape.FEATURE
    target_collection: str = ""
    staging_collection: str = DEFAULT_STAGING_COLLECTION
    fetch_workers: int = 8

    def __post_init__(self) -> None:
        if not self.target_collection:
            self.target_collection = self.shape.default_collection

    def init(self) -> None:
        """Create collections and indexes the pipeline depends on."""
        logger.info(
            "Initializing collections %s and %s",
            self.staging_collection,
            self.target_collection,
        )
        self.database.initialize()
        self.database.ensure_collection(self.staging_collection)
        self.database.ensure_collection(
            self.target_collection,
            unique_key=self.shape.key,
            geo_field=self.shape.geo_field,
        )

    def run(self, dry_run: bool = False) -> RunResult:
        """Execute a single sync cycle."""
        executed_at = dt.datetime.now(dt.timezone.utc).isoformat()
        logger.info("Starting scraping process.")
        try:
            result = self._run(executed_at, dry_run)
        except (SourceUnavailable, StoreUnavailable, StagingInconsistent) as exc:
            logger.exception("Sync run failed: %s", exc)
            self._record(executed_at, "error", f"{type(exc).__name__}: {exc}")
            return RunResult(executed_at=executed_at, success=False, dry_run=dry_run, error=str(exc))

        status = "dry_run" if dry_run else "success"
        self._record(executed_at, status, _format_note(result))
        logger.info("Process finished successfully.")
        return result

    def _run(self, executed_at: str, dry_run: bool) -> RunResult:
        key = self.shape.key
        known_ids = load_known_ids(self.database, self.target_collection, key)
        logger.info("Loaded %d known listing id(s)", len(known_ids))

        candidates = filter_candidates(self.source.search(self.criteria), known_ids)
        logger.info("Found %d new ads to scrape.", len(candidates))

        result = RunResult(
            executed_at=executed_at,
            success=True,
            candidates=len(candidates),
            dry_run=dry_run,
        )
        if not candidates:
            logger.info("No listings were found by scraper.")
            return result

        ads, unreadable = self._resolve_ads(candidates)
        logger.info("Scraping finished.")
        listings, skipped = normalize_batch(ads, self.shape)
        result.skipped = unreadable + skipped

        if dry_run:
            result.staged = len(listings)
            result.new_listings = listings
            logger.info("Dry run: %d listing(s) would be staged", len(listings))
            return result
        if not listings:
            logger.info("No listings survived normalization.")
            return result

        with staging_area(self.database, self.staging_collection) as staging:
            result.staged = stage_all(self.database, staging, listings)
            logger.info("%d pending listings were found.", result.staged)
            stored_ids = load_known_ids(self.database, self.target_collection, key)
            result.added = merge_staged(self.database, staging, self.target_collection, key)
        # Listings another run stored first were kept out by the merge.
        result.new_listings = filter_documents(listings, stored_ids, key)
        return result

    def _resolve_ads(
        self, candidates: List[Union[ListingSummary, RawAd]]
    ) -> Tuple[List[RawAd], int]:
        """Fetch detail pages for summaries concurrently; full ads pass through."""
        ads = [item for item in candidates if isinstance(item, RawAd)]
        summaries = [item for item in candidates if isinstance(item, ListingSummary)]
        if not summaries:
            return ads, 0

        with ThreadPoolExecutor(max_workers=max(1, self.fetch_workers)) as executor:
            futures = [executor.submit(self._fetch_one, summary) for summary in summaries]
            results = [future.result() for future in futures]
        ads.extend(ad for ad in results if ad is not None)
        return ads, sum(1 for ad in results if ad is None)

    def _fetch_one(self, summary: ListingSummary) -> RawAd | None:
        try:
            return self.source.fetch_detail(summary)
        except MalformedAdError as exc:
            logger.warning("Skipping malformed ad %s: %s", exc.listing_id, exc.reason)
            return None

    def _record(self, executed_at: str, status: str, notes: str) -> None:
        try:
            self.database.add_run(executed_at=executed_at, status=status, notes=notes)
        except StoreUnavailable as exc:
            logger.warning("Could not record run history: %s", exc)


def _format_note(result: RunResult) -> str:
    """Render a concise run note summarizing the sync outcome."""
    prefix = "dry-run " if result.dry_run else ""
    return (
        f"{prefix}candidates={result.candidates} staged={result.staged} "
        f"added={result.added} skipped={result.skipped}"
    )
