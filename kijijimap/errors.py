"""Error taxonomy for the listing sync pipeline."""

from __future__ import annotations


class SyncError(Exception):
    """Base class for every error raised by the sync pipeline."""


class SourceUnavailable(SyncError):
    """The ad source could not be searched or an ad page could not be fetched."""


class StoreUnavailable(SyncError):
    """A read or write against the document store failed."""


class StagingInconsistent(SyncError):
    """Only part of a batch made it into the staging collection."""

    def __init__(self, expected: int, inserted: int):
        super().__init__(
            f"staged {inserted} of {expected} listing(s); refusing to merge"
        )
        self.expected = expected
        self.inserted = inserted


class MalformedAdError(SyncError):
    """A single ad is missing fields required for normalization."""

    def __init__(self, listing_id: str | None, reason: str):
        super().__init__(f"ad {listing_id or '<unknown>'}: {reason}")
        self.listing_id = listing_id
        self.reason = reason


__all__ = [
    "MalformedAdError",
    "SourceUnavailable",
    "StagingInconsistent",
    "StoreUnavailable",
    "SyncError",
]
