"""Core data models for kijijimap."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class DocumentShape(str, Enum):
    """Layout of the canonical listing document in the store."""

    FEATURE = "feature"
    FLAT = "flat"

    @property
    def key(self) -> str:
        """Dotted path of the identity field inside a document."""
        if self is DocumentShape.FEATURE:
            return "properties.listingId"
        return "listingId"

    @property
    def geo_field(self) -> str:
        """Top-level field holding the GeoJSON Point."""
        if self is DocumentShape.FEATURE:
            return "geometry"
        return "location"

    @property
    def default_collection(self) -> str:
        if self is DocumentShape.FEATURE:
            return "listing-features"
        return "listings"


@dataclass(frozen=True)
class SearchCriteria:
    """Parameters for a Kijiji category search."""

    location_slug: str = "city-of-toronto"
    location_id: int = 1700273
    category_slug: str = "apartments-condos"
    category_id: int = 37
    sort: str = "dateDesc"
    min_results: int = 40


@dataclass(frozen=True)
class ListingSummary:
    """Identifier and link of an ad seen on a search results page."""

    listing_id: str
    url: str


@dataclass
class RawAd:
    """An ad as extracted from its detail page."""

    id: str
    title: str
    url: str
    date: Any = None
    image: str = ""
    images: List[str] = field(default_factory=list)
    description: str = ""
    attributes: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RunRecord:
    """Persisted entry of the run history."""

    executed_at: str
    status: str
    notes: Optional[str]


@dataclass
class RunResult:
    """Outcome of a single sync cycle."""

    executed_at: str
    success: bool
    added: int = 0
    candidates: int = 0
    staged: int = 0
    skipped: int = 0
    dry_run: bool = False
    error: Optional[str] = None
    new_listings: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": self.success,
            "executedAt": self.executed_at,
        }
        if self.success:
            payload.update(
                added=self.added,
                candidates=self.candidates,
                staged=self.staged,
                skipped=self.skipped,
                dryRun=self.dry_run,
            )
        else:
            payload["error"] = self.error
        return payload
