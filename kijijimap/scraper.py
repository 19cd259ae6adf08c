"""Kijiji search and ad page scraper."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable, List, Protocol, Sequence, Union
from urllib.parse import urljoin, urlparse

import requests
from bs4 import BeautifulSoup

from .errors import MalformedAdError, SourceUnavailable
from .models import ListingSummary, RawAd, SearchCriteria

logger = logging.getLogger(__name__)

KIJIJI_BASE = "https://www.kijiji.ca"
DEFAULT_MAX_PAGES = 5


class AdSource(Protocol):
    """Contract for anything that can list and resolve ads."""

    def search(self, criteria: SearchCriteria) -> Sequence[Union[ListingSummary, RawAd]]:
        ...

    def fetch_detail(self, summary: ListingSummary) -> RawAd:
        ...


def build_search_url(criteria: SearchCriteria, page: int = 1) -> str:
    """Return the results page URL for ``criteria``; pages are 1-based."""
    page_segment = f"page-{page}/" if page > 1 else ""
    return (
        f"{KIJIJI_BASE}/b-{criteria.category_slug}/{criteria.location_slug}/"
        f"{page_segment}c{criteria.category_id}l{criteria.location_id}"
        f"?sort={criteria.sort}"
    )


class KijijiAdSource:
    """Scrapes Kijiji result pages and ad detail pages over HTTP."""

    def __init__(self,
                 session: requests.Session | None = None,
                 timeout: int = 20,
                 max_pages: int = DEFAULT_MAX_PAGES):
        self.session = session or requests.Session()
        self.session.headers.update({
            "User-Agent": "kijijimap/1.0",
            "Accept": "text/html,application/xhtml+xml",
            "Accept-Language": "en-CA,en;q=0.8",
        })
        self.timeout = timeout
        self.max_pages = max_pages

    def get_text(self, url: str) -> str:
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise SourceUnavailable(f"GET {url} failed: {exc}") from exc
        return response.text

    def search(self, criteria: SearchCriteria) -> List[ListingSummary]:
        """Collect listing summaries, newest first, across result pages."""
        summaries: List[ListingSummary] = []
        seen: set[str] = set()
        for page in range(1, self.max_pages + 1):
            url = build_search_url(criteria, page)
            logger.debug("Fetching results page %s", url)
            page_summaries = extract_listing_links(self.get_text(url), url)
            fresh = [item for item in page_summaries if item.listing_id not in seen]
            if not fresh:
                logger.debug("Results page %d added nothing new; stopping", page)
                break
            for item in fresh:
                seen.add(item.listing_id)
                summaries.append(item)
            if len(summaries) >= criteria.min_results:
                break

        logger.info(
            "Collected %d listing summaries for %s/%s",
            len(summaries),
            criteria.category_slug,
            criteria.location_slug,
        )
        return summaries

    def fetch_detail(self, summary: ListingSummary) -> RawAd:
        html_text = self.get_text(summary.url)
        return parse_ad_page(html_text, summary)


def extract_listing_links(html_text: str, base_url: str = KIJIJI_BASE) -> List[ListingSummary]:
    """Return summaries for every listing link on a results page, in page order."""
    soup = BeautifulSoup(html_text, "html.parser")
    summaries: List[ListingSummary] = []
    for anchor in soup.select('[data-testid="listing-link"]'):
        href = anchor.get("href")
        if not href:
            continue
        url = urljoin(base_url, href)
        listing_id = urlparse(url).path.rstrip("/").split("/")[-1]
        if not listing_id:
            continue
        summaries.append(ListingSummary(listing_id=listing_id, url=url))
    return summaries


def parse_ad_page(html_text: str, summary: ListingSummary) -> RawAd:
    """Build a RawAd from the Next.js payload embedded in an ad page."""
    soup = BeautifulSoup(html_text, "html.parser")
    script = soup.find("script", id="__NEXT_DATA__")
    if script is None or not script.string:
        raise MalformedAdError(summary.listing_id, "ad page has no embedded data")
    try:
        payload = json.loads(script.string)
    except ValueError as exc:
        raise MalformedAdError(summary.listing_id, f"unreadable ad data: {exc}") from exc
    if not isinstance(payload, dict):
        raise MalformedAdError(summary.listing_id, "unexpected ad data layout")

    page_props = (payload.get("props") or {}).get("pageProps") or {}
    state = page_props.get("__APOLLO_STATE__") or {}
    ad_data = _find_ad_entry(state.values(), summary.listing_id)
    if ad_data is None:
        raise MalformedAdError(summary.listing_id, "ad not found in page data")

    attributes = _collect_attributes(ad_data.get("attributes"))
    price = ad_data.get("price")
    if isinstance(price, dict) and price.get("amount") is not None:
        # Amounts are published in cents.
        attributes["price"] = price["amount"] / 100
    location = ad_data.get("location") or {}
    coordinates = location.get("coordinates") or {}
    attributes["location"] = {
        "latitude": coordinates.get("latitude"),
        "longitude": coordinates.get("longitude"),
        "mapAddress": location.get("address"),
    }

    images = [url for url in ad_data.get("imageUrls") or [] if url]
    return RawAd(
        id=summary.listing_id,
        title=(ad_data.get("title") or "").strip(),
        url=summary.url,
        date=ad_data.get("sortingDate") or ad_data.get("activationDate"),
        image=images[0] if images else "",
        images=images,
        description=(ad_data.get("description") or "").strip(),
        attributes=attributes,
    )


def _find_ad_entry(entries: Iterable[Any], listing_id: str) -> Dict[str, Any] | None:
    for entry in entries:
        if isinstance(entry, dict) and str(entry.get("id")) == listing_id and "title" in entry:
            return entry
    return None


def _collect_attributes(raw_attributes: Any) -> Dict[str, Any]:
    attributes: Dict[str, Any] = {}
    entries = raw_attributes.get("all") if isinstance(raw_attributes, dict) else raw_attributes
    for entry in entries or []:
        if not isinstance(entry, dict):
            continue
        name = entry.get("canonicalName")
        values = [_cast_value(value) for value in entry.get("canonicalValues") or []]
        if not name or not values:
            continue
        attributes[name] = values[0] if len(values) == 1 else values
    return attributes


def _cast_value(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        return value
