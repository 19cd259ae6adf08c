"""Map raw ads onto the canonical listing document."""

from __future__ import annotations

import datetime as dt
import logging
import math
from typing import Any, Dict, Iterable, List, Tuple

from .errors import MalformedAdError
from .models import DocumentShape, RawAd

logger = logging.getLogger(__name__)


def normalize_ad(ad: RawAd, shape: DocumentShape = DocumentShape.FEATURE) -> Dict[str, Any]:
    """Build the stored document for ``ad``.

    Raises ``MalformedAdError`` when the ad has no id or no numeric
    coordinates. Price, room counts and area are copied as-is; missing
    values are stored as None.
    """
    listing_id = str(ad.id).strip() if ad.id is not None else ""
    if not listing_id:
        raise MalformedAdError(None, "missing listing id")

    attributes = ad.attributes or {}
    location = attributes.get("location")
    if not isinstance(location, dict):
        raise MalformedAdError(listing_id, "missing location")
    longitude = _coordinate(location.get("longitude"))
    latitude = _coordinate(location.get("latitude"))
    if longitude is None or latitude is None:
        raise MalformedAdError(listing_id, "location has no numeric coordinates")
    if not (-180.0 <= longitude <= 180.0 and -90.0 <= latitude <= 90.0):
        raise MalformedAdError(listing_id, "coordinates out of range")

    point = {"type": "Point", "coordinates": [longitude, latitude]}
    properties = {
        "listingId": listing_id,
        "title": ad.title,
        "image": ad.image,
        "images": list(ad.images),
        "address": location.get("mapAddress"),
        "date": _format_date(ad.date),
        "price": attributes.get("price"),
        "bedrooms": attributes.get("numberbedrooms"),
        "bathrooms": attributes.get("numberbathrooms"),
        "url": ad.url,
        "sqft": attributes.get("areainfeet"),
        "attributes": attributes,
    }

    if shape is DocumentShape.FEATURE:
        return {"type": "Feature", "geometry": point, "properties": properties}
    return {**properties, "location": point}


def normalize_batch(
    ads: Iterable[RawAd], shape: DocumentShape = DocumentShape.FEATURE
) -> Tuple[List[Dict[str, Any]], int]:
    """Normalize every ad, skipping malformed ones.

    Returns the documents and the number of ads that were skipped.
    """
    documents: List[Dict[str, Any]] = []
    skipped = 0
    for ad in ads:
        try:
            documents.append(normalize_ad(ad, shape))
        except MalformedAdError as exc:
            skipped += 1
            logger.warning("Skipping malformed ad %s: %s", exc.listing_id, exc.reason)
    return documents, skipped


def _coordinate(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value)
        except ValueError:
            return None
    else:
        return None
    # "nan" and "inf" parse as floats but are not positions.
    return number if math.isfinite(number) else None


def _format_date(value: Any) -> Any:
    if isinstance(value, (dt.datetime, dt.date)):
        return value.isoformat()
    return value
