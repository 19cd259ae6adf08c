"""Spreadsheet export of the stored listings."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List

from openpyxl import Workbook

from .db import DocumentStore

logger = logging.getLogger(__name__)

EXPORT_COLUMNS = [
    "listingId",
    "title",
    "price",
    "bedrooms",
    "bathrooms",
    "sqft",
    "address",
    "longitude",
    "latitude",
    "date",
    "url",
]


def export_listings_to_xlsx(database: DocumentStore, collection: str, path: Path) -> int:
    """Write every listing in ``collection`` to an xlsx sheet; returns the row count."""
    workbook = Workbook()
    worksheet = workbook.active
    worksheet.title = "listings"
    worksheet.append(EXPORT_COLUMNS)

    documents = database.find(collection)
    for document in documents:
        row = _flatten(document)
        worksheet.append([_cell(row.get(column)) for column in EXPORT_COLUMNS])

    path.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(path)
    logger.info("Exported %d listing(s) from %s to %s", len(documents), collection, path)
    return len(documents)


def _flatten(document: Dict[str, Any]) -> Dict[str, Any]:
    """Pull listing fields and coordinates out of either document shape."""
    if "properties" in document:
        fields = dict(document.get("properties") or {})
        point = document.get("geometry") or {}
    else:
        fields = dict(document)
        point = document.get("location") or {}
    coordinates: List[Any] = list(point.get("coordinates") or []) + [None, None]
    fields["longitude"], fields["latitude"] = coordinates[0], coordinates[1]
    return fields


def _cell(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)
