"""MongoDB-backed document store."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Sequence

from pymongo import ASCENDING, DESCENDING, GEOSPHERE, MongoClient
from pymongo.database import Database as PyMongoDatabase
from pymongo.errors import BulkWriteError, PyMongoError

from .db import DISCARD, INSERT, KEEP_EXISTING, OVERWRITE, validate_merge_policy
from .errors import StagingInconsistent, StoreUnavailable
from .models import RunRecord

logger = logging.getLogger(__name__)

RUNS_COLLECTION = "runs"

_WHEN_MATCHED = {KEEP_EXISTING: "keepExisting", OVERWRITE: "replace"}
_WHEN_NOT_MATCHED = {INSERT: "insert", DISCARD: "discard"}


@contextmanager
def _store_errors(action: str) -> Iterator[None]:
    try:
        yield
    except PyMongoError as exc:
        raise StoreUnavailable(f"{action} failed: {exc}") from exc


@dataclass
class MongoDatabase:
    """Thin wrapper around a pymongo database exposing the store contract."""

    db: PyMongoDatabase

    @classmethod
    def from_uri(cls, uri: str, name: str, timeout_ms: int = 20000) -> "MongoDatabase":
        client: MongoClient = MongoClient(uri, serverSelectionTimeoutMS=timeout_ms)
        return cls(db=client[name])

    def initialize(self) -> None:
        with _store_errors("initialize"):
            self.db[RUNS_COLLECTION].create_index([("executed_at", DESCENDING)])

    def ensure_collection(
        self, name: str, unique_key: str | None = None, geo_field: str | None = None
    ) -> None:
        with _store_errors(f"create collection {name}"):
            # $merge refuses to run unless its "on" field has a unique index.
            if unique_key:
                self.db[name].create_index([(unique_key, ASCENDING)], unique=True)
                logger.debug("Ensured unique index on %s.%s", name, unique_key)
            if geo_field:
                self.db[name].create_index([(geo_field, GEOSPHERE)])
                logger.debug("Ensured 2dsphere index on %s.%s", name, geo_field)

    def find(
        self, collection: str, projection: Sequence[str] | None = None
    ) -> List[Dict[str, Any]]:
        fields: Dict[str, int] = {"_id": 0}
        if projection:
            fields.update({key: 1 for key in projection})
        with _store_errors(f"find in {collection}"):
            return list(self.db[collection].find({}, fields))

    def insert_many(self, collection: str, documents: Sequence[Dict[str, Any]]) -> int:
        # insert_many stamps _id onto the dicts it receives.
        payload = [dict(document) for document in documents]
        try:
            result = self.db[collection].insert_many(payload, ordered=True)
        except BulkWriteError as exc:
            inserted = exc.details.get("nInserted", 0)
            raise StagingInconsistent(expected=len(payload), inserted=inserted) from exc
        except PyMongoError as exc:
            raise StoreUnavailable(f"insert into {collection} failed: {exc}") from exc
        return len(result.inserted_ids)

    def count_documents(self, collection: str) -> int:
        with _store_errors(f"count {collection}"):
            return self.db[collection].count_documents({})

    def delete_many(self, collection: str) -> int:
        with _store_errors(f"clear {collection}"):
            return self.db[collection].delete_many({}).deleted_count

    def merge(
        self,
        source: str,
        into: str,
        on: str,
        when_matched: str = KEEP_EXISTING,
        when_not_matched: str = INSERT,
    ) -> None:
        """Run a single ``$merge`` aggregation from ``source`` into ``into``."""
        validate_merge_policy(when_matched, when_not_matched)
        pipeline = [
            # Staged _ids are dropped so $merge assigns fresh ones on insert.
            {"$unset": "_id"},
            {
                "$merge": {
                    "into": into,
                    "on": on,
                    "whenMatched": _WHEN_MATCHED[when_matched],
                    "whenNotMatched": _WHEN_NOT_MATCHED[when_not_matched],
                }
            },
        ]
        with _store_errors(f"merge {source} into {into}"):
            list(self.db[source].aggregate(pipeline))

    def add_run(self, executed_at: str, status: str, notes: str | None) -> None:
        with _store_errors("record run"):
            self.db[RUNS_COLLECTION].insert_one(
                {"executed_at": executed_at, "status": status, "notes": notes}
            )

    def recent_runs(self, limit: int = 10) -> List[RunRecord]:
        with _store_errors("read run history"):
            cursor = (
                self.db[RUNS_COLLECTION]
                .find({}, {"_id": 0})
                .sort("executed_at", DESCENDING)
                .limit(limit)
            )
            return [
                RunRecord(
                    executed_at=row["executed_at"],
                    status=row["status"],
                    notes=row.get("notes"),
                )
                for row in cursor
            ]
