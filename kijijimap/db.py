"""SQLite-backed document store."""

from __future__ import annotations

import json
import re
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Protocol, Sequence

from .errors import StoreUnavailable
from .models import RunRecord


SQLITE_PREFIX = "sqlite://"
KEEP_EXISTING = "keepExisting"
OVERWRITE = "overwrite"
INSERT = "insert"
DISCARD = "discard"

_COLLECTION_NAME = re.compile(r"^[A-Za-z0-9_\-]+$")
_KEY_PATH = re.compile(r"^[A-Za-z0-9_]+(\.[A-Za-z0-9_]+)*$")


class DocumentStore(Protocol):
    """Collection-level operations the sync pipeline relies on."""

    def initialize(self) -> None:
        ...

    def ensure_collection(
        self, name: str, unique_key: str | None = None, geo_field: str | None = None
    ) -> None:
        ...

    def find(
        self, collection: str, projection: Sequence[str] | None = None
    ) -> List[Dict[str, Any]]:
        ...

    def insert_many(self, collection: str, documents: Sequence[Dict[str, Any]]) -> int:
        ...

    def count_documents(self, collection: str) -> int:
        ...

    def delete_many(self, collection: str) -> int:
        ...

    def merge(
        self,
        source: str,
        into: str,
        on: str,
        when_matched: str = KEEP_EXISTING,
        when_not_matched: str = INSERT,
    ) -> None:
        ...

    def add_run(self, executed_at: str, status: str, notes: str | None) -> None:
        ...

    def recent_runs(self, limit: int = 10) -> List[RunRecord]:
        ...


def resolve_sqlite_path(database_url: str) -> Path:
    """Translate a DATABASE_URL into a filesystem path."""
    if not database_url:
        raise ValueError("DATABASE_URL must not be empty")

    if database_url.startswith(SQLITE_PREFIX):
        raw_path = database_url[len(SQLITE_PREFIX) :]
        # Allow sqlite:///path/to/file and sqlite://path/to/file styles.
        if raw_path.startswith("/"):
            raw_path = raw_path[1:]
        path = Path(raw_path)
    else:
        path = Path(database_url)

    if not path.is_absolute():
        path = Path.cwd() / path

    return path.expanduser().resolve()


def get_path(document: Dict[str, Any], key: str) -> Any:
    """Return the value at a dotted path, or None when any segment is missing."""
    value: Any = document
    for part in key.split("."):
        if not isinstance(value, dict) or part not in value:
            return None
        value = value[part]
    return value


def set_path(document: Dict[str, Any], key: str, value: Any) -> None:
    parts = key.split(".")
    target = document
    for part in parts[:-1]:
        target = target.setdefault(part, {})
    target[parts[-1]] = value


def validate_merge_policy(when_matched: str, when_not_matched: str) -> None:
    if when_matched not in (KEEP_EXISTING, OVERWRITE):
        raise ValueError(f"Unsupported whenMatched policy: {when_matched!r}")
    if when_not_matched not in (INSERT, DISCARD):
        raise ValueError(f"Unsupported whenNotMatched policy: {when_not_matched!r}")


def _table(name: str) -> str:
    if not _COLLECTION_NAME.match(name):
        raise ValueError(f"Invalid collection name: {name!r}")
    return f'"{name}"'


def _json_path(key: str) -> str:
    if not _KEY_PATH.match(key):
        raise ValueError(f"Invalid key path: {key!r}")
    return "$." + key


def _index_name(collection: str, key: str) -> str:
    slug = re.sub(r"[^A-Za-z0-9]+", "_", f"{collection}_{key}")
    return f'"ux_{slug}"'


@contextmanager
def _store_errors(action: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as exc:
        raise StoreUnavailable(f"{action} failed: {exc}") from exc


@dataclass
class Database:
    """Stores JSON documents in SQLite, one table per collection."""

    path: Path

    def connect(self) -> sqlite3.Connection:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        return sqlite3.connect(self.path)

    def initialize(self) -> None:
        with _store_errors("initialize"), self.connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS runs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    executed_at TEXT NOT NULL,
                    status TEXT NOT NULL,
                    notes TEXT
                )
                """
            )
            conn.commit()

    def ensure_collection(
        self, name: str, unique_key: str | None = None, geo_field: str | None = None
    ) -> None:
        """Create the collection table and, optionally, a unique index on a key.

        SQLite has no spatial index, so ``geo_field`` is accepted and ignored.
        """
        table = _table(name)
        with _store_errors(f"create collection {name}"), self.connect() as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    document TEXT NOT NULL
                )
                """
            )
            if unique_key:
                conn.execute(
                    f"""
                    CREATE UNIQUE INDEX IF NOT EXISTS {_index_name(name, unique_key)}
                    ON {table} (json_extract(document, '{_json_path(unique_key)}'))
                    """
                )
            conn.commit()

    def find(
        self, collection: str, projection: Sequence[str] | None = None
    ) -> List[Dict[str, Any]]:
        """Return documents in insertion order.

        When ``projection`` is given only those dotted paths are read, so large
        collections can be scanned for their keys without decoding whole
        documents.
        """
        table = _table(collection)
        with _store_errors(f"find in {collection}"), self.connect() as conn:
            if not projection:
                rows = conn.execute(f"SELECT document FROM {table} ORDER BY id")
                return [json.loads(row[0]) for row in rows.fetchall()]

            columns = ", ".join(
                f"json_extract(document, '{_json_path(key)}')" for key in projection
            )
            rows = conn.execute(f"SELECT {columns} FROM {table} ORDER BY id")
            documents = []
            for row in rows.fetchall():
                document: Dict[str, Any] = {}
                for key, value in zip(projection, row):
                    if value is not None:
                        set_path(document, key, value)
                documents.append(document)
            return documents

    def insert_many(self, collection: str, documents: Sequence[Dict[str, Any]]) -> int:
        table = _table(collection)
        payload = [
            (json.dumps(document, ensure_ascii=False, default=str),)
            for document in documents
        ]
        with _store_errors(f"insert into {collection}"), self.connect() as conn:
            cursor = conn.executemany(
                f"INSERT INTO {table} (document) VALUES (?)", payload
            )
            conn.commit()
            return cursor.rowcount

    def count_documents(self, collection: str) -> int:
        table = _table(collection)
        with _store_errors(f"count {collection}"), self.connect() as conn:
            return int(conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0])

    def delete_many(self, collection: str) -> int:
        table = _table(collection)
        with _store_errors(f"clear {collection}"), self.connect() as conn:
            cursor = conn.execute(f"DELETE FROM {table}")
            conn.commit()
            return cursor.rowcount

    def merge(
        self,
        source: str,
        into: str,
        on: str,
        when_matched: str = KEEP_EXISTING,
        when_not_matched: str = INSERT,
    ) -> None:
        """Merge every document of ``source`` into ``into`` keyed on ``on``.

        Runs in one transaction. The target must carry a unique index on
        ``on`` (see ``ensure_collection``); inserts rely on it to skip keys
        that already exist, including repeats inside ``source`` itself.
        """
        validate_merge_policy(when_matched, when_not_matched)
        src = _table(source)
        dst = _table(into)
        path = _json_path(on)

        with _store_errors(f"merge {source} into {into}"), self.connect() as conn:
            if when_matched == OVERWRITE:
                conn.execute(
                    f"""
                    UPDATE {dst}
                    SET document = (
                        SELECT s.document FROM {src} AS s
                        WHERE json_extract(s.document, '{path}')
                            = json_extract({dst}.document, '{path}')
                        ORDER BY s.id DESC
                        LIMIT 1
                    )
                    WHERE json_extract(document, '{path}') IN (
                        SELECT json_extract(document, '{path}') FROM {src}
                    )
                    """
                )
            if when_not_matched == INSERT:
                # "WHERE true" keeps the upsert clause from parsing as a join.
                conn.execute(
                    f"""
                    INSERT INTO {dst} (document)
                    SELECT document FROM {src}
                    WHERE true
                    ON CONFLICT DO NOTHING
                    """
                )
            conn.commit()

    def add_run(self, executed_at: str, status: str, notes: str | None) -> None:
        with _store_errors("record run"), self.connect() as conn:
            conn.execute(
                "INSERT INTO runs (executed_at, status, notes) VALUES (?, ?, ?)",
                (executed_at, status, notes),
            )
            conn.commit()

    def recent_runs(self, limit: int = 10) -> List[RunRecord]:
        with _store_errors("read run history"), self.connect() as conn:
            cursor = conn.execute(
                "SELECT executed_at, status, notes FROM runs ORDER BY id DESC LIMIT ?",
                (limit,),
            )
            return [RunRecord(*row) for row in cursor.fetchall()]
