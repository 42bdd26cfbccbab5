"""
Promise Cache Abstraction

The local cache holds what this client knows about its own promises:
content, witness enrichment, deadline, category and local status. It is
read and written wholesale, as one ordered list of records.

Implementations:
- InMemoryPromiseCache: For development and testing
- JsonFilePromiseCache: A single JSON array on disk, rewritten atomically
- PostgresPromiseCache: Table promise_records, rewritten in one transaction

RULES:
- load() returns records in stored order (newest first by convention)
- store() replaces the whole set; there are no partial writes
- Content that cannot be read back as records raises CacheError.
  A cache is never silently emptied.
"""

import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Iterable, Union

from pydantic import ValidationError as SchemaValidationError

from ..schemas import PromiseRecord


# ============================================================
# EXCEPTIONS
# ============================================================

class CacheError(Exception):
    """Raised when the cache cannot be read or written."""
    pass


# ============================================================
# ABSTRACT BASE CLASS
# ============================================================

class PromiseCache(ABC):
    """Wholesale store of PromiseRecords."""

    @abstractmethod
    def load(self) -> tuple[PromiseRecord, ...]:
        """
        Read every cached record.

        Returns:
            Records in stored order; empty if nothing has been stored

        Raises:
            CacheError: If stored content is unreadable
        """
        pass

    @abstractmethod
    def store(self, records: Iterable[PromiseRecord]) -> None:
        """Replace the cached set with `records`."""
        pass

    def close(self) -> None:
        pass


def records_to_json(records: Iterable[PromiseRecord]) -> list[dict]:
    return [record.model_dump(mode="json") for record in records]


def records_from_json(data: Any) -> tuple[PromiseRecord, ...]:
    """
    Parse a JSON-decoded list of records.

    Raises:
        CacheError: If data is not a list of valid records
    """
    if not isinstance(data, list):
        raise CacheError(f"Cache content must be a JSON array, got {type(data).__name__}")
    try:
        return tuple(PromiseRecord.model_validate(item) for item in data)
    except SchemaValidationError as e:
        raise CacheError(f"Cache contains an invalid record: {e}") from e


# ============================================================
# IN-MEMORY
# ============================================================

class InMemoryPromiseCache(PromiseCache):
    """
    In-memory cache for development and testing.

    WARNING: Data is lost when the process exits.
    """

    def __init__(self, records: Iterable[PromiseRecord] = ()):
        self._lock = Lock()
        self._records: tuple[PromiseRecord, ...] = tuple(records)

    def load(self) -> tuple[PromiseRecord, ...]:
        with self._lock:
            return self._records

    def store(self, records: Iterable[PromiseRecord]) -> None:
        with self._lock:
            self._records = tuple(records)

    def clear(self) -> None:
        with self._lock:
            self._records = ()


# ============================================================
# JSON FILE
# ============================================================

class JsonFilePromiseCache(PromiseCache):
    """
    Cache backed by one JSON file.

    Writes go to a temporary file in the same directory, then replace the
    target in one rename, so readers see either the old or the new set.
    """

    def __init__(self, path: Union[str, Path]):
        self._path = Path(path)
        self._lock = Lock()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> tuple[PromiseRecord, ...]:
        with self._lock:
            if not self._path.exists():
                return ()
            try:
                text = self._path.read_text(encoding="utf-8")
            except OSError as e:
                raise CacheError(f"Cannot read cache file {self._path}: {e}") from e

        if not text.strip():
            return ()
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise CacheError(f"Cache file {self._path} is not valid JSON: {e}") from e
        return records_from_json(data)

    def store(self, records: Iterable[PromiseRecord]) -> None:
        content = json.dumps(records_to_json(records), ensure_ascii=False, indent=2)

        with self._lock:
            directory = self._path.parent
            try:
                directory.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(
                    prefix=f".{self._path.name}.", suffix=".tmp", dir=str(directory)
                )
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as f:
                        f.write(content)
                        f.flush()
                        os.fsync(f.fileno())
                    os.replace(tmp_name, self._path)
                except BaseException:
                    if os.path.exists(tmp_name):
                        os.unlink(tmp_name)
                    raise
            except OSError as e:
                raise CacheError(f"Cannot write cache file {self._path}: {e}") from e


# ============================================================
# POSTGRESQL
# ============================================================

class PostgresPromiseCache(PromiseCache):
    """
    PostgreSQL implementation of PromiseCache.

    Each record is one row; position keeps the stored order. store()
    deletes and re-inserts every row in a single transaction.

    Usage:
        cache = PostgresPromiseCache(lambda: psycopg2.connect(dsn))
        cache.ensure_schema()
    """

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS promise_records (
            position     INTEGER PRIMARY KEY,
            record_id    TEXT NOT NULL,
            digest       TEXT NOT NULL,
            record_json  JSONB NOT NULL,
            stored_at    TIMESTAMPTZ NOT NULL DEFAULT now()
        );
        CREATE INDEX IF NOT EXISTS promise_records_digest_idx ON promise_records (digest);
    """

    def __init__(self, connection_factory: Callable[[], Any]):
        """
        Args:
            connection_factory: Callable that returns a psycopg2 connection.
        """
        self._connection_factory = connection_factory

    def ensure_schema(self) -> None:
        conn = self._connection_factory()
        try:
            with conn.cursor() as cursor:
                cursor.execute(self.SCHEMA)
            conn.commit()
        finally:
            conn.close()

    def load(self) -> tuple[PromiseRecord, ...]:
        conn = self._connection_factory()
        cursor = conn.cursor()
        try:
            cursor.execute("""
                SELECT record_json
                FROM promise_records
                ORDER BY position
            """)
            rows = cursor.fetchall()
        except Exception as e:
            raise CacheError(f"Cannot read promise_records: {e}") from e
        finally:
            cursor.close()
            conn.close()

        # psycopg2 decodes JSONB to dicts; text columns come back as str
        data = [json.loads(row[0]) if isinstance(row[0], str) else row[0] for row in rows]
        return records_from_json(data)

    def store(self, records: Iterable[PromiseRecord]) -> None:
        from psycopg2.extras import Json

        rows = [
            (position, record.id, record.digest.lower(), Json(record.model_dump(mode="json")))
            for position, record in enumerate(records)
        ]

        conn = self._connection_factory()
        conn.autocommit = False
        cursor = conn.cursor()
        try:
            cursor.execute("DELETE FROM promise_records")
            cursor.executemany(
                """
                INSERT INTO promise_records (position, record_id, digest, record_json)
                VALUES (%s, %s, %s, %s)
                """,
                rows,
            )
            conn.commit()
        except Exception as e:
            conn.rollback()
            raise CacheError(f"Cannot write promise_records: {e}") from e
        finally:
            cursor.close()
            conn.close()
