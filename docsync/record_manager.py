"""
Record Manager - Durable ledger of what has been indexed.

Maps document key -> (source id, content hash, last-seen timestamp) within
a namespace. The indexer consults it instead of scanning the vector store,
and uses the timestamps to tell live records from stale ones.
"""

import logging
import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, TypeVar

from .errors import TransientWriteError
from .models import Record


logger = logging.getLogger(__name__)

T = TypeVar("T")

# Minimum distance between a new run's clock and the newest stored record
MIN_TIME_STEP = 0.001

# Stay well below SQLite's bound-parameter limit
SQL_CHUNK_SIZE = 500


def batched(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of at most `size` items."""
    for start in range(0, len(items), size):
        yield items[start:start + size]


class RecordManager(ABC):
    """
    Ledger interface, bound to one namespace.

    Every operation is idempotent so the indexer may re-issue it after a
    partial failure.
    """

    def __init__(self, namespace: str):
        self.namespace = namespace

    @abstractmethod
    def create_schema(self) -> None:
        """Create backing storage. Safe to call on every startup."""

    @abstractmethod
    def get_time(self) -> float:
        """
        Timestamp for the current write.

        Never earlier than the newest record already stored in the
        namespace, so records from previous runs always compare as older.
        """

    @abstractmethod
    def upsert(self, records: Sequence[Record]) -> None:
        """Insert or overwrite records. All-or-nothing per call."""

    @abstractmethod
    def get_hashes(self, keys: Sequence[str]) -> Dict[str, str]:
        """Stored hash for each key that exists."""

    @abstractmethod
    def get_group_ids(self, keys: Sequence[str]) -> Dict[str, Optional[str]]:
        """Stored source id for each key that exists."""

    @abstractmethod
    def list_keys(
        self,
        before: Optional[float] = None,
        after: Optional[float] = None,
        group_ids: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
    ) -> List[str]:
        """Keys filtered by update time and source id."""

    @abstractmethod
    def delete_keys(self, keys: Sequence[str]) -> int:
        """Remove records. Missing keys are ignored. Returns rows removed."""

    @abstractmethod
    def count(self) -> int:
        """Number of records in the namespace."""

    def exists(self, keys: Sequence[str]) -> List[bool]:
        """Whether each key is present, in input order."""
        found = self.get_hashes(keys)
        return [key in found for key in keys]

    def close(self) -> None:
        pass


class SQLiteRecordManager(RecordManager):
    """
    Record ledger stored in SQLite.

    A single connection is shared behind a lock so the manager can be
    called from executor threads as well as from the event loop.
    """

    def __init__(self, namespace: str, db_path: Path | str):
        super().__init__(namespace)
        self.db_path = str(db_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            if self.db_path != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            if self.db_path != ":memory:":
                self._conn.execute("PRAGMA journal_mode = WAL")
            self._conn.execute("PRAGMA synchronous = NORMAL")
        return self._conn

    def create_schema(self) -> None:
        with self._lock:
            conn = self._get_connection()
            try:
                conn.executescript("""
                    CREATE TABLE IF NOT EXISTS upsertion_record (
                        namespace TEXT NOT NULL,
                        key TEXT NOT NULL,
                        group_id TEXT,
                        hash TEXT NOT NULL,
                        updated_at REAL NOT NULL,
                        PRIMARY KEY (namespace, key)
                    );

                    CREATE INDEX IF NOT EXISTS idx_record_group
                        ON upsertion_record(namespace, group_id);
                    CREATE INDEX IF NOT EXISTS idx_record_updated
                        ON upsertion_record(namespace, updated_at);
                """)
                conn.commit()
            except sqlite3.Error as e:
                raise TransientWriteError("create_schema", cause=e) from e
        logger.debug(f"Record ledger ready at {self.db_path} ({self.namespace})")

    def get_time(self) -> float:
        with self._lock:
            try:
                row = self._get_connection().execute(
                    "SELECT MAX(updated_at) FROM upsertion_record WHERE namespace = ?",
                    (self.namespace,),
                ).fetchone()
            except sqlite3.Error as e:
                raise TransientWriteError("get_time", cause=e) from e
        now = time.time()
        latest = row[0] if row else None
        if latest is not None and now < latest + MIN_TIME_STEP:
            return latest + MIN_TIME_STEP
        return now

    def upsert(self, records: Sequence[Record]) -> None:
        if not records:
            return
        with self._lock:
            conn = self._get_connection()
            try:
                with conn:
                    conn.executemany(
                        """
                        INSERT INTO upsertion_record (namespace, key, group_id, hash, updated_at)
                        VALUES (?, ?, ?, ?, ?)
                        ON CONFLICT(namespace, key) DO UPDATE SET
                            group_id = excluded.group_id,
                            hash = excluded.hash,
                            updated_at = excluded.updated_at
                        """,
                        [
                            (self.namespace, r.key, r.group_id, r.hash, r.updated_at)
                            for r in records
                        ],
                    )
            except sqlite3.Error as e:
                raise TransientWriteError("ledger upsert", [r.key for r in records], e) from e

    def _select_by_keys(self, column: str, keys: Sequence[str]) -> Dict[str, Optional[str]]:
        result: Dict[str, Optional[str]] = {}
        with self._lock:
            conn = self._get_connection()
            try:
                for chunk in batched(list(keys), SQL_CHUNK_SIZE):
                    placeholders = ",".join("?" for _ in chunk)
                    cursor = conn.execute(
                        f"SELECT key, {column} FROM upsertion_record "
                        f"WHERE namespace = ? AND key IN ({placeholders})",
                        (self.namespace, *chunk),
                    )
                    result.update({row[0]: row[1] for row in cursor.fetchall()})
            except sqlite3.Error as e:
                raise TransientWriteError(f"ledger lookup ({column})", keys, e) from e
        return result

    def get_hashes(self, keys: Sequence[str]) -> Dict[str, str]:
        return self._select_by_keys("hash", keys)

    def get_group_ids(self, keys: Sequence[str]) -> Dict[str, Optional[str]]:
        return self._select_by_keys("group_id", keys)

    def list_keys(
        self,
        before: Optional[float] = None,
        after: Optional[float] = None,
        group_ids: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
    ) -> List[str]:
        query = "SELECT key FROM upsertion_record WHERE namespace = ?"
        params: list = [self.namespace]

        if before is not None:
            query += " AND updated_at < ?"
            params.append(before)
        if after is not None:
            query += " AND updated_at > ?"
            params.append(after)
        if group_ids is not None:
            if not group_ids:
                return []
            placeholders = ",".join("?" for _ in group_ids)
            query += f" AND group_id IN ({placeholders})"
            params.extend(group_ids)

        query += " ORDER BY updated_at, key"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        with self._lock:
            try:
                cursor = self._get_connection().execute(query, params)
                return [row[0] for row in cursor.fetchall()]
            except sqlite3.Error as e:
                raise TransientWriteError("ledger list", cause=e) from e

    def delete_keys(self, keys: Sequence[str]) -> int:
        if not keys:
            return 0
        removed = 0
        with self._lock:
            conn = self._get_connection()
            try:
                with conn:
                    for chunk in batched(list(keys), SQL_CHUNK_SIZE):
                        placeholders = ",".join("?" for _ in chunk)
                        cursor = conn.execute(
                            f"DELETE FROM upsertion_record "
                            f"WHERE namespace = ? AND key IN ({placeholders})",
                            (self.namespace, *chunk),
                        )
                        removed += cursor.rowcount
            except sqlite3.Error as e:
                raise TransientWriteError("ledger delete", keys, e) from e
        return removed

    def count(self) -> int:
        with self._lock:
            row = self._get_connection().execute(
                "SELECT COUNT(*) FROM upsertion_record WHERE namespace = ?",
                (self.namespace,),
            ).fetchone()
        return row[0]

    def all_records(self) -> List[Record]:
        """Every record in the namespace, oldest first."""
        with self._lock:
            cursor = self._get_connection().execute(
                "SELECT key, group_id, hash, updated_at FROM upsertion_record "
                "WHERE namespace = ? ORDER BY updated_at, key",
                (self.namespace,),
            )
            return [Record(row[0], row[1], row[2], row[3]) for row in cursor.fetchall()]

    def close(self):
        """Close database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None


def iter_group_chunks(group_ids: Iterable[str], size: int = SQL_CHUNK_SIZE) -> Iterator[List[str]]:
    """Sorted group ids in chunks small enough for one IN (...) clause."""
    ordered = sorted(set(group_ids))
    for chunk in batched(ordered, size):
        yield list(chunk)
