"""Append-only operation log and map snapshot store.

Provides the ``OperationLog`` protocol, an ``InMemoryOperationLog`` and a
``SqliteOperationLog``, plus the ``MapSnapshot`` envelope used for
recovery. Records are appended in server-sequence order per map and are
never deleted; the only mutation is the status transition to
``rolled_back``.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Protocol

import msgpack

from mindsync.config import JournalConfig
from mindsync.exceptions import StorageError
from mindsync.operations import (
    OperationKind,
    OperationRecord,
    OperationStats,
    OperationStatus,
)

logger = logging.getLogger("mindsync.oplog")


@dataclass(frozen=True)
class MapSnapshot:
    """Persisted form of a map's state up to a server sequence.

    Parameters
    ----------
    map_id : str
        The map the snapshot belongs to.
    sequence : int
        Last server sequence reflected in ``state``.
    state : dict[str, Any]
        ``MapState.to_dict()`` output, deleted entities included.
    timestamp : float
        Unix timestamp when the snapshot was taken.
    """

    map_id: str
    sequence: int
    state: dict[str, Any]
    timestamp: float


class OperationLog(Protocol):
    """Protocol for operation log backends.

    ``next_sequence`` hands out per-map server sequence numbers that are
    strictly greater than any previously issued for that map, also when
    several appenders race.
    """

    async def next_sequence(self, map_id: str) -> int: ...

    async def append(self, record: OperationRecord) -> None: ...

    async def get(self, operation_id: str) -> OperationRecord | None: ...

    async def find_by_map(
        self, map_id: str, limit: int = 100, offset: int = 0
    ) -> list[OperationRecord]:
        """Records of a map, newest first."""
        ...

    async def find_since(self, map_id: str, sequence: int) -> list[OperationRecord]:
        """Records with a server sequence greater than ``sequence``, ascending."""
        ...

    async def find_conflicts(self, map_id: str, limit: int = 100) -> list[OperationRecord]:
        """Records accepted on a concurrent clock, newest first."""
        ...

    async def find_by_entity(self, map_id: str, entity_id: str) -> list[OperationRecord]:
        """Records touching one entity, ascending."""
        ...

    async def mark_rolled_back(
        self, operation_id: str, at: float
    ) -> OperationRecord | None: ...

    async def summarize(self, map_id: str) -> OperationStats: ...

    async def save_snapshot(self, snapshot: MapSnapshot) -> None: ...

    async def load_snapshot(self, map_id: str) -> MapSnapshot | None: ...

    def close(self) -> None: ...


def _stats(rows: list[tuple[OperationKind, int, int, int]]) -> OperationStats:
    by_kind = {kind: count for kind, count, _, _ in rows}
    conflicts_by_kind = {kind: conflicts for kind, _, conflicts, _ in rows if conflicts}
    return OperationStats(
        total=sum(by_kind.values()),
        conflicts=sum(conflicts_by_kind.values()),
        by_kind=by_kind,
        conflicts_by_kind=conflicts_by_kind,
        rolled_back=sum(r for _, _, _, r in rows),
    )


class InMemoryOperationLog:
    """In-memory operation log for testing and development.

    Data is lost when the process exits. Satisfies the ``OperationLog``
    protocol.

    Examples
    --------
    >>> log = InMemoryOperationLog()
    >>> await log.next_sequence("m1")
    1
    """

    def __init__(self) -> None:
        self._records: dict[str, OperationRecord] = {}
        self._by_map: dict[str, list[str]] = {}
        self._sequences: dict[str, int] = {}
        self._snapshots: dict[str, MapSnapshot] = {}

    async def next_sequence(self, map_id: str) -> int:
        value = self._sequences.get(map_id, 0) + 1
        self._sequences[map_id] = value
        return value

    async def append(self, record: OperationRecord) -> None:
        if record.operation_id in self._records:
            msg = f"Operation {record.operation_id} already logged"
            raise StorageError(msg)
        self._records[record.operation_id] = record
        self._by_map.setdefault(record.map_id, []).append(record.operation_id)
        if record.sequence > self._sequences.get(record.map_id, 0):
            self._sequences[record.map_id] = record.sequence

    async def get(self, operation_id: str) -> OperationRecord | None:
        return self._records.get(operation_id)

    def _ascending(self, map_id: str) -> list[OperationRecord]:
        records = [self._records[i] for i in self._by_map.get(map_id, [])]
        records.sort(key=lambda r: r.sequence)
        return records

    async def find_by_map(
        self, map_id: str, limit: int = 100, offset: int = 0
    ) -> list[OperationRecord]:
        newest_first = self._ascending(map_id)[::-1]
        return newest_first[offset:offset + limit]

    async def find_since(self, map_id: str, sequence: int) -> list[OperationRecord]:
        return [r for r in self._ascending(map_id) if r.sequence > sequence]

    async def find_conflicts(self, map_id: str, limit: int = 100) -> list[OperationRecord]:
        return [r for r in reversed(self._ascending(map_id)) if r.conflict][:limit]

    async def find_by_entity(self, map_id: str, entity_id: str) -> list[OperationRecord]:
        return [r for r in self._ascending(map_id) if r.entity_id == entity_id]

    async def mark_rolled_back(
        self, operation_id: str, at: float
    ) -> OperationRecord | None:
        record = self._records.get(operation_id)
        if record is None:
            return None
        updated = replace(record, status=OperationStatus.rolled_back, rolled_back_at=at)
        self._records[operation_id] = updated
        return updated

    async def summarize(self, map_id: str) -> OperationStats:
        records = self._ascending(map_id)
        counts = Counter(r.kind for r in records)
        conflicts = Counter(r.kind for r in records if r.conflict)
        rolled_back = Counter(
            r.kind for r in records if r.status is OperationStatus.rolled_back
        )
        return _stats([
            (kind, count, conflicts[kind], rolled_back[kind])
            for kind, count in counts.items()
        ])

    async def save_snapshot(self, snapshot: MapSnapshot) -> None:
        self._snapshots[snapshot.map_id] = snapshot

    async def load_snapshot(self, map_id: str) -> MapSnapshot | None:
        return self._snapshots.get(map_id)

    def close(self) -> None:
        pass


def _pack(data: Any) -> bytes:
    try:
        return msgpack.packb(data, use_bin_type=True)
    except (TypeError, ValueError, OverflowError) as exc:
        msg = f"Cannot encode {type(data).__name__} for the operation log: {exc}"
        raise StorageError(msg) from exc


def _unpack(data: bytes) -> Any:
    try:
        return msgpack.unpackb(data, raw=False)
    except (ValueError, msgpack.UnpackException) as exc:
        msg = f"Corrupt entry in the operation log: {exc}"
        raise StorageError(msg) from exc


_RECORD_COLUMNS = "record_data, status, rolled_back_at"


class SqliteOperationLog:
    """SQLite-backed operation log for durable persistence.

    Uses Python's stdlib ``sqlite3`` with WAL mode for concurrent reads and
    ``asyncio.to_thread`` for non-blocking I/O. A ``threading.Lock``
    serializes all writes, which also makes sequence allocation atomic.
    Record bodies and snapshot state are stored as msgpack blobs; fields
    used for lookups live in their own columns. Every ``sqlite3.Error`` is
    re-raised as ``StorageError``.

    Parameters
    ----------
    path : str | Path
        Path to the SQLite database file, or ``":memory:"`` for an in-memory
        database (useful for testing).
    """

    def __init__(self, path: str | Path = ":memory:") -> None:
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(str(path), check_same_thread=False)
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS operations (
                    operation_id   TEXT    NOT NULL PRIMARY KEY,
                    map_id         TEXT    NOT NULL,
                    sequence       INTEGER NOT NULL,
                    entity_id      TEXT    NOT NULL,
                    kind           TEXT    NOT NULL,
                    conflict       INTEGER NOT NULL,
                    status         TEXT    NOT NULL,
                    rolled_back_at REAL,
                    record_data    BLOB    NOT NULL,
                    UNIQUE (map_id, sequence)
                );
                CREATE INDEX IF NOT EXISTS operations_entity
                    ON operations (map_id, entity_id, sequence);
                CREATE TABLE IF NOT EXISTS sequences (
                    map_id TEXT    NOT NULL PRIMARY KEY,
                    value  INTEGER NOT NULL
                );
                CREATE TABLE IF NOT EXISTS snapshots (
                    map_id     TEXT    NOT NULL PRIMARY KEY,
                    sequence   INTEGER NOT NULL,
                    state_data BLOB    NOT NULL,
                    timestamp  REAL    NOT NULL
                );
                """
            )
        except sqlite3.Error as exc:
            msg = f"Cannot open operation log at {path}"
            raise StorageError(msg) from exc

    async def _run[T](self, fn: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(fn, *args)
        except sqlite3.Error as exc:
            logger.exception("Operation log call %s failed", fn.__name__)
            msg = f"Operation log call {fn.__name__} failed: {exc}"
            raise StorageError(msg) from exc

    @staticmethod
    def _record(row: tuple[bytes, str, float | None]) -> OperationRecord:
        data = _unpack(row[0])
        data["status"] = row[1]
        data["rolled_back_at"] = row[2]
        return OperationRecord.from_dict(data)

    async def next_sequence(self, map_id: str) -> int:
        return await self._run(self._next_sequence_sync, map_id)

    def _next_sequence_sync(self, map_id: str) -> int:
        with self._lock:
            self._conn.execute(
                "INSERT INTO sequences (map_id, value) VALUES (?, 1) "
                "ON CONFLICT (map_id) DO UPDATE SET value = value + 1",
                (map_id,),
            )
            row = self._conn.execute(
                "SELECT value FROM sequences WHERE map_id = ?", (map_id,)
            ).fetchone()
            self._conn.commit()
            return row[0]

    async def append(self, record: OperationRecord) -> None:
        await self._run(self._append_sync, record)

    def _append_sync(self, record: OperationRecord) -> None:
        row = (
            record.operation_id,
            record.map_id,
            record.sequence,
            record.entity_id,
            record.kind.value,
            int(record.conflict),
            record.status.value,
            record.rolled_back_at,
            _pack(record.to_dict()),
        )
        with self._lock:
            self._conn.execute(
                "INSERT INTO operations (operation_id, map_id, sequence, entity_id, kind, "
                "conflict, status, rolled_back_at, record_data) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                row,
            )
            self._conn.commit()

    async def get(self, operation_id: str) -> OperationRecord | None:
        return await self._run(self._get_sync, operation_id)

    def _get_sync(self, operation_id: str) -> OperationRecord | None:
        row = self._conn.execute(
            f"SELECT {_RECORD_COLUMNS} FROM operations WHERE operation_id = ?",
            (operation_id,),
        ).fetchone()
        return self._record(row) if row is not None else None

    async def find_by_map(
        self, map_id: str, limit: int = 100, offset: int = 0
    ) -> list[OperationRecord]:
        return await self._run(self._select_sync,
            f"SELECT {_RECORD_COLUMNS} FROM operations WHERE map_id = ? "
            "ORDER BY sequence DESC LIMIT ? OFFSET ?",
            (map_id, limit, offset),
        )

    async def find_since(self, map_id: str, sequence: int) -> list[OperationRecord]:
        return await self._run(self._select_sync,
            f"SELECT {_RECORD_COLUMNS} FROM operations WHERE map_id = ? AND sequence > ? "
            "ORDER BY sequence",
            (map_id, sequence),
        )

    async def find_conflicts(self, map_id: str, limit: int = 100) -> list[OperationRecord]:
        return await self._run(self._select_sync,
            f"SELECT {_RECORD_COLUMNS} FROM operations WHERE map_id = ? AND conflict = 1 "
            "ORDER BY sequence DESC LIMIT ?",
            (map_id, limit),
        )

    async def find_by_entity(self, map_id: str, entity_id: str) -> list[OperationRecord]:
        return await self._run(self._select_sync,
            f"SELECT {_RECORD_COLUMNS} FROM operations WHERE map_id = ? AND entity_id = ? "
            "ORDER BY sequence",
            (map_id, entity_id),
        )

    def _select_sync(self, query: str, params: tuple[Any, ...]) -> list[OperationRecord]:
        return [self._record(row) for row in self._conn.execute(query, params)]

    async def mark_rolled_back(
        self, operation_id: str, at: float
    ) -> OperationRecord | None:
        return await self._run(self._mark_rolled_back_sync, operation_id, at)

    def _mark_rolled_back_sync(self, operation_id: str, at: float) -> OperationRecord | None:
        record = self._get_sync(operation_id)
        if record is None:
            return None
        with self._lock:
            self._conn.execute(
                "UPDATE operations SET status = ?, rolled_back_at = ? WHERE operation_id = ?",
                (OperationStatus.rolled_back.value, at, operation_id),
            )
            self._conn.commit()
        return replace(record, status=OperationStatus.rolled_back, rolled_back_at=at)

    async def summarize(self, map_id: str) -> OperationStats:
        rows = await self._run(self._summarize_sync, map_id)
        return _stats(rows)

    def _summarize_sync(self, map_id: str) -> list[tuple[OperationKind, int, int, int]]:
        cursor = self._conn.execute(
            "SELECT kind, COUNT(*), SUM(conflict), SUM(status = ?) FROM operations "
            "WHERE map_id = ? GROUP BY kind",
            (OperationStatus.rolled_back.value, map_id),
        )
        return [
            (OperationKind(kind), count, conflicts or 0, rolled_back or 0)
            for kind, count, conflicts, rolled_back in cursor
        ]

    async def save_snapshot(self, snapshot: MapSnapshot) -> None:
        await self._run(self._save_snapshot_sync, snapshot)

    def _save_snapshot_sync(self, snapshot: MapSnapshot) -> None:
        state_data = _pack(snapshot.state)
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO snapshots (map_id, sequence, state_data, timestamp) "
                "VALUES (?, ?, ?, ?)",
                (snapshot.map_id, snapshot.sequence, state_data, snapshot.timestamp),
            )
            self._conn.commit()

    async def load_snapshot(self, map_id: str) -> MapSnapshot | None:
        return await self._run(self._load_snapshot_sync, map_id)

    def _load_snapshot_sync(self, map_id: str) -> MapSnapshot | None:
        row = self._conn.execute(
            "SELECT sequence, state_data, timestamp FROM snapshots WHERE map_id = ?",
            (map_id,),
        ).fetchone()
        if row is None:
            return None
        return MapSnapshot(
            map_id=map_id,
            sequence=row[0],
            state=_unpack(row[1]),
            timestamp=row[2],
        )

    def close(self) -> None:
        """Close the underlying SQLite connection."""
        self._conn.close()


def open_operation_log(config: JournalConfig) -> OperationLog:
    match config.backend:
        case "memory":
            return InMemoryOperationLog()
        case "sqlite":
            return SqliteOperationLog(config.path)
