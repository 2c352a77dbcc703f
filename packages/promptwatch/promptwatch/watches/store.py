"""SQLite-backed persistence for Watch records.

Design:
    - Single aiosqlite connection per store instance
    - All I/O is async
    - JSON serialisation for ``params`` and ``action``
    - No ORM dependency

Watches persist across daemon restarts.  The scheduler never keeps its own
copy of a watch's lifecycle: every decision re-reads the store, and every
status change goes through ``try_transition()``, a single conditional
``UPDATE ... WHERE status = ?``.  Because the connection serialises all
statements, exactly one caller can win a given transition.

Schema
------
One table: ``watches``
    watch_id         TEXT PRIMARY KEY
    trigger          TEXT
    params           TEXT   (JSON list of str)
    action           TEXT   (JSON WatchAction)
    status           TEXT   (WatchStatus.value)
    interval_seconds REAL
    ttl_seconds      REAL
    created_at       REAL
    expires_at       REAL
    last_polled_at   REAL | NULL
    fired_at         REAL | NULL
    finished_at      REAL | NULL   (set by every terminal transition)
    error_count      INTEGER       (consecutive transient trigger errors)
    last_error       TEXT | NULL
    updated_at       REAL

Indices on (status) and (status, expires_at) for the scheduler queries.
"""

from __future__ import annotations

import json
import sqlite3
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Iterable

import aiosqlite

from promptwatch.exceptions import StorageError, ValidationError
from promptwatch.logging import get_logger
from promptwatch.watches.durations import check_seconds
from promptwatch.watches.models import (
    TERMINAL_STATUSES,
    TRIGGER_NAME_RE,
    Watch,
    WatchAction,
    WatchStatus,
)

log = get_logger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS watches (
    watch_id          TEXT PRIMARY KEY,
    trigger           TEXT NOT NULL,
    params            TEXT NOT NULL,
    action            TEXT NOT NULL,
    status            TEXT NOT NULL DEFAULT 'active',
    interval_seconds  REAL NOT NULL,
    ttl_seconds       REAL NOT NULL,
    created_at        REAL NOT NULL,
    expires_at        REAL NOT NULL,
    last_polled_at    REAL,
    fired_at          REAL,
    finished_at       REAL,
    error_count       INTEGER NOT NULL DEFAULT 0,
    last_error        TEXT,
    updated_at        REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_watches_status  ON watches(status);
CREATE INDEX IF NOT EXISTS idx_watches_expires ON watches(status, expires_at);
"""

_COLUMNS = (
    "watch_id, trigger, params, action, status, interval_seconds, ttl_seconds, "
    "created_at, expires_at, last_polled_at, fired_at, finished_at, error_count, "
    "last_error, updated_at"
)

# Columns a transition may set alongside the status change.
_TRANSITION_COLUMNS = frozenset({"fired_at", "last_error", "last_polled_at", "error_count"})


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------


def _row_to_watch(row: sqlite3.Row | tuple[Any, ...]) -> Watch:
    """Reconstruct a Watch from a ``SELECT {_COLUMNS}`` row."""
    params = json.loads(row[2])
    if not isinstance(params, list) or not all(isinstance(p, str) for p in params):
        raise ValueError("params must be a JSON list of strings")
    return Watch(
        watch_id=row[0],
        trigger=row[1],
        params=params,
        action=WatchAction.from_dict(json.loads(row[3])),
        status=WatchStatus(row[4]),
        interval_seconds=float(row[5]),
        ttl_seconds=float(row[6]),
        created_at=float(row[7]),
        expires_at=float(row[8]),
        last_polled_at=row[9],
        fired_at=row[10],
        finished_at=row[11],
        error_count=int(row[12]),
        last_error=row[13],
        updated_at=float(row[14]),
    )


def validate_watch(watch: Watch) -> None:
    """Reject a watch definition before it is persisted."""
    if not watch.trigger or not TRIGGER_NAME_RE.match(watch.trigger):
        raise ValidationError(
            f"Invalid trigger name {watch.trigger!r}: use a bare executable name "
            "(letters, digits, '.', '_', '-')",
            field="trigger",
        )
    if not isinstance(watch.params, list) or not all(isinstance(p, str) for p in watch.params):
        raise ValidationError("params must be a list of strings", field="params")
    if not isinstance(watch.action.prompt_template, str) or not watch.action.prompt_template.strip():
        raise ValidationError("action prompt must be a non-empty string", field="action.prompt")
    check_seconds(watch.interval_seconds, field="interval")
    check_seconds(watch.ttl_seconds, field="ttl")


# ---------------------------------------------------------------------------
# WatchStore
# ---------------------------------------------------------------------------


class WatchStore:
    """Async SQLite store for Watch records.

    Usage::

        store = WatchStore(Path("~/.promptwatch/watches.db"))
        await store.init()

        watch_id = await store.create(watch)
        watch = await store.get(watch_id)
        due = await store.list_due()
        await store.record_poll(watch_id, time.time())
        won = await store.try_transition(watch_id, WatchStatus.ACTIVE, WatchStatus.FIRED)
        purged = await store.purge_terminal(older_than_seconds=7 * 86400)

        await store.close()
    """

    def __init__(self, db_path: Path) -> None:
        self._path = db_path.expanduser()
        self._conn: aiosqlite.Connection | None = None

    # ---------------------------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------------------------

    async def init(self) -> None:
        """Open the database and create tables if needed.

        Raises:
            StorageError: The database cannot be opened.  Fatal at startup.
        """
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = await aiosqlite.connect(str(self._path))
            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._conn.executescript(_SCHEMA)
            await self._conn.commit()
        except (OSError, sqlite3.Error) as exc:
            raise StorageError("init", str(exc)) from exc
        log.info("watch_store_initialized", path=str(self._path))

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    @property
    def path(self) -> Path:
        return self._path

    @asynccontextmanager
    async def _db(self, operation: str) -> AsyncIterator[aiosqlite.Connection]:
        """Yield the open connection, mapping sqlite failures to StorageError."""
        if self._conn is None:
            raise StorageError(operation, "store is not initialised")
        try:
            yield self._conn
        except sqlite3.Error as exc:
            raise StorageError(operation, str(exc)) from exc

    # ---------------------------------------------------------------------------
    # CRUD
    # ---------------------------------------------------------------------------

    async def create(self, watch: Watch) -> str:
        """Persist a new ACTIVE watch and return its id.

        ``status``, ``created_at``, ``expires_at`` and the poll/error fields
        are (re)initialised here; ``expires_at = created_at + ttl`` is fixed
        for the life of the watch.

        Raises:
            ValidationError: interval or ttl is not positive, or the trigger
                name / params / prompt are malformed.
        """
        validate_watch(watch)
        now = time.time()
        watch.status = WatchStatus.ACTIVE
        watch.created_at = now
        watch.updated_at = now
        watch.expires_at = now + watch.ttl_seconds
        watch.last_polled_at = None
        watch.fired_at = None
        watch.finished_at = None
        watch.error_count = 0
        watch.last_error = None

        async with self._db("create") as db:
            await db.execute(
                f"INSERT INTO watches ({_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    watch.watch_id,
                    watch.trigger,
                    json.dumps(watch.params),
                    json.dumps(watch.action.to_dict()),
                    watch.status.value,
                    watch.interval_seconds,
                    watch.ttl_seconds,
                    watch.created_at,
                    watch.expires_at,
                    None,
                    None,
                    None,
                    0,
                    None,
                    watch.updated_at,
                ),
            )
            await db.commit()
        log.info(
            "watch_created",
            watch_id=watch.watch_id,
            trigger=watch.trigger,
            interval_seconds=watch.interval_seconds,
            expires_at=watch.expires_at,
        )
        return watch.watch_id

    async def get(self, watch_id: str) -> Watch | None:
        """Load a watch by ID.  Returns None if not found."""
        rows = await self._select("get", "WHERE watch_id = ?", (watch_id,))
        return rows[0] if rows else None

    async def list_all(self, status: WatchStatus | None = None) -> list[Watch]:
        """Return every watch, newest first, optionally filtered by status."""
        if status is None:
            return await self._select("list_all", "ORDER BY created_at DESC", ())
        return await self._select(
            "list_all", "WHERE status = ? ORDER BY created_at DESC", (status.value,)
        )

    async def list_active(self) -> list[Watch]:
        return await self._select("list_active", "WHERE status = 'active'", ())

    async def list_expired(self, now: float | None = None) -> list[Watch]:
        """Active watches whose ``expires_at`` has passed."""
        now = now if now is not None else time.time()
        return await self._select(
            "list_expired", "WHERE status = 'active' AND expires_at <= ?", (now,)
        )

    async def list_due(self, now: float | None = None) -> list[Watch]:
        """Active, unexpired watches never polled or polled at least ``interval`` ago."""
        now = now if now is not None else time.time()
        return await self._select(
            "list_due",
            "WHERE status = 'active' AND expires_at > ? "
            "AND (last_polled_at IS NULL OR ? - last_polled_at >= interval_seconds) "
            "ORDER BY COALESCE(last_polled_at, 0) ASC",
            (now, now),
        )

    async def count_by_status(self) -> dict[str, int]:
        async with self._db("count_by_status") as db:
            async with db.execute("SELECT status, COUNT(*) FROM watches GROUP BY status") as cursor:
                rows = await cursor.fetchall()
        return {r[0]: r[1] for r in rows}

    # ---------------------------------------------------------------------------
    # Mutations
    # ---------------------------------------------------------------------------

    async def try_transition(
        self,
        watch_id: str,
        from_status: WatchStatus,
        to_status: WatchStatus,
        mutations: dict[str, Any] | None = None,
    ) -> bool:
        """Atomically move *watch_id* from *from_status* to *to_status*.

        Returns False (and changes nothing) when the current status is not
        *from_status* or the watch does not exist.  Terminal targets also
        stamp ``finished_at``.

        Raises:
            ValueError: The transition leaves a terminal status, is a no-op,
                or *mutations* names a column transitions may not touch.
        """
        if from_status in TERMINAL_STATUSES:
            raise ValueError(f"Watches never leave terminal status '{from_status.value}'")
        if from_status is to_status:
            raise ValueError("from_status and to_status must differ")
        mutations = dict(mutations or {})
        unknown = set(mutations) - _TRANSITION_COLUMNS
        if unknown:
            raise ValueError(f"Columns not settable by a transition: {sorted(unknown)}")

        now = time.time()
        assignments = {"status": to_status.value, "updated_at": now, **mutations}
        if to_status in TERMINAL_STATUSES:
            assignments["finished_at"] = now
        set_clause = ", ".join(f"{col} = ?" for col in assignments)

        async with self._db("try_transition") as db:
            cursor = await db.execute(
                f"UPDATE watches SET {set_clause} WHERE watch_id = ? AND status = ?",
                (*assignments.values(), watch_id, from_status.value),
            )
            await db.commit()
        won = cursor.rowcount == 1
        log.debug(
            "watch_transition",
            watch_id=watch_id,
            from_status=from_status.value,
            to_status=to_status.value,
            applied=won,
        )
        return won

    async def record_poll(self, watch_id: str, timestamp: float | None = None) -> None:
        """Unconditionally stamp ``last_polled_at``."""
        ts = timestamp if timestamp is not None else time.time()
        async with self._db("record_poll") as db:
            await db.execute(
                "UPDATE watches SET last_polled_at = ?, updated_at = ? WHERE watch_id = ?",
                (ts, ts, watch_id),
            )
            await db.commit()

    async def record_trigger_error(self, watch_id: str, error: str) -> int:
        """Count one more consecutive transient trigger error on an active watch.

        Returns the new count, or 0 if the watch is no longer active.
        """
        async with self._db("record_trigger_error") as db:
            cursor = await db.execute(
                "UPDATE watches SET error_count = error_count + 1, last_error = ?, updated_at = ? "
                "WHERE watch_id = ? AND status = ?",
                (error, time.time(), watch_id, WatchStatus.ACTIVE.value),
            )
            await db.commit()
            if cursor.rowcount == 0:
                return 0
            async with db.execute(
                "SELECT error_count FROM watches WHERE watch_id = ?", (watch_id,)
            ) as cursor:
                row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def reset_trigger_errors(self, watch_id: str) -> None:
        async with self._db("reset_trigger_errors") as db:
            await db.execute(
                "UPDATE watches SET error_count = 0, updated_at = ? "
                "WHERE watch_id = ? AND error_count != 0",
                (time.time(), watch_id),
            )
            await db.commit()

    async def delete(self, watch_id: str) -> bool:
        """Delete a watch.  Returns True if it existed."""
        async with self._db("delete") as db:
            cursor = await db.execute("DELETE FROM watches WHERE watch_id = ?", (watch_id,))
            await db.commit()
        return cursor.rowcount > 0

    async def purge_terminal(self, older_than_seconds: float) -> int:
        """Delete terminal watches that finished more than *older_than_seconds* ago.

        Returns the number of deleted rows.
        """
        cutoff = time.time() - older_than_seconds
        statuses = [s.value for s in TERMINAL_STATUSES]
        placeholders = ", ".join("?" for _ in statuses)
        async with self._db("purge_terminal") as db:
            cursor = await db.execute(
                f"DELETE FROM watches WHERE status IN ({placeholders}) "
                "AND COALESCE(finished_at, updated_at) < ?",
                (*statuses, cutoff),
            )
            await db.commit()
        return cursor.rowcount

    # ---------------------------------------------------------------------------
    # Internals
    # ---------------------------------------------------------------------------

    async def _select(self, operation: str, where: str, args: Iterable[Any]) -> list[Watch]:
        async with self._db(operation) as db:
            async with db.execute(f"SELECT {_COLUMNS} FROM watches {where}", tuple(args)) as cursor:
                rows = await cursor.fetchall()

        watches: list[Watch] = []
        corrupt: list[str] = []
        for row in rows:
            try:
                watches.append(_row_to_watch(row))
            except (ValueError, KeyError, TypeError) as exc:
                log.error("watch_record_corrupt", watch_id=row[0], error=str(exc))
                corrupt.append(row[0])
        if corrupt:
            await self._quarantine(corrupt)
        return watches

    async def _quarantine(self, watch_ids: list[str]) -> None:
        """Move undecodable ACTIVE records to ERROR so they are never polled."""
        now = time.time()
        async with self._db("quarantine") as db:
            await db.executemany(
                "UPDATE watches SET status = 'error', last_error = ?, finished_at = ?, "
                "updated_at = ? WHERE watch_id = ? AND status = 'active'",
                [("record could not be decoded", now, now, wid) for wid in watch_ids],
            )
            await db.commit()
