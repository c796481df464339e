"""Persistent job registry for jr.

SQLite-backed store of every job launched through ``jr run``. Survives
across sessions so ``jr list`` always shows job history, and maps the
short integer ids users type onto the systemd unit names that actually
identify the jobs.

The store is an explicitly constructed object with an ``open()`` /
``close()`` lifecycle; the CLI opens one per command. All database
methods are async (via ``aiosqlite``) so the attach session's log
follower keeps running while the registry is touched.
"""

from __future__ import annotations

import json
import re
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import aiosqlite

from jobrunner.core.errors import JobConflictError, JobNotFoundError
from jobrunner.core.logging import get_logger
from jobrunner.utils.time import from_db_timestamp, to_db_timestamp, utc_now

_logger = get_logger("store")

_INTEGER_TOKEN = re.compile(r"-?\d+")

# SQLite INTEGER is a signed 64-bit value; no row can have an id outside it.
_MIN_ID = -(2**63)
_MAX_ID = 2**63 - 1

# Newest first; ids break ties between rows created in the same instant.
_ORDER = "ORDER BY created_at DESC, id DESC"


@dataclass
class JobRecord:
    """A single job's registry entry."""

    id: int
    created_at: datetime
    name: str
    unit: str
    cwd: str
    argv: list[str]
    env: dict[str, str] | None = None
    properties: dict[str, str] | None = None
    host: str | None = None
    user: str | None = None
    notes: str | None = None
    last_known_state: str | None = None
    last_state_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize for ``--json`` output."""
        result: dict[str, Any] = {
            "id": self.id,
            "created": self.created_at.isoformat(),
            "name": self.name,
            "unit": self.unit,
            "cwd": self.cwd,
            "argv": list(self.argv),
        }
        if self.env is not None:
            result["env"] = dict(self.env)
        if self.properties is not None:
            result["properties"] = dict(self.properties)
        if self.host:
            result["host"] = self.host
        if self.user:
            result["user"] = self.user
        if self.notes:
            result["notes"] = self.notes
        if self.last_known_state:
            result["last_known_state"] = self.last_known_state
            if self.last_state_at is not None:
                result["last_state_at"] = self.last_state_at.isoformat()
        return result


class JobStore:
    """Async SQLite-backed job registry.

    Usage::

        store = JobStore(db_path)
        await store.open()   # creates tables, sets WAL mode
        ...
        await store.close()

    Or as an async context manager::

        async with JobStore(db_path) as store:
            job_id = await store.create(...)

    ``clock`` supplies ``created_at`` and ``last_state_at`` values and the
    reference time for age-based pruning.
    """

    def __init__(
        self,
        db_path: Path,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._db_path = db_path
        self._clock = clock
        self._conn: aiosqlite.Connection | None = None

    @property
    def path(self) -> Path:
        return self._db_path

    async def open(self) -> None:
        """Open the database connection and create tables."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = await aiosqlite.connect(str(self._db_path))
        try:
            conn.row_factory = aiosqlite.Row
            await conn.execute("PRAGMA journal_mode=WAL")
            await self._create_tables(conn)
        except Exception:
            await conn.close()
            raise
        self._conn = conn
        _logger.debug("store.opened", path=str(self._db_path))

    @property
    def _db(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("JobStore not opened; call open() first")
        return self._conn

    @staticmethod
    async def _create_tables(conn: aiosqlite.Connection) -> None:
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS jobs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                created_at TEXT NOT NULL,
                name TEXT NOT NULL,
                unit TEXT UNIQUE NOT NULL,
                cwd TEXT NOT NULL,
                argv_json TEXT NOT NULL,
                env_json TEXT,
                properties_json TEXT,
                host TEXT,
                user TEXT,
                notes TEXT,
                last_known_state TEXT,
                last_state_at TEXT
            )
        """)
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_jobs_created ON jobs (created_at DESC)"
        )
        await conn.execute("CREATE INDEX IF NOT EXISTS idx_jobs_unit ON jobs (unit)")
        await conn.execute("CREATE INDEX IF NOT EXISTS idx_jobs_name ON jobs (name)")
        await conn.commit()

    # ─── Writes ─────────────────────────────────────────────────────────

    async def create(
        self,
        name: str,
        unit: str,
        cwd: str,
        argv: list[str],
        env: dict[str, str] | None = None,
        properties: dict[str, str] | None = None,
        host: str | None = None,
        user: str | None = None,
    ) -> int:
        """Insert a new job and return its id.

        Raises:
            JobConflictError: If ``unit`` is already registered. The store
                is left unchanged.
        """
        try:
            cursor = await self._db.execute(
                """
                INSERT INTO jobs
                    (created_at, name, unit, cwd, argv_json, env_json,
                     properties_json, host, user)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    to_db_timestamp(self._clock()),
                    name,
                    unit,
                    cwd,
                    json.dumps(list(argv)),
                    json.dumps(env) if env is not None else None,
                    json.dumps(properties) if properties is not None else None,
                    host or None,
                    user or None,
                ),
            )
        except sqlite3.IntegrityError as e:
            await self._db.rollback()
            _logger.error("store.unit_conflict", unit=unit)
            raise JobConflictError(unit) from e
        await self._db.commit()

        job_id = cursor.lastrowid
        if job_id is None:
            raise RuntimeError("INSERT did not produce a row id")
        _logger.info("store.job_created", job_id=job_id, unit=unit, name=name)
        return job_id

    async def update_state(self, job_id: int, state: str) -> None:
        """Overwrite the cached state and stamp it with the current time.

        Raises:
            JobNotFoundError: If no job has this id.
        """
        cursor = await self._db.execute(
            "UPDATE jobs SET last_known_state = ?, last_state_at = ? WHERE id = ?",
            (state, to_db_timestamp(self._clock()), job_id),
        )
        await self._db.commit()
        if cursor.rowcount == 0:
            raise JobNotFoundError(job_id)

    async def set_notes(self, job_id: int, notes: str | None) -> None:
        """Replace a job's free-text notes.

        Raises:
            JobNotFoundError: If no job has this id.
        """
        cursor = await self._db.execute(
            "UPDATE jobs SET notes = ? WHERE id = ?", (notes, job_id)
        )
        await self._db.commit()
        if cursor.rowcount == 0:
            raise JobNotFoundError(job_id)

    async def delete(self, job_id: int) -> bool:
        """Remove a job. Returns False if it did not exist."""
        cursor = await self._db.execute("DELETE FROM jobs WHERE id = ?", (job_id,))
        await self._db.commit()
        return cursor.rowcount > 0

    async def prune(
        self,
        keep: int = 0,
        older_than: timedelta | None = None,
        failed_only: bool = False,
    ) -> int:
        """Delete jobs matching *all* active retention filters.

        Args:
            keep: When > 0, the ``keep`` most recently created jobs are
                never deleted. Computed over the whole table, not over the
                rows the other filters select.
            older_than: When a positive duration, only jobs created before
                ``now - older_than`` are deleted.
            failed_only: Only delete jobs whose cached state is ``failed``.

        Returns:
            Number of deleted rows. With no active filter nothing is
            deleted and 0 is returned.
        """
        conditions: list[str] = []
        params: list[Any] = []

        if keep > 0:
            conditions.append(f"id NOT IN (SELECT id FROM jobs {_ORDER} LIMIT ?)")
            params.append(keep)

        if older_than is not None and older_than > timedelta(0):
            try:
                cutoff = self._clock() - older_than
            except OverflowError:
                # The cutoff precedes every representable date: no job is that old.
                return 0
            conditions.append("created_at < ?")
            params.append(to_db_timestamp(cutoff))

        if failed_only:
            conditions.append("last_known_state = 'failed'")

        if not conditions:
            return 0

        sql = "DELETE FROM jobs WHERE " + " AND ".join(conditions)
        cursor = await self._db.execute(sql, params)
        await self._db.commit()
        count = cursor.rowcount
        _logger.info(
            "store.pruned",
            deleted=count,
            keep=keep,
            older_than_seconds=older_than.total_seconds() if older_than else None,
            failed_only=failed_only,
        )
        return count

    # ─── Reads ──────────────────────────────────────────────────────────

    async def get_by_id(self, job_id: int) -> JobRecord | None:
        if not _MIN_ID <= job_id <= _MAX_ID:
            return None
        cursor = await self._db.execute("SELECT * FROM jobs WHERE id = ?", (job_id,))
        row = await cursor.fetchone()
        return self._row_to_record(row) if row is not None else None

    async def get_by_unit(self, unit: str) -> JobRecord | None:
        cursor = await self._db.execute("SELECT * FROM jobs WHERE unit = ?", (unit,))
        row = await cursor.fetchone()
        return self._row_to_record(row) if row is not None else None

    async def resolve(self, token: str) -> JobRecord | None:
        """Find the job a user-supplied reference points at.

        A token that is entirely an integer is an id; anything else is a
        unit name. There is no fallback between the two, so a unit that
        happens to look numeric can only be reached by id.
        """
        if _INTEGER_TOKEN.fullmatch(token):
            return await self.get_by_id(int(token))
        return await self.get_by_unit(token)

    async def list(self, limit: int = 10, all: bool = False) -> list[JobRecord]:  # noqa: A002
        """List jobs, most recent first; ``all`` disables the limit."""
        if all:
            cursor = await self._db.execute(f"SELECT * FROM jobs {_ORDER}")
        else:
            cursor = await self._db.execute(
                f"SELECT * FROM jobs {_ORDER} LIMIT ?", (limit,)
            )
        rows = await cursor.fetchall()
        return [self._row_to_record(r) for r in rows]

    async def list_by_name_prefix(
        self,
        prefix: str,
        limit: int | None = 10,
    ) -> list[JobRecord]:
        """List jobs whose name starts with ``prefix`` (case-sensitive).

        Compares with ``substr`` rather than ``LIKE`` so that ``%`` and
        ``_`` in the prefix are literal and case is significant.
        """
        sql = f"SELECT * FROM jobs WHERE substr(name, 1, ?) = ? {_ORDER}"
        params: list[Any] = [len(prefix), prefix]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        cursor = await self._db.execute(sql, params)
        rows = await cursor.fetchall()
        return [self._row_to_record(r) for r in rows]

    async def count(self) -> int:
        cursor = await self._db.execute("SELECT COUNT(*) FROM jobs")
        row = await cursor.fetchone()
        return int(row[0]) if row is not None else 0

    # ─── Lifecycle ──────────────────────────────────────────────────────

    async def close(self) -> None:
        """Close the database connection. Safe to call twice."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def __aenter__(self) -> JobStore:
        await self.open()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    @staticmethod
    def _row_to_record(row: aiosqlite.Row) -> JobRecord:
        created_at = from_db_timestamp(row["created_at"])
        assert created_at is not None  # NOT NULL column
        return JobRecord(
            id=row["id"],
            created_at=created_at,
            name=row["name"],
            unit=row["unit"],
            cwd=row["cwd"],
            argv=json.loads(row["argv_json"]),
            env=json.loads(row["env_json"]) if row["env_json"] else None,
            properties=(
                json.loads(row["properties_json"]) if row["properties_json"] else None
            ),
            host=row["host"],
            user=row["user"],
            notes=row["notes"],
            last_known_state=row["last_known_state"],
            last_state_at=from_db_timestamp(row["last_state_at"]),
        )
