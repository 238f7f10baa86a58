"""TradePilot database interface.

SQLite storage for organizations, their subscription plans and the daily
analysis counters that back the usage gate.
"""

from __future__ import annotations

import sqlite3
from contextlib import closing, contextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

ISO_TIMESTAMP_SUFFIX = "Z"
DEFAULT_PLAN = "FREE"
SUBSCRIPTION_ACTIVE = "ACTIVE"


def _utc_now() -> str:
    """Return a UTC timestamp string with second precision."""
    return datetime.now(timezone.utc).replace(microsecond=0, tzinfo=None).isoformat() + ISO_TIMESTAMP_SUFFIX


class TradePilotDatabase:
    """High-level helper for the TradePilot SQLite database."""

    DEFAULT_DB_PATH = Path("database/tradepilot.db")

    def __init__(self, db_path: Optional[Union[str, Path]] = None, auto_initialize: bool = True) -> None:
        path = Path(db_path) if db_path else self.DEFAULT_DB_PATH
        if not path.is_absolute():
            path = Path.cwd() / path
        self.db_path = path
        if auto_initialize:
            self.initialize()

    # ------------------------------------------------------------------
    # Lifecycle helpers
    # ------------------------------------------------------------------
    def initialize(self) -> None:
        """Initialise database directory and ensure schema exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connection() as conn:
            self._apply_pragmas(conn)
            self._create_schema(conn)
            conn.commit()

    def _connect(self, isolation_level: Optional[str] = "DEFERRED") -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=10.0, isolation_level=isolation_level)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        with closing(self._connect()) as conn:
            with conn:
                yield conn

    @staticmethod
    def _apply_pragmas(conn: sqlite3.Connection) -> None:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA foreign_keys=ON")
        conn.execute("PRAGMA temp_store=MEMORY")

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS organizations (
                id TEXT PRIMARY KEY,
                name TEXT,
                plan TEXT NOT NULL DEFAULT 'FREE',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS usage_records (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                organization_id TEXT NOT NULL,
                usage_date TEXT NOT NULL,
                analysis_count INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE(organization_id, usage_date)
            );

            CREATE TABLE IF NOT EXISTS subscriptions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                organization_id TEXT NOT NULL UNIQUE,
                plan TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'ACTIVE',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_usage_org_date ON usage_records(organization_id, usage_date);
            """
        )

    # ------------------------------------------------------------------
    # Organizations and subscriptions
    # ------------------------------------------------------------------
    def upsert_organization(self, organization_id: str, name: Optional[str] = None, plan: str = DEFAULT_PLAN) -> None:
        now = _utc_now()
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO organizations (id, name, plan, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = COALESCE(excluded.name, organizations.name),
                    plan = excluded.plan,
                    updated_at = excluded.updated_at
                """,
                (organization_id, name, plan, now, now),
            )

    def get_organization(self, organization_id: str) -> Optional[Dict[str, Any]]:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM organizations WHERE id = ?", (organization_id,)).fetchone()
        return dict(row) if row else None

    def set_plan(self, organization_id: str, plan: str) -> None:
        """Store a plan on the organization and its subscription in one transaction."""
        now = _utc_now()
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO organizations (id, plan, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET plan = excluded.plan, updated_at = excluded.updated_at
                """,
                (organization_id, plan, now, now),
            )
            conn.execute(
                """
                INSERT INTO subscriptions (organization_id, plan, status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(organization_id) DO UPDATE SET plan = excluded.plan, updated_at = excluded.updated_at
                """,
                (organization_id, plan, SUBSCRIPTION_ACTIVE, now, now),
            )

    def get_subscription(self, organization_id: str) -> Optional[Dict[str, Any]]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM subscriptions WHERE organization_id = ?", (organization_id,)
            ).fetchone()
        return dict(row) if row else None

    # ------------------------------------------------------------------
    # Usage counters
    # ------------------------------------------------------------------
    def get_usage_count(self, organization_id: str, usage_date: date) -> int:
        with self._connection() as conn:
            row = conn.execute(
                """
                SELECT analysis_count FROM usage_records
                WHERE organization_id = ? AND usage_date = ?
                """,
                (organization_id, usage_date.isoformat()),
            ).fetchone()
        return int(row["analysis_count"]) if row else 0

    @staticmethod
    def _increment(conn: sqlite3.Connection, organization_id: str, usage_date: date) -> int:
        now = _utc_now()
        conn.execute(
            """
            INSERT INTO usage_records (organization_id, usage_date, analysis_count, created_at, updated_at)
            VALUES (?, ?, 1, ?, ?)
            ON CONFLICT(organization_id, usage_date) DO UPDATE SET
                analysis_count = usage_records.analysis_count + 1,
                updated_at = excluded.updated_at
            """,
            (organization_id, usage_date.isoformat(), now, now),
        )
        row = conn.execute(
            "SELECT analysis_count FROM usage_records WHERE organization_id = ? AND usage_date = ?",
            (organization_id, usage_date.isoformat()),
        ).fetchone()
        return int(row["analysis_count"])

    def increment_usage(self, organization_id: str, usage_date: date) -> int:
        """Add one analysis to the day's counter and return the new count."""
        with self._connection() as conn:
            return self._increment(conn, organization_id, usage_date)

    def decrement_usage(self, organization_id: str, usage_date: date) -> int:
        """Undo one increment for the day, never going below zero."""
        with self._connection() as conn:
            conn.execute(
                """
                UPDATE usage_records
                SET analysis_count = MAX(analysis_count - 1, 0), updated_at = ?
                WHERE organization_id = ? AND usage_date = ?
                """,
                (_utc_now(), organization_id, usage_date.isoformat()),
            )
        return self.get_usage_count(organization_id, usage_date)

    def try_increment_usage(self, organization_id: str, usage_date: date, limit: int) -> Tuple[bool, int]:
        """Increment only while the counter stays within ``limit``.

        Runs under ``BEGIN IMMEDIATE`` so concurrent callers serialise on the
        write lock. A ``limit`` of -1 means unlimited. Returns whether the
        increment was kept and the resulting count.
        """
        with closing(self._connect(isolation_level=None)) as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                count = self._increment(conn, organization_id, usage_date)
                if limit != -1 and count > limit:
                    conn.execute("ROLLBACK")
                    return False, count - 1
                conn.execute("COMMIT")
                return True, count
            except sqlite3.Error:
                conn.execute("ROLLBACK")
                raise

    def sum_usage_since(self, organization_id: str, since: date) -> int:
        with self._connection() as conn:
            row = conn.execute(
                """
                SELECT COALESCE(SUM(analysis_count), 0) AS total FROM usage_records
                WHERE organization_id = ? AND usage_date >= ?
                """,
                (organization_id, since.isoformat()),
            ).fetchone()
        return int(row["total"])

    def list_usage(self, organization_id: str, since: Optional[date] = None) -> List[Dict[str, Any]]:
        query = "SELECT usage_date, analysis_count FROM usage_records WHERE organization_id = ?"
        params: List[Any] = [organization_id]
        if since is not None:
            query += " AND usage_date >= ?"
            params.append(since.isoformat())
        query += " ORDER BY usage_date DESC"
        with self._connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [dict(row) for row in rows]
