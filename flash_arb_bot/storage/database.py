"""
SQLite database for persistent storage.
Stores settlement records and bot state for restarts.
"""

import json
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from ..exec.submission import SettlementRecord


class Database:
    """
    SQLite database for arbitrage bot persistence.

    Tables:
    - settlements: One row per execution attempt
    - bot_state: Bot state for restarts
    """

    def __init__(self, db_path: str = "flash_arb.db"):
        self.db_path = Path(db_path)
        self._init_db()

    @contextmanager
    def _get_conn(self) -> Generator[sqlite3.Connection, None, None]:
        """Get database connection with context manager."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._get_conn() as conn:
            cursor = conn.cursor()

            # Amounts are stored as TEXT; base-unit integers overflow SQLite INTEGER
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS settlements (
                    execution_id TEXT PRIMARY KEY,
                    opportunity_key TEXT NOT NULL,
                    route TEXT NOT NULL,
                    status TEXT NOT NULL,
                    succeeded INTEGER NOT NULL,
                    realized_profit TEXT DEFAULT '0',
                    gas_spent TEXT DEFAULT '0',
                    tx_reference TEXT,
                    check_name TEXT,
                    error TEXT,
                    started_at REAL NOT NULL,
                    completed_at REAL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS bot_state (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at REAL DEFAULT (strftime('%s', 'now'))
                )
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_settlements_status
                ON settlements(status)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_settlements_key
                ON settlements(opportunity_key)
            """)

    # === Settlement Operations ===

    def save_settlement(self, record: "SettlementRecord") -> None:
        """Save a terminal settlement record."""
        with self._get_conn() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT OR REPLACE INTO settlements (
                    execution_id, opportunity_key, route, status, succeeded,
                    realized_profit, gas_spent, tx_reference, check_name,
                    error, started_at, completed_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                record.execution_id,
                record.opportunity_key,
                record.route,
                record.status.value,
                int(record.succeeded),
                str(record.realized_profit),
                str(record.gas_spent),
                record.tx_reference,
                record.check_name,
                record.error,
                record.started_at,
                record.completed_at,
            ))

    def get_settlement(self, execution_id: str) -> Optional[dict]:
        """Get a settlement by execution ID."""
        with self._get_conn() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT * FROM settlements WHERE execution_id = ?",
                (execution_id,)
            )
            row = cursor.fetchone()
            return self._row_to_dict(row) if row else None

    def get_recent_settlements(self, limit: int = 50) -> list[dict]:
        """Get recent settlements, newest first."""
        with self._get_conn() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT * FROM settlements ORDER BY started_at DESC LIMIT ?",
                (limit,)
            )
            return [self._row_to_dict(row) for row in cursor.fetchall()]

    def get_settlements_by_key(self, opportunity_key: str) -> list[dict]:
        """Get all settlements for one token pair."""
        with self._get_conn() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT * FROM settlements WHERE opportunity_key = ? ORDER BY started_at",
                (opportunity_key,)
            )
            return [self._row_to_dict(row) for row in cursor.fetchall()]

    def _row_to_dict(self, row: sqlite3.Row) -> dict:
        data = dict(row)
        data["succeeded"] = bool(data["succeeded"])
        data["realized_profit"] = int(data["realized_profit"])
        data["gas_spent"] = int(data["gas_spent"])
        return data

    # === Bot State Operations ===

    def save_state(self, key: str, value: Any) -> None:
        """Save bot state value."""
        with self._get_conn() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT OR REPLACE INTO bot_state (key, value, updated_at)
                VALUES (?, ?, ?)
            """, (key, json.dumps(value), time.time()))

    def get_state(self, key: str, default: Any = None) -> Any:
        """Get bot state value."""
        with self._get_conn() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT value FROM bot_state WHERE key = ?",
                (key,)
            )
            row = cursor.fetchone()
            if row:
                return json.loads(row["value"])
            return default

    def delete_state(self, key: str) -> None:
        """Delete bot state value."""
        with self._get_conn() as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM bot_state WHERE key = ?", (key,))

    # === Utility Operations ===

    def get_total_realized_profit(self) -> int:
        """Sum of realized profit over succeeded settlements."""
        with self._get_conn() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT realized_profit FROM settlements WHERE succeeded = 1"
            )
            # summed in Python to keep integer precision
            return sum(int(row["realized_profit"]) for row in cursor.fetchall())

    def get_statistics(self) -> dict:
        """Get overall statistics."""
        with self._get_conn() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT
                    COUNT(*) as total_settlements,
                    SUM(CASE WHEN succeeded = 1 THEN 1 ELSE 0 END) as succeeded,
                    SUM(CASE WHEN status = 'rejected' THEN 1 ELSE 0 END) as rejected
                FROM settlements
            """)
            stats = dict(cursor.fetchone())

            cursor.execute(
                "SELECT status, COUNT(*) as n FROM settlements GROUP BY status"
            )
            stats["by_status"] = {row["status"]: row["n"] for row in cursor.fetchall()}

        stats["total_realized_profit"] = str(self.get_total_realized_profit())
        return stats
