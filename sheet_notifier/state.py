from __future__ import annotations

import logging
import sqlite3
import threading
import time
from pathlib import Path
from typing import Tuple

LOGGER = logging.getLogger(__name__)

RATE_LIMIT_KEY = "notifications"


class RateLimitStore:
    """Persist the per-minute notification counter between invocations."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path) if str(path) != ":memory:" else None
        self._lock = threading.Lock()
        if self._path is not None and not self._path.parent.exists():
            self._path.parent.mkdir(parents=True, exist_ok=True)
        # Autocommit mode: transactions are opened explicitly with BEGIN IMMEDIATE
        self._conn = sqlite3.connect(
            str(path), check_same_thread=False, isolation_level=None, timeout=30.0
        )
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS rate_limit_window (
                limit_key TEXT PRIMARY KEY,
                window_start_minute INTEGER NOT NULL,
                count_in_window INTEGER NOT NULL,
                updated_at REAL NOT NULL
            )
            """
        )

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def get_window(self, limit_key: str = RATE_LIMIT_KEY) -> Tuple[int, int] | None:
        """Return (window_start_minute, count_in_window) or None if never written."""

        with self._lock:
            row = self._conn.execute(
                """
                SELECT window_start_minute, count_in_window
                FROM rate_limit_window
                WHERE limit_key = ?
                """,
                (limit_key,),
            ).fetchone()
        if row is None:
            return None
        return int(row["window_start_minute"]), int(row["count_in_window"])

    def try_acquire(
        self,
        minute: int,
        max_per_window: int,
        limit_key: str = RATE_LIMIT_KEY,
    ) -> Tuple[bool, int]:
        """Atomically count one notification in the given minute window.

        A window that started in an earlier minute is reset to zero before the
        limit is evaluated. Returns (allowed, count_after_call); a rejected call
        leaves the counter untouched.
        """

        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                row = self._conn.execute(
                    """
                    SELECT window_start_minute, count_in_window
                    FROM rate_limit_window
                    WHERE limit_key = ?
                    """,
                    (limit_key,),
                ).fetchone()
                count = 0
                if row is not None and int(row["window_start_minute"]) == minute:
                    count = int(row["count_in_window"])

                if count >= max_per_window:
                    self._conn.execute("COMMIT")
                    return False, count

                count += 1
                self._conn.execute(
                    """
                    INSERT INTO rate_limit_window (
                        limit_key,
                        window_start_minute,
                        count_in_window,
                        updated_at
                    ) VALUES (?, ?, ?, ?)
                    ON CONFLICT(limit_key)
                    DO UPDATE SET
                        window_start_minute = excluded.window_start_minute,
                        count_in_window = excluded.count_in_window,
                        updated_at = excluded.updated_at
                    """,
                    (limit_key, minute, count, time.time()),
                )
                self._conn.execute("COMMIT")
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
        return True, count
