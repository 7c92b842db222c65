from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
from pathlib import Path
from typing import Dict, List, Optional

from ..engines.base import CrawlTask, Role

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS requests (
    url TEXT PRIMARY KEY,
    role TEXT NOT NULL,
    stop_marker TEXT,
    position INTEGER NOT NULL,
    state TEXT NOT NULL DEFAULT 'pending',
    retry_count INTEGER NOT NULL DEFAULT 0,
    errors TEXT NOT NULL DEFAULT '[]'
);
CREATE INDEX IF NOT EXISTS requests_state_position ON requests (state, position);
"""

PENDING = "pending"
IN_PROGRESS = "in_progress"
HANDLED = "handled"
FAILED = "failed"


class RequestQueue:
    """
    Durable, URL-deduplicated work queue backed by sqlite.

    Rows are served in ``position`` order. Forefront inserts take a position
    below the current minimum, normal inserts one above the maximum. Tasks left
    in progress by an interrupted run are handed out again on the next open.
    """

    def __init__(self, path: str | os.PathLike[str], *, max_retries: int = 1) -> None:
        self.path = str(path)
        self.max_retries = max_retries
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        with self._conn:
            self._conn.executescript(_SCHEMA)
            reclaimed = self._conn.execute(
                "UPDATE requests SET state = ? WHERE state = ?", (PENDING, IN_PROGRESS)
            ).rowcount
        if reclaimed:
            logger.info("Re-queued %s in-flight requests from a previous run", reclaimed)

    # ---- Writes ----

    def add(self, task: CrawlTask, *, forefront: bool = False) -> bool:
        """Queue a task. Returns False when the URL is already known."""
        with self._lock, self._conn:
            low, high = self._conn.execute("SELECT MIN(position), MAX(position) FROM requests").fetchone()
            if low is None:
                position = 0
            else:
                position = low - 1 if forefront else high + 1
            cur = self._conn.execute(
                "INSERT OR IGNORE INTO requests (url, role, stop_marker, position) VALUES (?, ?, ?, ?)",
                (task.url, task.role.value, task.stop_marker, position),
            )
            return cur.rowcount == 1

    def fetch_next(self) -> Optional[CrawlTask]:
        """Hand out the next pending task and mark it in progress."""
        with self._lock, self._conn:
            row = self._conn.execute(
                "SELECT * FROM requests WHERE state = ? ORDER BY position LIMIT 1", (PENDING,)
            ).fetchone()
            if row is None:
                return None
            self._conn.execute("UPDATE requests SET state = ? WHERE url = ?", (IN_PROGRESS, row["url"]))
            return _task_from_row(row)

    def mark_handled(self, url: str) -> None:
        with self._lock, self._conn:
            self._conn.execute("UPDATE requests SET state = ? WHERE url = ?", (HANDLED, url))

    def reclaim(self, url: str, error: str) -> bool:
        """
        Record a failed attempt. The task goes back to the end of the queue
        while retries remain; returns False once it has been marked failed.
        """
        with self._lock, self._conn:
            row = self._conn.execute(
                "SELECT retry_count, errors FROM requests WHERE url = ?", (url,)
            ).fetchone()
            if row is None:
                raise KeyError(url)
            errors = json.loads(row["errors"])
            errors.append(error)
            retry_count = row["retry_count"] + 1
            if retry_count > self.max_retries:
                self._conn.execute(
                    "UPDATE requests SET state = ?, retry_count = ?, errors = ? WHERE url = ?",
                    (FAILED, retry_count, json.dumps(errors), url),
                )
                return False
            (high,) = self._conn.execute("SELECT MAX(position) FROM requests").fetchone()
            self._conn.execute(
                "UPDATE requests SET state = ?, retry_count = ?, errors = ?, position = ? WHERE url = ?",
                (PENDING, retry_count, json.dumps(errors), high + 1, url),
            )
            return True

    # ---- Reads ----

    def tasks(self, role: Optional[Role] = None) -> List[CrawlTask]:
        """All known tasks in queue order, optionally filtered by role."""
        query = "SELECT * FROM requests"
        params: tuple = ()
        if role is not None:
            query += " WHERE role = ?"
            params = (role.value,)
        with self._lock:
            rows = self._conn.execute(query + " ORDER BY position", params).fetchall()
        return [_task_from_row(r) for r in rows]

    def pending_count(self) -> int:
        return self._count(PENDING)

    def in_progress_count(self) -> int:
        return self._count(IN_PROGRESS)

    def is_finished(self) -> bool:
        return self.pending_count() == 0 and self.in_progress_count() == 0

    def stats(self) -> Dict[str, int]:
        with self._lock:
            rows = self._conn.execute("SELECT state, COUNT(*) AS n FROM requests GROUP BY state").fetchall()
        counts = {PENDING: 0, IN_PROGRESS: 0, HANDLED: 0, FAILED: 0}
        counts.update({r["state"]: r["n"] for r in rows})
        return counts

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _count(self, state: str) -> int:
        with self._lock:
            (n,) = self._conn.execute("SELECT COUNT(*) FROM requests WHERE state = ?", (state,)).fetchone()
        return n


def _task_from_row(row: sqlite3.Row) -> CrawlTask:
    return CrawlTask(
        url=row["url"],
        role=Role(row["role"]),
        stop_marker=row["stop_marker"],
        retry_count=row["retry_count"],
        error_messages=tuple(json.loads(row["errors"])),
    )
