"""Rolling log of recorded outcome events, used for task history summaries."""

import bisect
import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

import structlog

from db import wal_connect
from shared_types import Outcome

from .models import EventRecord

logger = structlog.get_logger()


def _epoch(dt: datetime) -> float:
    # Naive datetimes are treated as local time, aware ones are exact.
    return dt.timestamp()


def _record_epoch(record: EventRecord) -> float:
    return _epoch(record.timestamp)


class EventLog(ABC):
    @abstractmethod
    def append(self, record: EventRecord) -> None:
        """Persist one event record."""

    @abstractmethod
    def list_since(self, user_id: str, since: Optional[datetime]) -> list[EventRecord]:
        """Events at or after `since` (all events when None), oldest first."""

    @abstractmethod
    def prune_before(self, cutoff: datetime) -> int:
        """Drop events older than cutoff (all users). Returns count deleted."""

    def list_recent(
        self,
        user_id: str,
        limit: int = 20,
        days: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> list[EventRecord]:
        """Most recent events first, optionally within a lookback window."""
        since = None
        if days is not None:
            since = (now or datetime.now()) - timedelta(days=days)
        records = self.list_since(user_id, since)
        records.sort(key=lambda r: _epoch(r.timestamp), reverse=True)
        return records[:limit]

    @abstractmethod
    def has_completion_since(
        self, user_id: str, since: datetime, until: Optional[datetime] = None
    ) -> bool:
        """True if a completed event falls in [since, until).

        No upper bound when until is None.
        """


class InMemoryEventLog(EventLog):
    """Per-user lists kept in timestamp order (ties in arrival order)."""

    def __init__(self):
        self._records: dict[str, list[EventRecord]] = {}
        self._lock = threading.Lock()

    def append(self, record):
        with self._lock:
            records = self._records.setdefault(record.user_id, [])
            bisect.insort_right(records, record, key=_record_epoch)

    def list_since(self, user_id, since):
        with self._lock:
            records = self._records.get(user_id, [])
            start = 0 if since is None else bisect.bisect_left(
                records, _epoch(since), key=_record_epoch
            )
            return records[start:]

    def has_completion_since(self, user_id, since, until=None):
        lower = _epoch(since)
        with self._lock:
            records = self._records.get(user_id, [])
            end = len(records) if until is None else bisect.bisect_left(
                records, _epoch(until), key=_record_epoch
            )
            # Walk back from the upper bound, stopping at the cutoff
            for i in range(end - 1, -1, -1):
                record = records[i]
                if _record_epoch(record) < lower:
                    break
                if record.outcome == Outcome.COMPLETED:
                    return True
        return False

    def prune_before(self, cutoff):
        threshold = _epoch(cutoff)
        removed = 0
        with self._lock:
            for user_id, records in self._records.items():
                kept = [r for r in records if _epoch(r.timestamp) >= threshold]
                removed += len(records) - len(kept)
                self._records[user_id] = kept
        return removed


class SQLiteEventLog(EventLog):
    """SQLite persistence for outcome events — shares the patterns database."""

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_tables()

    def _init_tables(self):
        with wal_connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS outcome_events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    activity_id TEXT NOT NULL,
                    completion_id TEXT,
                    outcome TEXT NOT NULL
                        CHECK(outcome IN ('completed','skipped','failed')),
                    event_timestamp TEXT NOT NULL,
                    event_epoch REAL NOT NULL,
                    xp_awarded REAL NOT NULL DEFAULT 0,
                    sentiment REAL NOT NULL DEFAULT 0,
                    mood TEXT,
                    keywords TEXT DEFAULT '[]',
                    time_of_day TEXT,
                    day_of_week TEXT,
                    source_labels TEXT DEFAULT '[]',
                    domain_tags TEXT DEFAULT '[]',
                    previous_completion INTEGER NOT NULL DEFAULT 0,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_user_time "
                "ON outcome_events(user_id, event_epoch)"
            )

    def append(self, record):
        with wal_connect(self.db_path) as conn:
            conn.execute(
                """INSERT INTO outcome_events
                   (user_id, activity_id, completion_id, outcome, event_timestamp,
                    event_epoch, xp_awarded, sentiment, mood, keywords, time_of_day,
                    day_of_week, source_labels, domain_tags, previous_completion)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    record.user_id,
                    record.activity_id,
                    record.completion_id,
                    str(record.outcome),
                    record.timestamp.isoformat(),
                    _epoch(record.timestamp),
                    record.xp_awarded,
                    record.sentiment,
                    record.mood,
                    json.dumps(list(record.keywords)),
                    record.time_of_day,
                    record.day_of_week,
                    json.dumps(list(record.source_labels)),
                    json.dumps(list(record.domain_tags)),
                    int(record.previous_completion),
                ),
            )

    def list_since(self, user_id, since):
        sql = "SELECT * FROM outcome_events WHERE user_id = ?"
        params: list = [user_id]
        if since is not None:
            sql += " AND event_epoch >= ?"
            params.append(_epoch(since))
        sql += " ORDER BY event_epoch ASC, id ASC"
        conn = wal_connect(self.db_path, row_factory=True)
        try:
            rows = conn.execute(sql, params).fetchall()
        finally:
            conn.close()
        return [self._row_to_record(r) for r in rows]

    def has_completion_since(self, user_id, since, until=None):
        sql = (
            "SELECT 1 FROM outcome_events "
            "WHERE user_id = ? AND outcome = ? AND event_epoch >= ?"
        )
        params: list = [user_id, str(Outcome.COMPLETED), _epoch(since)]
        if until is not None:
            sql += " AND event_epoch < ?"
            params.append(_epoch(until))
        conn = wal_connect(self.db_path)
        try:
            return conn.execute(sql + " LIMIT 1", params).fetchone() is not None
        finally:
            conn.close()

    def prune_before(self, cutoff):
        with wal_connect(self.db_path) as conn:
            cur = conn.execute(
                "DELETE FROM outcome_events WHERE event_epoch < ?", (_epoch(cutoff),)
            )
            removed = cur.rowcount
        logger.info("outcome_events_pruned", removed=removed, cutoff=cutoff.isoformat())
        return removed

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> EventRecord:
        d = dict(row)
        return EventRecord(
            user_id=d["user_id"],
            activity_id=d["activity_id"],
            completion_id=d.get("completion_id"),
            outcome=Outcome(d["outcome"]),
            timestamp=datetime.fromisoformat(d["event_timestamp"]),
            xp_awarded=d["xp_awarded"],
            sentiment=d["sentiment"],
            mood=d.get("mood"),
            keywords=tuple(json.loads(d.get("keywords") or "[]")),
            time_of_day=d.get("time_of_day") or "",
            day_of_week=d.get("day_of_week") or "",
            source_labels=tuple(json.loads(d.get("source_labels") or "[]")),
            domain_tags=tuple(json.loads(d.get("domain_tags") or "[]")),
            previous_completion=bool(d["previous_completion"]),
        )
