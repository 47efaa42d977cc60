"""Pattern aggregate persistence — per-key compare-and-swap with invariant checks."""

import copy
import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Optional

import structlog

from db import wal_connect
from shared_types import PatternStrength, PatternType

from .errors import ConcurrencyConflict, InvariantViolation
from .models import CONFIDENCE_SATURATION, PatternAggregate, compute_confidence, strength_for

logger = structlog.get_logger()

_TOLERANCE = 1e-9


def check_invariants(
    aggregate: PatternAggregate,
    previous: Optional[PatternAggregate] = None,
    confidence_saturation: int = CONFIDENCE_SATURATION,
) -> list[str]:
    """Return a list of broken invariants (empty when the aggregate is sound)."""
    problems = []
    if not isinstance(aggregate.pattern_type, PatternType):
        problems.append(f"unknown pattern_type {aggregate.pattern_type!r}")
    if not aggregate.pattern_key:
        problems.append("empty pattern_key")
    if aggregate.total_occurrences < 1:
        problems.append(f"total_occurrences={aggregate.total_occurrences} < 1")
    if aggregate.successful_count < 0 or aggregate.failed_count < 0:
        problems.append("negative outcome count")
    if aggregate.successful_count + aggregate.failed_count != aggregate.total_occurrences:
        problems.append(
            f"successful({aggregate.successful_count}) + failed({aggregate.failed_count}) "
            f"!= total({aggregate.total_occurrences})"
        )
    if aggregate.average_xp < -_TOLERANCE:
        problems.append(f"average_xp={aggregate.average_xp} < 0")
    if not -1 - _TOLERANCE <= aggregate.average_sentiment <= 1 + _TOLERANCE:
        problems.append(f"average_sentiment={aggregate.average_sentiment} outside [-1, 1]")
    if not 0 <= aggregate.confidence <= 1:
        problems.append(f"confidence={aggregate.confidence} outside [0, 1]")
    elif aggregate.total_occurrences >= 1:
        expected = compute_confidence(aggregate.total_occurrences, confidence_saturation)
        if abs(aggregate.confidence - expected) > _TOLERANCE:
            problems.append(f"stale confidence {aggregate.confidence}, expected {expected}")
        expected_strength = strength_for(aggregate.success_rate)
        if aggregate.strength != expected_strength:
            problems.append(f"stale strength {aggregate.strength}, expected {expected_strength}")

    if previous is not None:
        if aggregate.total_occurrences < previous.total_occurrences:
            problems.append("total_occurrences decreased")
        if aggregate.successful_count < previous.successful_count:
            problems.append("successful_count decreased")
        if aggregate.failed_count < previous.failed_count:
            problems.append("failed_count decreased")
    return problems


class PatternStore(ABC):
    """Durable map of (user_id, pattern_type, pattern_key) -> PatternAggregate.

    Writers use ``upsert`` as a compare-and-swap on ``version``: pass the
    version that was read (0 for a key that did not exist). A stale version
    raises ConcurrencyConflict and leaves the store unchanged. ``upsert_many``
    applies several such writes as one unit: all land or none do.
    """

    def __init__(self, confidence_saturation: int = CONFIDENCE_SATURATION):
        self.confidence_saturation = confidence_saturation

    @abstractmethod
    def get(
        self, user_id: str, pattern_type: PatternType, pattern_key: str
    ) -> Optional[PatternAggregate]:
        """Return the aggregate, or None when nothing was observed yet."""

    def upsert(self, aggregate: PatternAggregate, expected_version: int) -> PatternAggregate:
        """Write the aggregate if the stored version still equals expected_version."""
        return self.upsert_many([(aggregate, expected_version)])[0]

    @abstractmethod
    def upsert_many(
        self, items: list[tuple[PatternAggregate, int]]
    ) -> list[PatternAggregate]:
        """Compare-and-swap every (aggregate, expected_version) pair atomically.

        Any stale version raises ConcurrencyConflict and any broken invariant
        raises InvariantViolation; in both cases no key is written.
        """

    @abstractmethod
    def list_for_user(
        self, user_id: str, pattern_type: Optional[PatternType] = None
    ) -> list[PatternAggregate]:
        """All aggregates for a user, ordered by type then key."""

    @abstractmethod
    def set_curation(
        self,
        user_id: str,
        pattern_type: PatternType,
        pattern_key: str,
        should_avoid: Optional[bool] = None,
        recommendation: Optional[str] = None,
    ) -> Optional[PatternAggregate]:
        """Update curator fields. Returns None for an unknown key."""

    def list_avoided(self, user_id: str) -> list[PatternAggregate]:
        return [a for a in self.list_for_user(user_id) if a.should_avoid]

    def count_for_user(self, user_id: str) -> int:
        return len(self.list_for_user(user_id))

    def _validate(
        self, aggregate: PatternAggregate, previous: Optional[PatternAggregate]
    ) -> None:
        problems = check_invariants(aggregate, previous, self.confidence_saturation)
        if problems:
            logger.error(
                "pattern_invariant_violation",
                user_id=aggregate.user_id,
                pattern_type=str(aggregate.pattern_type),
                pattern_key=aggregate.pattern_key,
                problems=problems,
            )
            raise InvariantViolation(
                f"{aggregate.pattern_type}/{aggregate.pattern_key}: {'; '.join(problems)}"
            )


class InMemoryPatternStore(PatternStore):
    """Dict-backed store. The lock only covers the compare-and-swap itself."""

    def __init__(self, confidence_saturation: int = CONFIDENCE_SATURATION):
        super().__init__(confidence_saturation)
        self._rows: dict[str, dict[tuple[str, str], PatternAggregate]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _copy(aggregate: PatternAggregate) -> PatternAggregate:
        return replace(aggregate, pattern_value=copy.deepcopy(aggregate.pattern_value))

    def get(self, user_id, pattern_type, pattern_key):
        row = self._rows.get(user_id, {}).get((str(pattern_type), pattern_key))
        return self._copy(row) if row else None

    def upsert_many(self, items):
        with self._lock:
            staged = []
            for aggregate, expected_version in items:
                ident = (str(aggregate.pattern_type), aggregate.pattern_key)
                current = self._rows.get(aggregate.user_id, {}).get(ident)
                current_version = current.version if current else 0
                if current_version != expected_version:
                    raise ConcurrencyConflict(
                        aggregate.user_id, ident[0], ident[1], expected_version
                    )
                self._validate(aggregate, current)
                staged.append(
                    (ident, replace(self._copy(aggregate), version=expected_version + 1))
                )
            for ident, stored in staged:
                self._rows.setdefault(stored.user_id, {})[ident] = stored
        return [self._copy(stored) for _, stored in staged]

    def list_for_user(self, user_id, pattern_type=None):
        rows = list(self._rows.get(user_id, {}).values())
        if pattern_type is not None:
            rows = [r for r in rows if r.pattern_type == pattern_type]
        rows.sort(key=lambda r: (str(r.pattern_type), r.pattern_key))
        return [self._copy(r) for r in rows]

    def set_curation(
        self, user_id, pattern_type, pattern_key, should_avoid=None, recommendation=None
    ):
        ident = (str(pattern_type), pattern_key)
        with self._lock:
            current = self._rows.get(user_id, {}).get(ident)
            if current is None:
                return None
            updated = replace(
                current,
                should_avoid=current.should_avoid if should_avoid is None else should_avoid,
                recommendation=current.recommendation
                if recommendation is None
                else recommendation,
                version=current.version + 1,
            )
            self._rows[user_id][ident] = updated
        return self._copy(updated)


class SQLitePatternStore(PatternStore):
    """SQLite persistence for pattern aggregates (WAL, one row per key)."""

    def __init__(self, db_path: str | Path, confidence_saturation: int = CONFIDENCE_SATURATION):
        super().__init__(confidence_saturation)
        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_tables()

    def _init_tables(self):
        with wal_connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS pattern_aggregates (
                    user_id TEXT NOT NULL,
                    pattern_type TEXT NOT NULL
                        CHECK(pattern_type IN ('timing','category','domain')),
                    pattern_key TEXT NOT NULL,
                    pattern_value TEXT DEFAULT '{}',
                    total_occurrences INTEGER NOT NULL CHECK(total_occurrences >= 1),
                    successful_count INTEGER NOT NULL CHECK(successful_count >= 0),
                    failed_count INTEGER NOT NULL CHECK(failed_count >= 0),
                    average_xp REAL NOT NULL DEFAULT 0,
                    average_sentiment REAL NOT NULL DEFAULT 0,
                    confidence REAL NOT NULL DEFAULT 0,
                    strength TEXT NOT NULL DEFAULT 'weak'
                        CHECK(strength IN ('weak','moderate','strong')),
                    should_avoid INTEGER NOT NULL DEFAULT 0,
                    recommendation TEXT,
                    first_observed TIMESTAMP,
                    last_observed TIMESTAMP,
                    version INTEGER NOT NULL DEFAULT 1,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (user_id, pattern_type, pattern_key)
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_patterns_avoid "
                "ON pattern_aggregates(user_id, should_avoid)"
            )

    def _select(self, conn, user_id: str, pattern_type: str, pattern_key: str):
        return conn.execute(
            """SELECT * FROM pattern_aggregates
               WHERE user_id = ? AND pattern_type = ? AND pattern_key = ?""",
            (user_id, pattern_type, pattern_key),
        ).fetchone()

    def get(self, user_id, pattern_type, pattern_key):
        conn = wal_connect(self.db_path, row_factory=True)
        try:
            row = self._select(conn, user_id, str(pattern_type), pattern_key)
        finally:
            conn.close()
        return self._row_to_aggregate(row) if row else None

    def upsert_many(self, items):
        conn = wal_connect(self.db_path, row_factory=True)
        conn.isolation_level = None
        written = []
        try:
            # Every version check and every row write share one transaction
            conn.execute("BEGIN IMMEDIATE")
            for aggregate, expected_version in items:
                ptype = str(aggregate.pattern_type)
                row = self._select(conn, aggregate.user_id, ptype, aggregate.pattern_key)
                current = self._row_to_aggregate(row) if row else None
                current_version = current.version if current else 0
                if current_version != expected_version:
                    raise ConcurrencyConflict(
                        aggregate.user_id, ptype, aggregate.pattern_key, expected_version
                    )
                self._validate(aggregate, current)

                stored = replace(aggregate, version=expected_version + 1)
                params = self._aggregate_params(stored)
                if current is None:
                    conn.execute(
                        """INSERT INTO pattern_aggregates
                           (total_occurrences, successful_count, failed_count, average_xp,
                            average_sentiment, confidence, strength, should_avoid,
                            recommendation, pattern_value, first_observed, last_observed,
                            version, user_id, pattern_type, pattern_key)
                           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                        params,
                    )
                else:
                    conn.execute(
                        """UPDATE pattern_aggregates
                           SET total_occurrences = ?, successful_count = ?, failed_count = ?,
                               average_xp = ?, average_sentiment = ?, confidence = ?,
                               strength = ?, should_avoid = ?, recommendation = ?,
                               pattern_value = ?, first_observed = ?, last_observed = ?,
                               version = ?, updated_at = CURRENT_TIMESTAMP
                           WHERE user_id = ? AND pattern_type = ? AND pattern_key = ?""",
                        params,
                    )
                written.append(stored)
            conn.execute("COMMIT")
        except sqlite3.IntegrityError as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            if "UNIQUE" not in str(e):
                raise InvariantViolation(str(e)) from e
            logger.warning("pattern_insert_race", pattern_key=aggregate.pattern_key, error=str(e))
            raise ConcurrencyConflict(
                aggregate.user_id,
                str(aggregate.pattern_type),
                aggregate.pattern_key,
                expected_version,
            ) from e
        except Exception:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()
        return written

    def list_for_user(self, user_id, pattern_type=None):
        sql = "SELECT * FROM pattern_aggregates WHERE user_id = ?"
        params: list = [user_id]
        if pattern_type is not None:
            sql += " AND pattern_type = ?"
            params.append(str(pattern_type))
        sql += " ORDER BY pattern_type, pattern_key"
        conn = wal_connect(self.db_path, row_factory=True)
        try:
            rows = conn.execute(sql, params).fetchall()
        finally:
            conn.close()
        return [self._row_to_aggregate(r) for r in rows]

    def list_avoided(self, user_id):
        conn = wal_connect(self.db_path, row_factory=True)
        try:
            rows = conn.execute(
                """SELECT * FROM pattern_aggregates
                   WHERE user_id = ? AND should_avoid = 1
                   ORDER BY pattern_type, pattern_key""",
                (user_id,),
            ).fetchall()
        finally:
            conn.close()
        return [self._row_to_aggregate(r) for r in rows]

    def count_for_user(self, user_id):
        conn = wal_connect(self.db_path)
        try:
            return conn.execute(
                "SELECT COUNT(*) FROM pattern_aggregates WHERE user_id = ?", (user_id,)
            ).fetchone()[0]
        finally:
            conn.close()

    def set_curation(
        self, user_id, pattern_type, pattern_key, should_avoid=None, recommendation=None
    ):
        sets = []
        params: list = []
        if should_avoid is not None:
            sets.append("should_avoid = ?")
            params.append(int(should_avoid))
        if recommendation is not None:
            sets.append("recommendation = ?")
            params.append(recommendation)
        if sets:
            sets.append("version = version + 1")
            sets.append("updated_at = CURRENT_TIMESTAMP")
            params.extend([user_id, str(pattern_type), pattern_key])
            with wal_connect(self.db_path) as conn:
                conn.execute(
                    f"UPDATE pattern_aggregates SET {', '.join(sets)} "
                    "WHERE user_id = ? AND pattern_type = ? AND pattern_key = ?",
                    params,
                )
        return self.get(user_id, pattern_type, pattern_key)

    @staticmethod
    def _aggregate_params(a: PatternAggregate) -> tuple:
        return (
            a.total_occurrences,
            a.successful_count,
            a.failed_count,
            a.average_xp,
            a.average_sentiment,
            a.confidence,
            str(a.strength),
            int(a.should_avoid),
            a.recommendation,
            json.dumps(a.pattern_value or {}),
            a.first_observed.isoformat() if a.first_observed else None,
            a.last_observed.isoformat() if a.last_observed else None,
            a.version,
            a.user_id,
            str(a.pattern_type),
            a.pattern_key,
        )

    @staticmethod
    def _row_to_aggregate(row: sqlite3.Row) -> PatternAggregate:
        d = dict(row)
        first = d.get("first_observed")
        last = d.get("last_observed")
        return PatternAggregate(
            user_id=d["user_id"],
            pattern_type=PatternType(d["pattern_type"]),
            pattern_key=d["pattern_key"],
            total_occurrences=d["total_occurrences"],
            successful_count=d["successful_count"],
            failed_count=d["failed_count"],
            average_xp=d["average_xp"],
            average_sentiment=d["average_sentiment"],
            confidence=d["confidence"],
            strength=PatternStrength(d["strength"]),
            should_avoid=bool(d["should_avoid"]),
            first_observed=datetime.fromisoformat(first) if first else None,
            last_observed=datetime.fromisoformat(last) if last else None,
            pattern_value=json.loads(d.get("pattern_value") or "{}"),
            recommendation=d.get("recommendation"),
            version=d["version"],
        )
