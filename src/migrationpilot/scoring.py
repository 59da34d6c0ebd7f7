"""Risk scoring: a 0-100 score and a RED/YELLOW/GREEN verdict per statement.

Three additive factors feed the score:

* **Lock Severity** (0-40), always present, from the statement's :class:`~migrationpilot.locks.LockClassification`.
* **Table Size** (0-30), only when table statistics are known.
* **Query Frequency** (0-30), only when queries touching the table are known.

Scoring is monotone: a stronger lock, a larger table or more calls never lower the score.
"""

from __future__ import annotations

import dataclasses
import enum
import functools
from types import MappingProxyType
from typing import TYPE_CHECKING

from migrationpilot.locks import LockLevel

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from migrationpilot.locks import LockClassification
    from migrationpilot.production import AffectedQuery, TableStats

LOCK_WEIGHT = 40
TABLE_SIZE_WEIGHT = 30
QUERY_FREQUENCY_WEIGHT = 30

RED_THRESHOLD = 50
YELLOW_THRESHOLD = 25

_LOCK_BASE = MappingProxyType(
    {
        LockLevel.ACCESS_SHARE: 0,
        LockLevel.ROW_EXCLUSIVE: 5,
        LockLevel.SHARE_UPDATE_EXCLUSIVE: 10,
        LockLevel.SHARE: 15,
        LockLevel.SHARE_ROW_EXCLUSIVE: 20,
        LockLevel.ACCESS_EXCLUSIVE: 25,
    }
)
_LONG_HELD_BONUS = 15
_BLOCKS_EVERYTHING_FLOOR = 30

# (exclusive lower bound, points), checked from the top.
_ROW_BUCKETS = ((10_000_000, 30), (1_000_000, 20), (100_000, 10), (10_000, 5))
_CALL_BUCKETS = ((100_000, 30), (10_000, 20), (1_000, 10), (100, 5))

_BYTE_UNITS = ((1e12, "TB"), (1e9, "GB"), (1e6, "MB"), (1e3, "KB"))


@functools.total_ordering
class RiskLevel(enum.Enum):
    """Risk verdict, ordered ``GREEN < YELLOW < RED``."""

    GREEN = "GREEN"
    YELLOW = "YELLOW"
    RED = "RED"

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return _LEVEL_ORDER[self] < _LEVEL_ORDER[other]

    def __str__(self) -> str:
        return self.value


_LEVEL_ORDER = MappingProxyType({RiskLevel.GREEN: 0, RiskLevel.YELLOW: 1, RiskLevel.RED: 2})


@dataclasses.dataclass(frozen=True)
class RiskFactor:
    """One contribution to a risk score.

    Attributes:
        name: ``"Lock Severity"``, ``"Table Size"`` or ``"Query Frequency"``.
        weight: Maximum points the factor can contribute.
        value: Points actually contributed.
        detail: Human-readable explanation, e.g. ``"ACCESS EXCLUSIVE (long-held)"``.
    """

    name: str
    weight: int
    value: int
    detail: str


@dataclasses.dataclass(frozen=True)
class RiskScore:
    level: RiskLevel
    score: int
    factors: tuple[RiskFactor, ...] = ()


def score_lock(lock: LockClassification) -> int:
    score = _LOCK_BASE[lock.lock_type]
    if lock.long_held:
        score += _LONG_HELD_BONUS
    if lock.blocks_reads and lock.blocks_writes:
        score = max(score, _BLOCKS_EVERYTHING_FLOOR)
    return min(score, LOCK_WEIGHT)


def _bucket(value: int, buckets: tuple[tuple[int, int], ...]) -> int:
    for bound, points in buckets:
        if value > bound:
            return points
    return 0


def score_table_size(row_count: int) -> int:
    return _bucket(row_count, _ROW_BUCKETS)


def score_query_frequency(total_calls: int) -> int:
    return _bucket(total_calls, _CALL_BUCKETS)


def format_bytes(num_bytes: int) -> str:
    """Format a byte count with one decimal in decimal units: ``1.5 MB``, ``512 B``."""
    for factor, unit in _BYTE_UNITS:
        if num_bytes >= factor:
            return f"{num_bytes / factor:.1f} {unit}"
    return f"{num_bytes} B"


def risk_level(score: int) -> RiskLevel:
    if score >= RED_THRESHOLD:
        return RiskLevel.RED
    if score >= YELLOW_THRESHOLD:
        return RiskLevel.YELLOW
    return RiskLevel.GREEN


def calculate_risk(
    lock: LockClassification,
    table_stats: TableStats | None = None,
    affected_queries: Sequence[AffectedQuery] | None = None,
) -> RiskScore:
    """Score a statement's risk.

    Args:
        lock: The statement's lock classification.
        table_stats: Statistics of the statement's target table, if known.
        affected_queries: Queries that touch the target table, if known. An empty sequence adds no factor.

    Returns:
        The score with its factors in the order Lock Severity, Table Size, Query Frequency.

    Example:
        >>> from migrationpilot.locks import LockClassification, LockLevel
        >>> from migrationpilot.production import TableStats
        >>> lock = LockClassification.for_level(LockLevel.ACCESS_EXCLUSIVE, long_held=True)
        >>> risk = calculate_risk(lock, TableStats("users", row_count=5_000_000))
        >>> risk.score, risk.level.value
        (60, 'RED')
    """
    factors = [
        RiskFactor(
            name="Lock Severity",
            weight=LOCK_WEIGHT,
            value=score_lock(lock),
            detail=f"{lock.lock_type.value}{' (long-held)' if lock.long_held else ''}",
        )
    ]

    if table_stats is not None:
        factors.append(
            RiskFactor(
                name="Table Size",
                weight=TABLE_SIZE_WEIGHT,
                value=score_table_size(table_stats.row_count),
                detail=f"{table_stats.row_count:,} rows ({format_bytes(table_stats.total_bytes)})",
            )
        )

    if affected_queries:
        total_calls = sum(q.calls for q in affected_queries)
        services = list(dict.fromkeys(q.service_name for q in affected_queries if q.service_name))
        detail = f"{len(affected_queries)} queries, {total_calls:,} calls"
        if services:
            detail += f" across {', '.join(services)}"
        factors.append(
            RiskFactor(
                name="Query Frequency",
                weight=QUERY_FREQUENCY_WEIGHT,
                value=score_query_frequency(total_calls),
                detail=detail,
            )
        )

    total = sum(f.value for f in factors)
    return RiskScore(level=risk_level(total), score=total, factors=tuple(factors))


def overall_risk(scores: Iterable[RiskScore]) -> RiskScore | None:
    """Return the highest score (the first one on ties), or ``None`` when there are none."""
    worst: RiskScore | None = None
    for score in scores:
        if worst is None or score.score > worst.score:
            worst = score
    return worst
