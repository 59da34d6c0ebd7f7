"""Production statistics injected into an analysis.

migrationpilot never connects to a database. Callers that have already read ``pg_class``, ``pg_stat_statements``
and ``pg_stat_activity`` hand the results in as a :class:`ProductionContext`, keyed by bare table name.
"""

from __future__ import annotations

import dataclasses
from types import MappingProxyType
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping


@dataclasses.dataclass(frozen=True)
class TableStats:
    """Size of one table.

    Attributes:
        table_name: Bare table name.
        row_count: Estimated live rows.
        total_bytes: Heap, index and TOAST size in bytes.
        index_count: Number of indexes on the table.
    """

    table_name: str
    row_count: int
    total_bytes: int = 0
    index_count: int = 0


@dataclasses.dataclass(frozen=True)
class AffectedQuery:
    """A query from ``pg_stat_statements`` that reads or writes a table.

    Attributes:
        query_id: ``queryid`` as text.
        normalized_query: Normalized query text.
        calls: Number of executions.
        mean_exec_time: Mean execution time in milliseconds.
        service_name: Application that issues the query, when known.
    """

    query_id: str
    normalized_query: str
    calls: int
    mean_exec_time: float = 0.0
    service_name: str | None = None


def _freeze(mapping: Mapping[str, object] | None) -> MappingProxyType:  # type: ignore[type-arg]
    return MappingProxyType(dict(mapping or {}))


@dataclasses.dataclass(frozen=True)
class ProductionContext:
    """Read-only production statistics, keyed by bare table name.

    Missing tables simply have no entry; every lookup returns ``None`` for them.
    """

    table_stats: Mapping[str, TableStats] = dataclasses.field(default_factory=lambda: MappingProxyType({}))
    affected_queries: Mapping[str, tuple[AffectedQuery, ...]] = dataclasses.field(
        default_factory=lambda: MappingProxyType({})
    )
    active_connections: Mapping[str, int] = dataclasses.field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def build(
        cls,
        table_stats: Iterable[TableStats] = (),
        affected_queries: Mapping[str, Iterable[AffectedQuery]] | None = None,
        active_connections: Mapping[str, int] | None = None,
    ) -> ProductionContext:
        """Assemble a context from plain collections, indexing *table_stats* by their ``table_name``."""
        queries = {table: tuple(items) for table, items in (affected_queries or {}).items()}
        return cls(
            table_stats=_freeze({stats.table_name: stats for stats in table_stats}),
            affected_queries=_freeze(queries),
            active_connections=_freeze(active_connections),
        )

    def table_stats_for(self, table: str | None) -> TableStats | None:
        if table is None:
            return None
        return self.table_stats.get(table)

    def affected_queries_for(self, table: str | None) -> tuple[AffectedQuery, ...] | None:
        if table is None:
            return None
        return self.affected_queries.get(table)

    def active_connections_for(self, table: str | None) -> int | None:
        if table is None:
            return None
        return self.active_connections.get(table)
