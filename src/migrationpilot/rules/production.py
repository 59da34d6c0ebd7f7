"""Rules that only fire when production statistics are available.

Each rule returns ``None`` when its statistic is missing, so a plain static analysis never reports them. MP013,
MP014 and MP019 read their cut-off from the rule's configured ``threshold`` when one is set.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from migrationpilot._ast import node_kind
from migrationpilot.extract import primary_table
from migrationpilot.locks import LockLevel
from migrationpilot.rules.helpers import is_ddl, violation
from migrationpilot.scoring import format_bytes
from migrationpilot.severity import Severity

if TYPE_CHECKING:
    from postgast import pg_query_pb2

    from migrationpilot.rules.engine import RuleContext, RuleViolation

HIGH_TRAFFIC_CALLS = 10_000
LARGE_TABLE_ROWS = 1_000_000
HIGH_CONNECTIONS = 20


def _lock_timeout_wrapper(ctx: RuleContext, timeout: str) -> str:
    return f"SET lock_timeout = '{timeout}';\n{ctx.original_sql}\nRESET lock_timeout;"


class HighTrafficTableDdl:
    """Detects DDL on a table whose known queries add up to many calls."""

    id = "MP013"
    name = "high-traffic-table-ddl"
    severity = Severity.WARNING
    description = "DDL on a table with high query traffic. Lock acquisition may be slow and cause cascading timeouts."

    def check(self, node: pg_query_pb2.Node, ctx: RuleContext) -> RuleViolation | None:
        if not ctx.affected_queries:
            return None
        if not is_ddl(node) or ctx.lock.lock_type is LockLevel.ACCESS_SHARE:
            return None

        threshold = ctx.threshold if ctx.threshold is not None else HIGH_TRAFFIC_CALLS
        total_calls = sum(q.calls for q in ctx.affected_queries)
        if total_calls < threshold:
            return None

        top = ctx.affected_queries[0]
        services = list(dict.fromkeys(q.service_name for q in ctx.affected_queries if q.service_name))
        from_services = f" from {', '.join(services)}" if services else ""
        return violation(
            self,
            ctx,
            f"DDL acquires {ctx.lock.lock_type.value} lock on a table with {total_calls:,} queries{from_services}. "
            f'Top query: "{top.normalized_query[:60]}..." ({top.calls:,} calls, {top.mean_exec_time:.1f}ms avg).',
            safe_alternative=(
                "-- Set a short lock_timeout to fail fast instead of blocking queries:\n"
                f"{_lock_timeout_wrapper(ctx, '3s')}\n"
                "\n"
                "-- Consider running during low-traffic hours.\n"
                "-- If lock acquisition fails, retry with exponential backoff."
            ),
        )


class LargeTableDdl:
    """Detects a long-held lock on a table with many rows."""

    id = "MP014"
    name = "large-table-ddl"
    severity = Severity.WARNING
    description = "DDL with long-held locks on a table with over 1M rows. Lock duration will scale with table size."

    def check(self, node: pg_query_pb2.Node, ctx: RuleContext) -> RuleViolation | None:
        stats = ctx.table_stats
        if stats is None or not ctx.lock.long_held:
            return None
        threshold = ctx.threshold if ctx.threshold is not None else LARGE_TABLE_ROWS
        if stats.row_count < threshold:
            return None

        blocking = ", blocking ALL reads and writes" if ctx.lock.blocks_reads else ", blocking writes"
        return violation(
            self,
            ctx,
            f"Long-held {ctx.lock.lock_type.value} on a table with {stats.row_count:,} rows "
            f"({format_bytes(stats.total_bytes)}, {stats.index_count} indexes). Lock duration will scale with table "
            f"size{blocking}.",
            safe_alternative=(
                "-- For large tables, consider:\n"
                "-- 1. Set a lock_timeout to fail fast:\n"
                f"{_lock_timeout_wrapper(ctx, '5s')}\n"
                "\n"
                "-- 2. Run during maintenance windows\n"
                "-- 3. If this is an index creation, ensure CONCURRENTLY is used\n"
                "-- 4. For column additions with defaults, consider adding without default then backfilling"
            ),
        )


class NoExclusiveLockHighConnections:
    """Detects ``ACCESS EXCLUSIVE`` on a table with many active connections."""

    id = "MP019"
    name = "no-exclusive-lock-high-connections"
    severity = Severity.WARNING
    description = "ACCESS EXCLUSIVE lock on a table with many active connections causes cascading timeouts."

    def check(self, node: pg_query_pb2.Node, ctx: RuleContext) -> RuleViolation | None:
        connections = ctx.active_connections
        if connections is None:
            return None
        threshold = ctx.threshold if ctx.threshold is not None else HIGH_CONNECTIONS
        if connections < threshold:
            return None
        if ctx.lock.lock_type is not LockLevel.ACCESS_EXCLUSIVE or node_kind(node) == "create_stmt":
            return None

        table = primary_table(node) or "unknown"
        return violation(
            self,
            ctx,
            f'ACCESS EXCLUSIVE lock on "{table}" while {connections} active connections exist. All {connections} '
            "connections will queue, causing cascading timeouts.",
            safe_alternative=(
                "-- Run during a low-traffic window and use a short lock_timeout:\n"
                f"{_lock_timeout_wrapper(ctx, '3s')}\n"
                "\n"
                "-- If lock acquisition fails, retry with exponential backoff."
            ),
        )
