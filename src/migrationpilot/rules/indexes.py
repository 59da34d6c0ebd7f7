"""Rules about building, dropping and rebuilding indexes."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from postgast.walk import unwrap_node

from migrationpilot._ast import enum_name, node_kind, qualified_name, string_values
from migrationpilot.locks import is_concurrent
from migrationpilot.rules.helpers import alter_table_cmds, constraint_def, has_covering_index, relation_name, violation
from migrationpilot.severity import Severity

if TYPE_CHECKING:
    from postgast import pg_query_pb2

    from migrationpilot.rules.engine import RuleContext, RuleViolation

_CREATE_INDEX = re.compile(r"CREATE\s+(UNIQUE\s+)?INDEX", re.IGNORECASE)
_LEADING_BEGIN = re.compile(r"^\s*BEGIN\s*;?\s*", re.IGNORECASE)
_DROP_INDEX = re.compile(r"DROP\s+INDEX", re.IGNORECASE)
_REINDEX_TARGET = re.compile(r"REINDEX\s+(TABLE|INDEX|SCHEMA|DATABASE)", re.IGNORECASE)


class RequireConcurrentIndex:
    """Detects ``CREATE INDEX`` without ``CONCURRENTLY``."""

    id = "MP001"
    name = "require-concurrent-index-creation"
    severity = Severity.CRITICAL
    description = (
        "CREATE INDEX without CONCURRENTLY blocks all writes on the target table for the entire duration of index "
        "creation."
    )

    def check(self, node: pg_query_pb2.Node, ctx: RuleContext) -> RuleViolation | None:
        if node_kind(node) != "index_stmt":
            return None
        index = unwrap_node(node)
        if index.concurrent:  # type: ignore[attr-defined]
            return None

        table = relation_name(index)
        label = f' "{index.idxname}"' if index.idxname else ""  # type: ignore[attr-defined]
        safe = _CREATE_INDEX.sub(lambda m: f"CREATE {m.group(1) or ''}INDEX CONCURRENTLY", ctx.original_sql, count=1)
        safe = _LEADING_BEGIN.sub("-- NOTE: CONCURRENTLY cannot run inside a transaction block\n", safe)
        return violation(
            self,
            ctx,
            f'CREATE INDEX{label} without CONCURRENTLY will lock all writes on "{table}" for the entire duration of '
            "index creation.",
            safe_alternative=safe,
        )


class RequireDropIndexConcurrently:
    """Detects ``DROP INDEX`` without ``CONCURRENTLY``."""

    id = "MP009"
    name = "require-drop-index-concurrently"
    severity = Severity.WARNING
    description = "DROP INDEX without CONCURRENTLY acquires ACCESS EXCLUSIVE lock, blocking all reads and writes."

    def check(self, node: pg_query_pb2.Node, ctx: RuleContext) -> RuleViolation | None:
        if node_kind(node) != "drop_stmt":
            return None
        drop = unwrap_node(node)
        if enum_name(drop, "remove_type") != "OBJECT_INDEX" or drop.concurrent:  # type: ignore[attr-defined]
            return None

        first = unwrap_node(drop.objects[0]) if drop.objects else None  # type: ignore[attr-defined]
        index_name = qualified_name(getattr(first, "items", ()))
        label = f' "{index_name}"' if index_name else ""
        return violation(
            self,
            ctx,
            f"DROP INDEX{label} without CONCURRENTLY acquires ACCESS EXCLUSIVE lock, blocking all reads and writes on "
            "the table.",
            safe_alternative=_DROP_INDEX.sub("DROP INDEX CONCURRENTLY", ctx.original_sql, count=1),
        )


class RequireIndexOnForeignKey:
    """Detects a foreign key whose referencing columns no ``CREATE INDEX`` in the file covers."""

    id = "MP016"
    name = "require-index-on-fk"
    severity = Severity.WARNING
    description = "Foreign key columns should have an index to avoid sequential scans on cascading updates/deletes."

    def check(self, node: pg_query_pb2.Node, ctx: RuleContext) -> RuleViolation | None:
        for alter, cmd in alter_table_cmds(node, "AT_AddConstraint"):
            constraint = constraint_def(cmd)
            if constraint is None or enum_name(constraint, "contype") != "CONSTR_FOREIGN":
                continue
            fk_columns = string_values(constraint.fk_attrs)  # type: ignore[attr-defined]
            if not fk_columns:
                continue
            table = relation_name(alter)
            # The index may be created before or after the constraint.
            if has_covering_index(ctx.previous_statements, table, fk_columns):
                continue
            if has_covering_index(ctx.following_statements, table, fk_columns):
                continue

            column_list = ", ".join(fk_columns)
            constraint_name = constraint.conname or "unnamed_fk"  # type: ignore[attr-defined]
            ref_table = constraint.pktable.relname or "unknown"  # type: ignore[attr-defined]
            return violation(
                self,
                ctx,
                f'FK constraint "{constraint_name}" on "{table}"({column_list}) -> "{ref_table}" has no matching '
                "index. Without an index, cascading updates/deletes cause sequential scans.",
                safe_alternative=(
                    "-- Create index on FK columns (CONCURRENTLY to avoid blocking)\n"
                    f"CREATE INDEX CONCURRENTLY idx_{table}_{'_'.join(fk_columns)} ON {table} ({column_list});"
                ),
            )
        return None


class RequireConcurrentReindex:
    """Detects ``REINDEX`` without ``CONCURRENTLY`` on servers that support it."""

    id = "MP021"
    name = "require-concurrent-reindex"
    severity = Severity.WARNING
    description = (
        "REINDEX without CONCURRENTLY acquires ACCESS EXCLUSIVE lock (table) or SHARE lock (index), blocking "
        "queries. Use REINDEX CONCURRENTLY on PG 12+."
    )

    def check(self, node: pg_query_pb2.Node, ctx: RuleContext) -> RuleViolation | None:
        if node_kind(node) != "reindex_stmt" or ctx.pg_version < 12:
            return None
        reindex = unwrap_node(node)
        kind = enum_name(reindex, "kind")
        # REINDEX SYSTEM cannot run concurrently.
        if kind == "REINDEX_OBJECT_SYSTEM" or is_concurrent(node):
            return None

        target = relation_name(reindex, default=reindex.name or "unknown")  # type: ignore[attr-defined]
        label = kind.removeprefix("REINDEX_OBJECT_") or "OBJECT"
        return violation(
            self,
            ctx,
            f'REINDEX {label} "{target}" without CONCURRENTLY blocks all writes (or reads for tables). On '
            f"PostgreSQL {ctx.pg_version}, use REINDEX CONCURRENTLY instead.",
            safe_alternative=_REINDEX_TARGET.sub(
                lambda m: f"REINDEX {m.group(1)} CONCURRENTLY", ctx.original_sql, count=1
            ),
        )
