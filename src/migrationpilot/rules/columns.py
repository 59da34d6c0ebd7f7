"""Rules about ``ALTER TABLE`` column changes."""

from __future__ import annotations

from typing import TYPE_CHECKING

from postgast.walk import unwrap_node

from migrationpilot._ast import node_kind
from migrationpilot.locks import column_default, volatile_functions
from migrationpilot.rules.helpers import alter_table_cmds, relation_name, violation
from migrationpilot.severity import Severity

if TYPE_CHECKING:
    from postgast import pg_query_pb2

    from migrationpilot.rules.engine import RuleContext, RuleViolation


class VolatileDefaultTableRewrite:
    """Detects ``ADD COLUMN`` whose ``DEFAULT`` calls a volatile function such as ``now()``."""

    id = "MP003"
    name = "volatile-default-table-rewrite"
    severity = Severity.CRITICAL
    description = (
        "ADD COLUMN with a volatile DEFAULT (e.g., now(), random()) causes a full table rewrite on PG < 11, and "
        "still evaluates per-row on PG 11+."
    )

    def check(self, node: pg_query_pb2.Node, ctx: RuleContext) -> RuleViolation | None:
        for alter, cmd in alter_table_cmds(node, "AT_AddColumn"):
            default = column_default(getattr(cmd, "def"))
            if default is None:
                continue
            volatile = volatile_functions(default)
            if not volatile:
                continue

            table = relation_name(alter)
            func = volatile[0]
            if ctx.pg_version < 11:
                return violation(
                    self,
                    ctx,
                    f'ADD COLUMN with volatile default "{func}()" on "{table}" causes a full table rewrite on '
                    f"PostgreSQL {ctx.pg_version}. This locks the table under ACCESS EXCLUSIVE for the entire "
                    "rewrite duration.",
                    safe_alternative=(
                        "-- Add column without default, then backfill in batches:\n"
                        f"ALTER TABLE {table} ADD COLUMN new_column <type>;\n"
                        "-- Backfill in batches of 10,000:\n"
                        f"UPDATE {table} SET new_column = {func}() WHERE id IN "
                        f"(SELECT id FROM {table} WHERE new_column IS NULL LIMIT 10000);"
                    ),
                )
            return violation(
                self,
                ctx,
                f'ADD COLUMN with volatile default "{func}()" on "{table}". On PG {ctx.pg_version}, this evaluates '
                "per-row at read time (no rewrite), but may cause unexpected behavior for existing rows.",
                severity=Severity.WARNING,
            )
        return None


class NoColumnTypeChange:
    """Detects ``ALTER COLUMN ... TYPE``."""

    id = "MP007"
    name = "no-column-type-change"
    severity = Severity.CRITICAL
    description = (
        "ALTER COLUMN TYPE rewrites the entire table under ACCESS EXCLUSIVE lock. Use the expand-contract pattern "
        "instead."
    )

    def check(self, node: pg_query_pb2.Node, ctx: RuleContext) -> RuleViolation | None:
        for alter, cmd in alter_table_cmds(node, "AT_AlterColumnType"):
            table = relation_name(alter)
            column = cmd.name or "unknown"  # type: ignore[attr-defined]
            return violation(
                self,
                ctx,
                f'ALTER COLUMN TYPE on "{table}"."{column}" rewrites the entire table under ACCESS EXCLUSIVE lock, '
                "blocking all reads and writes.",
                safe_alternative=(
                    "-- Use the expand-contract pattern:\n"
                    "-- Step 1: Add new column with desired type\n"
                    f"ALTER TABLE {table} ADD COLUMN {column}_new <new_type>;\n"
                    "\n"
                    "-- Step 2: Backfill in batches\n"
                    f"UPDATE {table} SET {column}_new = {column}::<new_type>\n"
                    f"  WHERE id IN (SELECT id FROM {table} WHERE {column}_new IS NULL LIMIT 10000);\n"
                    "\n"
                    "-- Step 3: Create trigger to sync writes (during backfill)\n"
                    "-- Step 4: Swap columns (brief lock)\n"
                    "-- Step 5: Drop old column"
                ),
            )
        return None


def _altered_table(node: pg_query_pb2.Node) -> str | None:
    if node_kind(node) != "alter_table_stmt":
        return None
    return relation_name(unwrap_node(node), default="") or None


class MultiAlterTableSameTable:
    """Detects several ``ALTER TABLE`` statements on one table, reported once at the first of them."""

    id = "MP058"
    name = "multi-alter-table-same-table"
    severity = Severity.WARNING
    description = (
        "Multiple separate ALTER TABLE statements on the same table acquire the lock multiple times. Combine them "
        "into a single statement."
    )

    def check(self, node: pg_query_pb2.Node, ctx: RuleContext) -> RuleViolation | None:
        table = _altered_table(node)
        if table is None:
            return None
        if any(_altered_table(stmt.node) == table for stmt in ctx.previous_statements):
            return None

        count = 1 + sum(1 for stmt in ctx.following_statements if _altered_table(stmt.node) == table)
        if count <= 1:
            return None
        return violation(
            self,
            ctx,
            f'{count} separate ALTER TABLE statements on "{table}". Each acquires ACCESS EXCLUSIVE lock '
            "independently. Combine into a single ALTER TABLE with multiple subcommands to reduce lock acquisitions "
            f"from {count} to 1.",
            safe_alternative=(
                "-- Combine into a single statement:\n"
                f"-- ALTER TABLE {table}\n"
                "--   ADD COLUMN ...,\n"
                "--   ALTER COLUMN ...,\n"
                "--   ADD CONSTRAINT ...;"
            ),
        )
