"""Rules about explicit ``BEGIN``/``COMMIT`` blocks in a migration."""

from __future__ import annotations

from typing import TYPE_CHECKING

from postgast.walk import unwrap_node

from migrationpilot._ast import node_kind, qualified_name
from migrationpilot.locks import is_concurrent
from migrationpilot.rules.helpers import is_ddl, violation
from migrationpilot.severity import Severity

if TYPE_CHECKING:
    from postgast import pg_query_pb2

    from migrationpilot.rules.engine import RuleContext, RuleViolation


class NoMultiDdlTransaction:
    """Detects a second DDL statement inside one transaction block (reported on each DDL after the first)."""

    id = "MP008"
    name = "no-multi-ddl-transaction"
    severity = Severity.CRITICAL
    description = (
        "Multiple DDL statements in a single transaction compound lock duration. Each DDL should run in its own "
        "transaction."
    )

    def check(self, node: pg_query_pb2.Node, ctx: RuleContext) -> RuleViolation | None:
        if not is_ddl(node):
            return None
        block = ctx.transaction.block_for(ctx.statement_index)
        if block is None:
            return None
        earlier = [
            i for i in block.ddl_indices if i < ctx.statement_index and is_ddl(ctx.all_statements[i].node)
        ]
        if not earlier:
            return None
        return violation(
            self,
            ctx,
            "Multiple DDL statements in a single transaction. Locks are held for the ENTIRE transaction: the combined "
            "duration of all DDL operations. Run each DDL in its own transaction.",
        )


class NoEnumAddValueInTransaction:
    """Detects ``ALTER TYPE ... ADD VALUE`` inside a transaction block."""

    id = "MP012"
    name = "no-enum-add-value-in-transaction"
    severity = Severity.WARNING
    description = (
        "ALTER TYPE ... ADD VALUE cannot run inside a transaction block on PG < 12. Even on PG 12+, enum "
        "modifications take ACCESS EXCLUSIVE on the type."
    )

    def check(self, node: pg_query_pb2.Node, ctx: RuleContext) -> RuleViolation | None:
        if node_kind(node) != "alter_enum_stmt":
            return None
        if not ctx.transaction.in_transaction(ctx.statement_index):
            return None

        alter_enum = unwrap_node(node)
        type_name = qualified_name(alter_enum.type_name) or "unknown"  # type: ignore[attr-defined]
        new_value = alter_enum.new_val or "unknown"  # type: ignore[attr-defined]
        if ctx.pg_version < 12:
            return violation(
                self,
                ctx,
                f"ALTER TYPE \"{type_name}\" ADD VALUE '{new_value}' inside a transaction block will fail on "
                f"PostgreSQL {ctx.pg_version}. This is only supported in PG 12+.",
                safe_alternative=(
                    f"-- Run outside a transaction block:\nALTER TYPE {type_name} ADD VALUE '{new_value}';"
                ),
            )
        return violation(
            self,
            ctx,
            f"ALTER TYPE \"{type_name}\" ADD VALUE '{new_value}' in a transaction. On PG 12+ this works but takes "
            "ACCESS EXCLUSIVE on the enum type. Consider running outside the transaction to minimize lock duration.",
        )


class BanConcurrentInTransaction:
    """Detects ``CONCURRENTLY`` operations inside a transaction block, which PostgreSQL rejects at run time."""

    id = "MP025"
    name = "ban-concurrent-in-transaction"
    severity = Severity.CRITICAL
    description = (
        "CONCURRENTLY operations (CREATE INDEX, DROP INDEX, REINDEX) cannot run inside a transaction block. "
        "PostgreSQL will raise an ERROR at runtime."
    )

    def check(self, node: pg_query_pb2.Node, ctx: RuleContext) -> RuleViolation | None:
        if not is_concurrent(node):
            return None
        if not ctx.transaction.in_transaction(ctx.statement_index):
            return None
        return violation(
            self,
            ctx,
            "CONCURRENTLY operations cannot run inside a transaction block. PostgreSQL will raise: \"ERROR: CREATE "
            'INDEX CONCURRENTLY cannot run inside a transaction block". Remove the surrounding BEGIN/COMMIT.',
            safe_alternative=(
                "-- Remove the surrounding transaction block:\n"
                "-- CONCURRENTLY operations manage their own locking.\n"
                f"{ctx.original_sql}"
            ),
        )


class BanUncommittedTransaction:
    """Detects a ``BEGIN`` the file never closes (reported on the last statement)."""

    id = "MP053"
    name = "ban-uncommitted-transaction"
    severity = Severity.CRITICAL
    description = (
        "Migration file contains BEGIN without a matching COMMIT, which will leave a dangling open transaction."
    )

    def check(self, node: pg_query_pb2.Node, ctx: RuleContext) -> RuleViolation | None:
        if ctx.statement_index != len(ctx.all_statements) - 1:
            return None
        if all(block.terminated for block in ctx.transaction.blocks):
            return None
        return violation(
            self,
            ctx,
            "Migration file contains BEGIN without a matching COMMIT or ROLLBACK. This will leave an open "
            "transaction that holds locks indefinitely.",
            safe_alternative="-- Add COMMIT at the end of the migration:\nCOMMIT;",
        )
