"""Rules about how long a statement holds its lock, or may wait for it."""

from __future__ import annotations

from typing import TYPE_CHECKING

from postgast.walk import unwrap_node

from migrationpilot._ast import def_elem_names, has_field, node_kind
from migrationpilot.locks import LockLevel
from migrationpilot.rules.helpers import has_preceding_lock_timeout, relation_name, violation
from migrationpilot.severity import Severity

if TYPE_CHECKING:
    from postgast import pg_query_pb2

    from migrationpilot.rules.engine import RuleContext, RuleViolation

_QUEUEING_LOCKS = frozenset({LockLevel.ACCESS_EXCLUSIVE, LockLevel.SHARE})
_NOT_DDL = frozenset({"variable_set_stmt", "variable_show_stmt", "transaction_stmt", "create_stmt"})


class RequireLockTimeout:
    """Detects statements taking a blocking lock with no ``lock_timeout`` set earlier in the file.

    A DDL statement waiting for its lock sits at the head of the lock queue, and every later query on the table
    queues behind it. ``CREATE TABLE`` is exempt: nothing else can hold a lock on a new table.
    """

    id = "MP004"
    name = "require-lock-timeout"
    severity = Severity.CRITICAL
    description = "DDL operations should set lock_timeout to prevent blocking the lock queue indefinitely."

    def check(self, node: pg_query_pb2.Node, ctx: RuleContext) -> RuleViolation | None:
        if ctx.lock.lock_type not in _QUEUEING_LOCKS:
            return None
        if node_kind(node) in _NOT_DDL:
            return None
        if has_preceding_lock_timeout(ctx):
            return None
        return violation(
            self,
            ctx,
            f"DDL statement acquires {ctx.lock.lock_type.value} lock without a preceding SET lock_timeout. Without a "
            "timeout, this statement could block the lock queue indefinitely if it can't acquire the lock, causing "
            "cascading query failures.",
            safe_alternative=(
                "-- Set a timeout so DDL fails fast instead of blocking the queue\n"
                "SET lock_timeout = '5s';\n"
                f"{ctx.original_sql}\n"
                "RESET lock_timeout;"
            ),
        )


class NoVacuumFull:
    """Detects ``VACUUM FULL``."""

    id = "MP006"
    name = "no-vacuum-full"
    severity = Severity.CRITICAL
    description = "VACUUM FULL rewrites the entire table under ACCESS EXCLUSIVE lock, blocking all reads and writes."

    def check(self, node: pg_query_pb2.Node, ctx: RuleContext) -> RuleViolation | None:
        if node_kind(node) != "vacuum_stmt":
            return None
        vacuum = unwrap_node(node)
        if "full" not in def_elem_names(vacuum.options):  # type: ignore[attr-defined]
            return None

        rels = [unwrap_node(rel) for rel in vacuum.rels]  # type: ignore[attr-defined]
        table = relation_name(rels[0]) if rels else "unknown"
        return violation(
            self,
            ctx,
            f'VACUUM FULL on "{table}" rewrites the entire table under ACCESS EXCLUSIVE lock. This blocks ALL reads '
            "and writes for the entire duration.",
            safe_alternative=(
                "-- Use pg_repack instead (no ACCESS EXCLUSIVE lock during rewrite):\n"
                "-- Install: CREATE EXTENSION pg_repack;\n"
                f"-- Run: pg_repack --table {table} --no-superuser-check"
            ),
        )


class UnbatchedDataBackfill:
    """Detects ``UPDATE`` without a ``WHERE`` clause."""

    id = "MP011"
    name = "unbatched-data-backfill"
    severity = Severity.WARNING
    description = (
        "UPDATE without a WHERE clause or LIMIT pattern rewrites the entire table in a single transaction, "
        "generating massive WAL and holding locks."
    )

    def check(self, node: pg_query_pb2.Node, ctx: RuleContext) -> RuleViolation | None:
        if node_kind(node) != "update_stmt":
            return None
        update = unwrap_node(node)
        if has_field(update, "where_clause"):
            return None

        table = relation_name(update)
        return violation(
            self,
            ctx,
            f'UPDATE on "{table}" without a WHERE clause rewrites every row in a single transaction. For large '
            "tables, this generates massive WAL, can bloat the table, and holds ROW EXCLUSIVE lock for the entire "
            "duration.",
            safe_alternative=(
                "-- Backfill in batches to reduce lock duration and WAL volume:\n"
                "DO $$\n"
                "DECLARE\n"
                "  batch_size INT := 10000;\n"
                "  rows_updated INT;\n"
                "BEGIN\n"
                "  LOOP\n"
                f"    UPDATE {table}\n"
                "    SET <column> = <value>\n"
                "    WHERE <column> IS NULL\n"
                "    AND ctid IN (\n"
                f"      SELECT ctid FROM {table}\n"
                "      WHERE <column> IS NULL\n"
                "      LIMIT batch_size\n"
                "      FOR UPDATE SKIP LOCKED\n"
                "    );\n"
                "    GET DIAGNOSTICS rows_updated = ROW_COUNT;\n"
                "    EXIT WHEN rows_updated = 0;\n"
                "    COMMIT;\n"
                "    PERFORM pg_sleep(0.1);\n"
                "  END LOOP;\n"
                "END $$;"
            ),
        )
