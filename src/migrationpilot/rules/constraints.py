"""Rules about adding constraints without a full-table scan under an exclusive lock."""

from __future__ import annotations

from typing import TYPE_CHECKING

from migrationpilot._ast import enum_name
from migrationpilot.rules.helpers import (
    alter_table_cmds,
    constraint_def,
    has_preceding_check_constraint,
    relation_name,
    violation,
)
from migrationpilot.severity import Severity

if TYPE_CHECKING:
    from postgast import pg_query_pb2

    from migrationpilot.rules.engine import RuleContext, RuleViolation


def _safe_not_null(table: str, column: str, pg_version: int) -> str:
    if pg_version >= 18:
        return (
            "-- PG 18+ approach: SET NOT NULL NOT VALID + VALIDATE NOT NULL\n"
            "-- Step 1: Mark column NOT NULL without scanning (instant, brief lock)\n"
            f"ALTER TABLE {table} ALTER COLUMN {column} SET NOT NULL NOT VALID;\n"
            "\n"
            "-- Step 2: Validate separately (SHARE UPDATE EXCLUSIVE, allows reads + writes)\n"
            f"ALTER TABLE {table} VALIDATE NOT NULL {column};"
        )
    constraint = f"{table}_{column}_not_null"
    return (
        "-- Step 1: Add CHECK constraint (brief ACCESS EXCLUSIVE lock, no table scan)\n"
        f"ALTER TABLE {table} ADD CONSTRAINT {constraint}\n"
        f"  CHECK ({column} IS NOT NULL) NOT VALID;\n"
        "\n"
        "-- Step 2: Validate constraint (SHARE UPDATE EXCLUSIVE, allows reads + writes)\n"
        f"ALTER TABLE {table} VALIDATE CONSTRAINT {constraint};\n"
        "\n"
        "-- Step 3: Set NOT NULL using validated constraint (PG 12+, instant, uses existing CHECK)\n"
        f"ALTER TABLE {table} ALTER COLUMN {column} SET NOT NULL;\n"
        "\n"
        "-- Step 4: Clean up the CHECK constraint\n"
        f"ALTER TABLE {table} DROP CONSTRAINT {constraint};"
    )


class RequireCheckNotNullPattern:
    """Detects ``SET NOT NULL`` that is not backed by an earlier ``CHECK (col IS NOT NULL)`` constraint.

    From PostgreSQL 12 a validated ``CHECK`` constraint lets ``SET NOT NULL`` skip its table scan, so a ``CHECK`` on
    the same column earlier in the file suppresses the violation there. Older servers always scan.
    """

    id = "MP002"
    name = "require-check-not-null-pattern"
    severity = Severity.CRITICAL
    description = (
        "ALTER TABLE ... SET NOT NULL requires a full table scan to validate. Use the CHECK constraint pattern "
        "instead for large tables."
    )

    def check(self, node: pg_query_pb2.Node, ctx: RuleContext) -> RuleViolation | None:
        for alter, cmd in alter_table_cmds(node, "AT_SetNotNull"):
            table = relation_name(alter)
            column = cmd.name or "unknown"  # type: ignore[attr-defined]
            if ctx.pg_version >= 12 and has_preceding_check_constraint(ctx, table, column):
                continue
            return violation(
                self,
                ctx,
                f'SET NOT NULL on "{table}"."{column}" requires a full table scan under ACCESS EXCLUSIVE lock. Use '
                "the CHECK constraint pattern for zero-downtime.",
                safe_alternative=_safe_not_null(table, column, ctx.pg_version),
            )
        return None


class RequireNotValidForeignKey:
    """Detects ``ADD CONSTRAINT ... FOREIGN KEY`` without ``NOT VALID``."""

    id = "MP005"
    name = "require-not-valid-foreign-key"
    severity = Severity.CRITICAL
    description = "Adding a FK constraint without NOT VALID scans the entire table while holding its lock."

    def check(self, node: pg_query_pb2.Node, ctx: RuleContext) -> RuleViolation | None:
        for alter, cmd in alter_table_cmds(node, "AT_AddConstraint"):
            constraint = constraint_def(cmd)
            if constraint is None or enum_name(constraint, "contype") != "CONSTR_FOREIGN":
                continue
            if constraint.skip_validation:  # type: ignore[attr-defined]
                continue

            table = relation_name(alter)
            name = constraint.conname or "unnamed_fk"  # type: ignore[attr-defined]
            ref_table = constraint.pktable.relname or "unknown"  # type: ignore[attr-defined]
            return violation(
                self,
                ctx,
                f'FK constraint "{name}" on "{table}" -> "{ref_table}" without NOT VALID. This scans the entire '
                f"table while holding a {ctx.lock.lock_type.value} lock, blocking writes on both tables.",
                safe_alternative=(
                    "-- Step 1: Add FK with NOT VALID (brief lock, no scan)\n"
                    f"ALTER TABLE {table} ADD CONSTRAINT {name}\n"
                    f"  FOREIGN KEY (...) REFERENCES {ref_table} (...) NOT VALID;\n"
                    "\n"
                    "-- Step 2: Validate separately (SHARE UPDATE EXCLUSIVE, allows reads + writes)\n"
                    f"ALTER TABLE {table} VALIDATE CONSTRAINT {name};"
                ),
            )
        return None
