"""Scans shared by the built-in rules."""

from __future__ import annotations

from typing import TYPE_CHECKING

from postgast.walk import unwrap_node

from migrationpilot._ast import column_refs, enum_name, has_field, node_kind
from migrationpilot.rules.engine import RuleViolation
from migrationpilot.transaction import DDL_KINDS

if TYPE_CHECKING:
    from collections.abc import Generator, Iterable

    from google.protobuf.message import Message

    from migrationpilot.rules.engine import Rule, RuleContext
    from migrationpilot.severity import Severity
    from migrationpilot.statement import Statement

# ALTER TYPE ... ADD VALUE locks the type, not a table.
TABLE_DDL_KINDS = DDL_KINDS - {"alter_enum_stmt"}


def violation(
    rule: Rule,
    ctx: RuleContext,
    message: str,
    *,
    safe_alternative: str | None = None,
    severity: Severity | None = None,
) -> RuleViolation:
    """Build a violation of *rule* located at the statement *ctx* describes."""
    return RuleViolation(
        rule_id=rule.id,
        rule_name=rule.name,
        severity=severity if severity is not None else rule.severity,
        message=message,
        line=ctx.line,
        safe_alternative=safe_alternative,
    )


def is_ddl(node: Message) -> bool:
    return node_kind(node) in TABLE_DDL_KINDS


def relation_name(stmt: Message, default: str = "unknown") -> str:
    """Return ``stmt.relation.relname``, or *default* when the statement has no relation."""
    if has_field(stmt, "relation") and stmt.relation.relname:  # type: ignore[attr-defined]
        return stmt.relation.relname  # type: ignore[attr-defined]
    return default


def alter_table_cmds(node: Message, subtype: str | None = None) -> Generator[tuple[Message, Message], None, None]:
    """Yield ``(AlterTableStmt, AlterTableCmd)`` pairs, optionally only those of *subtype* (e.g. ``"AT_AddColumn"``)."""
    if node_kind(node) != "alter_table_stmt":
        return
    alter = unwrap_node(node)
    for item in alter.cmds:  # type: ignore[attr-defined]
        cmd = unwrap_node(item)
        if subtype is None or enum_name(cmd, "subtype") == subtype:
            yield alter, cmd


def constraint_def(cmd: Message) -> Message | None:
    """Return the ``Constraint`` an ``AT_AddConstraint`` command adds, or ``None``."""
    if not has_field(cmd, "def"):
        return None
    constraint = unwrap_node(getattr(cmd, "def"))
    if type(constraint).DESCRIPTOR.name != "Constraint":
        return None
    return constraint


def has_preceding_lock_timeout(ctx: RuleContext) -> bool:
    """Return ``True`` if a statement before the current one sets ``lock_timeout``."""
    for stmt in ctx.previous_statements:
        setting = unwrap_node(stmt.node)
        if stmt.kind == "variable_set_stmt" and setting.name == "lock_timeout":  # type: ignore[attr-defined]
            return True
        if "lock_timeout" in stmt.original_sql.lower():
            return True
    return False


def has_preceding_check_constraint(ctx: RuleContext, table: str, column: str) -> bool:
    """Return ``True`` if an earlier ``ALTER TABLE`` on *table* adds a ``CHECK`` constraint mentioning *column*."""
    column = column.lower()
    for stmt in ctx.previous_statements:
        for alter, cmd in alter_table_cmds(stmt.node, "AT_AddConstraint"):
            if relation_name(alter) != table:
                continue
            constraint = constraint_def(cmd)
            if constraint is None or enum_name(constraint, "contype") != "CONSTR_CHECK":
                continue
            if column in (ref.lower() for ref in column_refs(constraint.raw_expr)):  # type: ignore[attr-defined]
                return True
    return False


def index_columns(stmt: Statement) -> tuple[str, list[str]] | None:
    """Return ``(table, columns)`` for a ``CREATE INDEX`` statement, or ``None`` for anything else."""
    if stmt.kind != "index_stmt":
        return None
    index = unwrap_node(stmt.node)
    columns = [p.index_elem.name for p in index.index_params if p.index_elem.name]  # type: ignore[attr-defined]
    return relation_name(index), columns


def has_covering_index(statements: Iterable[Statement], table: str, columns: Iterable[str]) -> bool:
    """Return ``True`` if any ``CREATE INDEX`` in *statements* on *table* covers every column in *columns*."""
    wanted = list(columns)
    for stmt in statements:
        found = index_columns(stmt)
        if found is None:
            continue
        index_table, indexed = found
        if index_table == table and all(column in indexed for column in wanted):
            return True
    return False
