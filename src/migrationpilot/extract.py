"""Extract the tables (and columns) a migration statement targets."""

from __future__ import annotations

import dataclasses
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from postgast.walk import unwrap_node

from migrationpilot._ast import enum_name, node_kind, string_values

if TYPE_CHECKING:
    from google.protobuf.message import Message

_DROPPABLE_RELATIONS = frozenset(
    {
        "OBJECT_TABLE",
        "OBJECT_INDEX",
        "OBJECT_VIEW",
        "OBJECT_MATVIEW",
        "OBJECT_SEQUENCE",
        "OBJECT_FOREIGN_TABLE",
    }
)


@dataclasses.dataclass(frozen=True)
class Target:
    """A relation touched by a statement.

    Attributes:
        table: Bare relation name, the key production statistics are looked up by.
        schema: Schema qualifier, or ``None`` when unqualified.
        columns: Columns the statement names (``ALTER TABLE`` and ``CREATE INDEX`` only).
        operation: Short description such as ``"ALTER TABLE"`` or ``"CREATE INDEX CONCURRENTLY"``.
    """

    table: str
    schema: str | None = None
    columns: tuple[str, ...] = ()
    operation: str = ""

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.table}" if self.schema else self.table


def _from_range_var(relation: Any, operation: str, columns: tuple[str, ...] = ()) -> Target | None:
    relname = getattr(relation, "relname", "")
    if not relname:
        return None
    return Target(table=relname, schema=relation.schemaname or None, columns=columns, operation=operation)


def _alter_table_columns(stmt: Any) -> tuple[str, ...]:
    columns: list[str] = []
    for item in stmt.cmds:
        cmd: Any = unwrap_node(item)
        if cmd.name:
            columns.append(cmd.name)
            continue
        colname = getattr(unwrap_node(getattr(cmd, "def")), "colname", "")
        if colname:
            columns.append(colname)
    return tuple(columns)


def _drop_targets(stmt: Any) -> list[Target]:
    if enum_name(stmt, "remove_type") not in _DROPPABLE_RELATIONS:
        return []
    targets: list[Target] = []
    for item in stmt.objects:
        parts = string_values(getattr(unwrap_node(item), "items", ()))
        if len(parts) == 1:
            targets.append(Target(table=parts[0], operation="DROP"))
        elif len(parts) >= 2:
            targets.append(Target(table=parts[-1], schema=parts[-2], operation="DROP"))
    return targets


# Statements whose single target is their ``relation`` field.
_RELATION_OPERATIONS = MappingProxyType(
    {
        "rename_stmt": "RENAME",
        "cluster_stmt": "CLUSTER",
        "reindex_stmt": "REINDEX",
        "update_stmt": "UPDATE",
        "delete_stmt": "DELETE",
        "insert_stmt": "INSERT",
    }
)


def extract_targets(node: Message) -> list[Target]:
    """Return the relations a statement targets, in the order they appear.

    Args:
        node: A ``pg_query_pb2.Node`` wrapper or a concrete statement message.

    Returns:
        The targets; empty for statements that target no relation (``SET``, ``CREATE FUNCTION``, ...).
    """
    kind = node_kind(node)
    stmt: Any = unwrap_node(node)
    found: list[Target | None] = []

    if kind == "alter_table_stmt":
        found.append(_from_range_var(stmt.relation, "ALTER TABLE", _alter_table_columns(stmt)))
    elif kind == "index_stmt":
        operation = "CREATE INDEX CONCURRENTLY" if stmt.concurrent else "CREATE INDEX"
        columns = tuple(p.index_elem.name for p in stmt.index_params if p.index_elem.name)
        found.append(_from_range_var(stmt.relation, operation, columns))
    elif kind == "create_stmt":
        found.append(_from_range_var(stmt.relation, "CREATE TABLE"))
    elif kind == "create_table_as_stmt":
        found.append(_from_range_var(stmt.into.rel, "CREATE TABLE"))
    elif kind == "drop_stmt":
        return _drop_targets(stmt)
    elif kind == "vacuum_stmt":
        operation = "VACUUM" if stmt.is_vacuumcmd else "ANALYZE"
        found.extend(_from_range_var(unwrap_node(rel).relation, operation) for rel in stmt.rels)
    elif kind == "refresh_mat_view_stmt":
        operation = "REFRESH MATERIALIZED VIEW"
        if stmt.concurrent:
            operation += " CONCURRENTLY"
        found.append(_from_range_var(stmt.relation, operation))
    elif kind == "truncate_stmt":
        found.extend(_from_range_var(unwrap_node(rel), "TRUNCATE") for rel in stmt.relations)
    elif kind == "lock_stmt":
        found.extend(_from_range_var(unwrap_node(rel), "LOCK") for rel in stmt.relations)
    elif kind in _RELATION_OPERATIONS:
        found.append(_from_range_var(stmt.relation, _RELATION_OPERATIONS[kind]))

    return [target for target in found if target is not None]


def primary_table(node: Message) -> str | None:
    """Return the bare name of the first table *node* targets, or ``None``."""
    targets = extract_targets(node)
    return targets[0].table if targets else None
