"""Helpers for working with libpg_query protobuf statement trees.

Every statement reaches the analyzer as a ``pg_query_pb2.Node`` wrapper whose single ``oneof node`` field names the
concrete statement (``index_stmt``, ``alter_table_stmt``, ...). The functions here peel those wrappers and pull out the
handful of names the lock classifier, the transaction analyzer, and the rules need.
"""

from __future__ import annotations

import functools
from typing import TYPE_CHECKING

from postgast import find_nodes, pg_query_pb2
from postgast.walk import unwrap_node

if TYPE_CHECKING:
    from collections.abc import Iterable

    from google.protobuf.message import Message

_NODE_ONEOF = "node"


def is_node_wrapper(message: Message) -> bool:
    """Return ``True`` if *message* is a generic ``Node`` oneof wrapper."""
    oneofs = type(message).DESCRIPTOR.oneofs
    return len(oneofs) == 1 and oneofs[0].name == _NODE_ONEOF


def node_kind(message: Message) -> str | None:
    """Return the oneof tag naming the statement variant.

    For a ``Node`` wrapper this is the set oneof field (``"index_stmt"``). For a concrete message the tag is looked up
    from the ``Node`` descriptor, so ``IndexStmt`` maps to ``"index_stmt"`` as well. Returns ``None`` for an empty
    wrapper or a message type that never appears inside a ``Node``.
    """
    if is_node_wrapper(message):
        return message.WhichOneof(_NODE_ONEOF)
    return _tags_by_type_name().get(type(message).DESCRIPTOR.name)


def node_tags() -> tuple[str, ...]:
    """Return every oneof tag a ``Node`` wrapper can carry, in descriptor order."""
    return tuple(_tags_by_type_name().values())


@functools.cache
def _tags_by_type_name() -> dict[str, str]:
    fields = pg_query_pb2.Node.DESCRIPTOR.oneofs_by_name[_NODE_ONEOF].fields
    return {fd.message_type.name: fd.name for fd in fields if fd.message_type is not None}


def string_values(nodes: Iterable[Message]) -> list[str]:
    """Return the ``sval`` of every ``String`` node in a repeated ``Node`` field, skipping other node types."""
    values: list[str] = []
    for item in nodes:
        inner = unwrap_node(item)
        if type(inner).DESCRIPTOR.name == "String":
            values.append(inner.sval)  # type: ignore[attr-defined]
    return values


def qualified_name(nodes: Iterable[Message]) -> str:
    """Dot-join a name list such as ``FuncCall.funcname`` or ``AlterEnumStmt.type_name``."""
    return ".".join(string_values(nodes))


def bare_name(nodes: Iterable[Message]) -> str | None:
    """Return the last element of a qualified name list (the unqualified object name)."""
    parts = string_values(nodes)
    return parts[-1] if parts else None


def function_names(tree: Message) -> list[str]:
    """Return the unqualified, lower-cased names of every function called under *tree*."""
    names: list[str] = []
    for call in find_nodes(tree, pg_query_pb2.FuncCall):
        name = bare_name(call.funcname)
        if name:
            names.append(name.lower())
    return names


def column_refs(tree: Message) -> list[str]:
    """Return the last component of every ``ColumnRef`` under *tree* (``t.col`` yields ``"col"``)."""
    columns: list[str] = []
    for ref in find_nodes(tree, pg_query_pb2.ColumnRef):
        name = bare_name(ref.fields)
        if name:
            columns.append(name)
    return columns


def has_field(message: Message, name: str) -> bool:
    """Like ``HasField`` but ``False`` for repeated or unknown fields instead of raising."""
    try:
        return message.HasField(name)
    except ValueError:
        return False


def enum_name(message: Message, field: str) -> str:
    """Return the symbolic name of an enum field's value, e.g. ``"AT_AddColumn"`` for ``AlterTableCmd.subtype``.

    Comparing names instead of ``pg_query_pb2`` constants keeps the analyzer working across libpg_query releases that
    add or renumber enum members. Returns ``""`` for unknown values.
    """
    fd = type(message).DESCRIPTOR.fields_by_name[field]
    value = fd.enum_type.values_by_number.get(getattr(message, field))
    return value.name if value is not None else ""


def def_elem_names(options: Iterable[Message]) -> set[str]:
    """Return the lower-cased ``defname`` of every ``DefElem`` in an options list (``VACUUM (FULL)``, ``REINDEX``)."""
    names: set[str] = set()
    for item in options:
        inner = unwrap_node(item)
        if type(inner).DESCRIPTOR.name == "DefElem":
            names.add(inner.defname.lower())  # type: ignore[attr-defined]
    return names
