"""Transaction boundary analysis.

Migrations often wrap their statements in explicit ``BEGIN``/``COMMIT`` blocks. Whether a statement runs inside one
matters: ``CREATE INDEX CONCURRENTLY`` fails there, ``ALTER TYPE ... ADD VALUE`` could not run there before
PostgreSQL 12, and every lock taken inside a block is held until the block ends.
"""

from __future__ import annotations

import dataclasses
from types import MappingProxyType
from typing import TYPE_CHECKING

from postgast.walk import unwrap_node

from migrationpilot._ast import enum_name, node_kind
from migrationpilot.locks import is_concurrent
from migrationpilot.log import get_logger

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from migrationpilot.statement import Statement

logger = get_logger(__name__)

DDL_KINDS = frozenset(
    {
        "alter_table_stmt",
        "index_stmt",
        "create_stmt",
        "drop_stmt",
        "rename_stmt",
        "vacuum_stmt",
        "cluster_stmt",
        "reindex_stmt",
        "alter_enum_stmt",
    }
)

_BEGIN_KINDS = frozenset({"TRANS_STMT_BEGIN", "TRANS_STMT_START"})
_END_KINDS = frozenset({"TRANS_STMT_COMMIT", "TRANS_STMT_ROLLBACK"})
_BEGIN_TEXT = ("begin", "begin transaction")
_END_TEXT = ("commit", "rollback")


@dataclasses.dataclass(eq=False)
class TransactionBlock:
    """An explicit transaction found in a migration file.

    Attributes:
        begin_index: Index of the ``BEGIN`` statement.
        end_index: Index of the closing ``COMMIT``/``ROLLBACK``, or ``-1`` when the file never closes the block.
        ddl_indices: Indices of DDL statements inside the block.
        invalid_in_tx_indices: Indices of statements PostgreSQL refuses to run inside a transaction.
        begin_line: Line of the ``BEGIN`` statement.
    """

    begin_index: int
    begin_line: int
    end_index: int = -1
    ddl_indices: list[int] = dataclasses.field(default_factory=list)
    invalid_in_tx_indices: list[int] = dataclasses.field(default_factory=list)

    @property
    def terminated(self) -> bool:
        return self.end_index != -1


@dataclasses.dataclass(frozen=True)
class TransactionContext:
    """Transaction blocks of one file, plus the block (if any) enclosing each statement."""

    blocks: tuple[TransactionBlock, ...] = ()
    statement_to_block: Mapping[int, TransactionBlock] = dataclasses.field(
        default_factory=lambda: MappingProxyType({})
    )

    def block_for(self, index: int) -> TransactionBlock | None:
        """Return the block enclosing statement *index*, or ``None`` in autocommit mode."""
        return self.statement_to_block.get(index)

    def in_transaction(self, index: int) -> bool:
        return index in self.statement_to_block


def is_begin(stmt: Statement) -> bool:
    """Return ``True`` for ``BEGIN`` and ``START TRANSACTION``."""
    if stmt.kind == "transaction_stmt":
        return enum_name(unwrap_node(stmt.node), "kind") in _BEGIN_KINDS
    return stmt.original_sql.lower().rstrip(";").strip() in _BEGIN_TEXT


def is_end(stmt: Statement) -> bool:
    """Return ``True`` for ``COMMIT``/``END`` and ``ROLLBACK``/``ABORT`` (savepoint rollbacks do not count)."""
    if stmt.kind == "transaction_stmt":
        return enum_name(unwrap_node(stmt.node), "kind") in _END_KINDS
    return stmt.original_sql.lower().rstrip(";").strip() in _END_TEXT


def cannot_run_in_transaction(stmt: Statement) -> bool:
    """Return ``True`` for ``CREATE INDEX``, ``DROP`` and ``REINDEX`` with ``CONCURRENTLY``."""
    return is_concurrent(stmt.node)


def analyze_transactions(statements: Sequence[Statement]) -> TransactionContext:
    """Find the explicit transaction blocks in a file in a single pass.

    A ``BEGIN`` while another block is open starts tracking a new block; the earlier block is never closed and is
    left out of :attr:`TransactionContext.blocks`, although the statements seen so far stay mapped to it. PostgreSQL
    itself only warns about the nested ``BEGIN``, so this is logged as a warning rather than treated as an error. A
    ``COMMIT`` with no open block is ignored. A block still open at the end of the file is reported with
    ``end_index == -1``.
    """
    blocks: list[TransactionBlock] = []
    statement_to_block: dict[int, TransactionBlock] = {}
    current: TransactionBlock | None = None

    for i, stmt in enumerate(statements):
        if is_begin(stmt):
            if current is not None:
                logger.warning("nested_begin", line=stmt.line, open_block_line=current.begin_line)
            current = TransactionBlock(begin_index=i, begin_line=stmt.line)
            statement_to_block[i] = current
            continue

        if is_end(stmt):
            if current is not None:
                current.end_index = i
                statement_to_block[i] = current
                blocks.append(current)
                current = None
            continue

        if current is not None:
            statement_to_block[i] = current
            if node_kind(stmt.node) in DDL_KINDS:
                current.ddl_indices.append(i)
            if cannot_run_in_transaction(stmt):
                current.invalid_in_tx_indices.append(i)

    if current is not None:
        blocks.append(current)

    return TransactionContext(blocks=tuple(blocks), statement_to_block=MappingProxyType(statement_to_block))
