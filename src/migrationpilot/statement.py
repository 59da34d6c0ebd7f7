"""Turn migration SQL text into classified :class:`Statement` objects.

Parsing is delegated to libpg_query through :func:`postgast.parse`. This module only slices the source by each raw
statement's byte location, derives the 1-based line the statement starts on, and classifies its lock once.
"""

from __future__ import annotations

import dataclasses
import re
from typing import TYPE_CHECKING

import postgast

from migrationpilot._ast import node_kind
from migrationpilot.errors import AnalysisError
from migrationpilot.locks import DEFAULT_PG_VERSION, LockClassification, classify

if TYPE_CHECKING:
    from collections.abc import Iterable

    from postgast import pg_query_pb2

# Whitespace and comments libpg_query counts as part of the next statement's location.
_LEADING_NOISE = re.compile(rb"(?:\s+|--[^\n]*(?:\n|$)|/\*.*?\*/)*", re.DOTALL)


@dataclasses.dataclass(frozen=True)
class Statement:
    """One parsed statement of a migration file.

    Attributes:
        index: Zero-based position in the file.
        original_sql: Source text of the statement, without surrounding whitespace and leading comments.
        line: 1-based line on which the statement's first token sits.
        node: The ``pg_query_pb2.Node`` wrapper produced by the parser. Treat it as read-only.
        lock: Lock classification, computed once when the statement is built.
    """

    index: int
    original_sql: str
    line: int
    node: pg_query_pb2.Node = dataclasses.field(repr=False, compare=False)
    lock: LockClassification

    @property
    def kind(self) -> str | None:
        """The node tag naming the statement variant (``"index_stmt"``, ``"alter_table_stmt"``, ...)."""
        return node_kind(self.node)


def _statement_start(encoded: bytes, location: int, end: int) -> int:
    match = _LEADING_NOISE.match(encoded, location, end)
    return match.end() if match else location


def build_statements(
    raw: Iterable[tuple[pg_query_pb2.Node, int, int]],
    source: str,
    pg_version: int = DEFAULT_PG_VERSION,
) -> list[Statement]:
    """Build statements from already-parsed ``(node, location, length)`` triples.

    Args:
        raw: Parser output per statement. ``location`` and ``length`` are byte offsets into the UTF-8 encoded
            *source*, as libpg_query reports them; a length of ``0`` means "to the end of the input".
        source: The migration text the offsets refer to.
        pg_version: Target server major version, used for lock classification.

    Returns:
        One :class:`Statement` per triple, in order.
    """
    encoded = source.encode("utf-8")
    statements: list[Statement] = []
    for index, (node, location, length) in enumerate(raw):
        end = location + length if length else len(encoded)
        start = _statement_start(encoded, location, end)
        statements.append(
            Statement(
                index=index,
                original_sql=encoded[start:end].decode("utf-8", errors="replace").strip(),
                line=encoded.count(b"\n", 0, start) + 1,
                node=node,
                lock=classify(node, pg_version),
            )
        )
    return statements


def parse_migration(
    source: str, pg_version: int = DEFAULT_PG_VERSION, *, file_path: str = "<string>"
) -> list[Statement]:
    """Parse a migration file into classified statements.

    Args:
        source: SQL text of the migration, possibly containing many statements and comments.
        pg_version: Target server major version.
        file_path: Label reported in :class:`~migrationpilot.errors.AnalysisError`.

    Returns:
        The statements in file order; an empty list for input holding only whitespace and comments.

    Raises:
        AnalysisError: If libpg_query rejects the SQL.

    Example:
        >>> stmts = parse_migration("SET lock_timeout = '5s';\\nCREATE INDEX idx ON users (email);")
        >>> [(s.kind, s.line) for s in stmts]
        [('variable_set_stmt', 1), ('index_stmt', 2)]
    """
    try:
        tree = postgast.parse(source)
    except postgast.PgQueryError as e:
        raise AnalysisError(file_path, [e.message], cursorpos=e.cursorpos) from e
    return build_statements(((raw.stmt, raw.stmt_location, raw.stmt_len) for raw in tree.stmts), source, pg_version)
