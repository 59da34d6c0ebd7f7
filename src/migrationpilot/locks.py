"""Lock classification: which PostgreSQL table lock a statement takes, and for how long.

:func:`classify` maps one parsed statement and a target server version to a :class:`LockClassification`. The mapping
is a single decision procedure keyed by the statement's ``Node`` oneof tag:

* ``_CLASSIFIERS`` holds a function for every statement whose lock depends on its shape (sub-commands, option flags,
  ``CONCURRENTLY``) or on the server version.
* ``_FIXED`` holds statements whose lock never varies.
* ``_NO_TABLE_LOCK`` lists statements that take no lock any application query could contend with.

Unknown variants are classified, never ignored: a tag found in none of the three falls back to ``ACCESS SHARE`` and
is logged, so a libpg_query upgrade that adds statement types degrades to a visible default instead of an exception.
Modeling is best-effort; it follows the lock table in the PostgreSQL documentation, not every corner of every
release.
"""

from __future__ import annotations

import dataclasses
import enum
import functools
from types import MappingProxyType
from typing import TYPE_CHECKING

from postgast.walk import unwrap_node

from migrationpilot._ast import def_elem_names, enum_name, function_names, has_field, node_kind
from migrationpilot.log import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from google.protobuf.message import Message

logger = get_logger(__name__)

DEFAULT_PG_VERSION = 17


@functools.total_ordering
class LockLevel(enum.Enum):
    """PostgreSQL table lock modes modeled by the analyzer, declared weakest first."""

    ACCESS_SHARE = "ACCESS SHARE"
    ROW_EXCLUSIVE = "ROW EXCLUSIVE"
    SHARE_UPDATE_EXCLUSIVE = "SHARE UPDATE EXCLUSIVE"
    SHARE = "SHARE"
    SHARE_ROW_EXCLUSIVE = "SHARE ROW EXCLUSIVE"
    ACCESS_EXCLUSIVE = "ACCESS EXCLUSIVE"

    @property
    def rank(self) -> int:
        """Position in the severity order, ``0`` for ``ACCESS SHARE``."""
        return _RANKS[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, LockLevel):
            return NotImplemented
        return self.rank < other.rank

    def __str__(self) -> str:
        return self.value


_RANKS = MappingProxyType({level: i for i, level in enumerate(LockLevel)})

_BLOCKS_READS = frozenset({LockLevel.ACCESS_EXCLUSIVE})
_BLOCKS_WRITES = frozenset({LockLevel.SHARE, LockLevel.SHARE_ROW_EXCLUSIVE, LockLevel.ACCESS_EXCLUSIVE})


@dataclasses.dataclass(frozen=True, slots=True)
class LockClassification:
    """The lock a statement acquires and its effect on concurrent traffic.

    Attributes:
        lock_type: Strongest table lock the statement takes.
        blocks_reads: Concurrent ``SELECT`` queries on the table wait for the lock.
        blocks_writes: Concurrent ``INSERT``/``UPDATE``/``DELETE`` queries wait for the lock.
        long_held: The lock is held for a time that scales with table size (scan, rewrite, index build) rather than
            for a constant-time catalog update.
    """

    lock_type: LockLevel
    blocks_reads: bool
    blocks_writes: bool
    long_held: bool

    def __post_init__(self) -> None:
        if self.lock_type is LockLevel.ACCESS_EXCLUSIVE and not (self.blocks_reads and self.blocks_writes):
            msg = "ACCESS EXCLUSIVE locks always block both reads and writes"
            raise ValueError(msg)

    @classmethod
    def for_level(cls, level: LockLevel, *, long_held: bool = False) -> LockClassification:
        """Build a classification whose read/write blocking follows from *level*."""
        return cls(
            lock_type=level,
            blocks_reads=level in _BLOCKS_READS,
            blocks_writes=level in _BLOCKS_WRITES,
            long_held=long_held,
        )


def lock_severity(lock: LockClassification) -> tuple[int, bool]:
    """Sort key ranking locks by level, then by whether they are long-held."""
    return (lock.lock_type.rank, lock.long_held)


def most_severe(locks: Iterable[LockClassification]) -> LockClassification:
    """Return the most severe of *locks* (the first one wins ties); ``ACCESS SHARE`` for an empty input."""
    worst = NO_TABLE_LOCK
    for lock in locks:
        if lock_severity(lock) > lock_severity(worst):
            worst = lock
    return worst


NO_TABLE_LOCK = LockClassification.for_level(LockLevel.ACCESS_SHARE)

_ACCESS_EXCLUSIVE = LockClassification.for_level(LockLevel.ACCESS_EXCLUSIVE)
_ACCESS_EXCLUSIVE_LONG = LockClassification.for_level(LockLevel.ACCESS_EXCLUSIVE, long_held=True)
_SHARE_UPDATE_EXCLUSIVE = LockClassification.for_level(LockLevel.SHARE_UPDATE_EXCLUSIVE)
_SHARE_UPDATE_EXCLUSIVE_LONG = LockClassification.for_level(LockLevel.SHARE_UPDATE_EXCLUSIVE, long_held=True)
_SHARE_LONG = LockClassification.for_level(LockLevel.SHARE, long_held=True)
_SHARE_ROW_EXCLUSIVE = LockClassification.for_level(LockLevel.SHARE_ROW_EXCLUSIVE)
_SHARE_ROW_EXCLUSIVE_LONG = LockClassification.for_level(LockLevel.SHARE_ROW_EXCLUSIVE, long_held=True)
_ROW_EXCLUSIVE = LockClassification.for_level(LockLevel.ROW_EXCLUSIVE)
_ROW_EXCLUSIVE_LONG = LockClassification.for_level(LockLevel.ROW_EXCLUSIVE, long_held=True)

# Functions whose presence in an ADD COLUMN default forces a table rewrite before PostgreSQL 11.
VOLATILE_FUNCTIONS = frozenset(
    {
        "now",
        "random",
        "nextval",
        "clock_timestamp",
        "statement_timestamp",
        "timeofday",
        "txid_current",
        "gen_random_uuid",
        "uuid_generate_v1",
        "uuid_generate_v4",
    }
)

# Relation kinds whose RENAME/ALTER ... SET SCHEMA takes a table-level lock.
_RELATION_OBJECTS = frozenset(
    {
        "OBJECT_TABLE",
        "OBJECT_COLUMN",
        "OBJECT_TABCONSTRAINT",
        "OBJECT_INDEX",
        "OBJECT_VIEW",
        "OBJECT_MATVIEW",
        "OBJECT_SEQUENCE",
        "OBJECT_FOREIGN_TABLE",
        "OBJECT_TRIGGER",
        "OBJECT_POLICY",
        "OBJECT_RULE",
    }
)

# LOCK TABLE modes (lockdefs.h numbering) folded onto the modeled levels.
_LOCK_MODES = MappingProxyType(
    {
        1: LockLevel.ACCESS_SHARE,
        2: LockLevel.ACCESS_SHARE,  # ROW SHARE
        3: LockLevel.ROW_EXCLUSIVE,
        4: LockLevel.SHARE_UPDATE_EXCLUSIVE,
        5: LockLevel.SHARE,
        6: LockLevel.SHARE_ROW_EXCLUSIVE,
        7: LockLevel.SHARE_ROW_EXCLUSIVE,  # EXCLUSIVE: blocks writes, allows reads
        8: LockLevel.ACCESS_EXCLUSIVE,
    }
)


def is_concurrent(stmt: Message) -> bool:
    """Return ``True`` for ``CREATE INDEX``, ``DROP ...`` or ``REINDEX`` statements carrying ``CONCURRENTLY``."""
    inner = unwrap_node(stmt)
    kind = node_kind(stmt)
    if kind in ("index_stmt", "drop_stmt"):
        return bool(inner.concurrent)  # type: ignore[attr-defined]
    if kind == "reindex_stmt":
        # libpg_query 13 exposed a flag; later releases put CONCURRENTLY in the params list.
        params = def_elem_names(getattr(inner, "params", ()))
        return bool(getattr(inner, "concurrent", False)) or "concurrently" in params
    return False


# -- Per-statement classifiers ------------------------------------------------


def _index(stmt: Message, pg_version: int) -> LockClassification:
    if stmt.concurrent:  # type: ignore[attr-defined]
        return _SHARE_UPDATE_EXCLUSIVE
    return _SHARE_LONG


def _reindex(stmt: Message, pg_version: int) -> LockClassification:
    if is_concurrent(stmt):
        return _SHARE_UPDATE_EXCLUSIVE
    if enum_name(stmt, "kind") == "REINDEX_OBJECT_INDEX":
        return _SHARE_LONG
    return _ACCESS_EXCLUSIVE_LONG


def _drop(stmt: Message, pg_version: int) -> LockClassification:
    if stmt.concurrent:  # type: ignore[attr-defined]
        return _SHARE_UPDATE_EXCLUSIVE
    return _ACCESS_EXCLUSIVE


def _vacuum(stmt: Message, pg_version: int) -> LockClassification:
    if "full" in def_elem_names(stmt.options):  # type: ignore[attr-defined]
        return _ACCESS_EXCLUSIVE_LONG
    return _SHARE_UPDATE_EXCLUSIVE


def _refresh_matview(stmt: Message, pg_version: int) -> LockClassification:
    if stmt.concurrent:  # type: ignore[attr-defined]
        return _SHARE_ROW_EXCLUSIVE_LONG
    return _ACCESS_EXCLUSIVE_LONG


def _update_or_delete(stmt: Message, pg_version: int) -> LockClassification:
    if has_field(stmt, "where_clause"):
        return _ROW_EXCLUSIVE
    return _ROW_EXCLUSIVE_LONG


def _copy(stmt: Message, pg_version: int) -> LockClassification:
    if stmt.is_from:  # type: ignore[attr-defined]
        return _ROW_EXCLUSIVE
    return NO_TABLE_LOCK


def _lock_table(stmt: Message, pg_version: int) -> LockClassification:
    level = _LOCK_MODES.get(stmt.mode, LockLevel.ACCESS_EXCLUSIVE)  # type: ignore[attr-defined]
    return LockClassification.for_level(level)


def _rename(stmt: Message, pg_version: int) -> LockClassification:
    rename_type = enum_name(stmt, "rename_type")
    if rename_type == "OBJECT_INDEX" and pg_version >= 12:
        return _SHARE_UPDATE_EXCLUSIVE
    if rename_type in _RELATION_OBJECTS:
        return _ACCESS_EXCLUSIVE
    return NO_TABLE_LOCK


def _alter_object_schema(stmt: Message, pg_version: int) -> LockClassification:
    if enum_name(stmt, "object_type") in _RELATION_OBJECTS:
        return _ACCESS_EXCLUSIVE
    return NO_TABLE_LOCK


def _view(stmt: Message, pg_version: int) -> LockClassification:
    if stmt.replace:  # type: ignore[attr-defined]
        return _ACCESS_EXCLUSIVE
    return NO_TABLE_LOCK


def _explain(stmt: Message, pg_version: int) -> LockClassification:
    if "analyze" in def_elem_names(stmt.options) and has_field(stmt, "query"):  # type: ignore[attr-defined]
        return classify(stmt.query, pg_version)  # type: ignore[attr-defined]
    return NO_TABLE_LOCK


def _alter_domain(stmt: Message, pg_version: int) -> LockClassification:
    # AlterDomainStmt.subtype is a single character: C = ADD CONSTRAINT, O = SET NOT NULL.
    if stmt.subtype == "C":  # type: ignore[attr-defined]
        constraint = unwrap_node(getattr(stmt, "def"))
        if getattr(constraint, "skip_validation", False):
            return LockClassification.for_level(LockLevel.SHARE)
        return _SHARE_LONG
    if stmt.subtype == "O":  # type: ignore[attr-defined]
        return _SHARE_LONG
    return NO_TABLE_LOCK


def _alter_table(stmt: Message, pg_version: int) -> LockClassification:
    cmds = [unwrap_node(cmd) for cmd in stmt.cmds]  # type: ignore[attr-defined]
    if not cmds:
        return _ACCESS_EXCLUSIVE
    return most_severe(_alter_table_cmd(cmd, pg_version) for cmd in cmds)


# -- ALTER TABLE sub-commands -------------------------------------------------

_AT_ACCESS_EXCLUSIVE_LONG = frozenset(
    {
        "AT_AlterColumnType",
        "AT_SetNotNull",
        "AT_SetTableSpace",
        "AT_SetLogged",
        "AT_SetUnLogged",
    }
)
_AT_SHARE_UPDATE_EXCLUSIVE = frozenset(
    {
        "AT_SetStatistics",
        "AT_ClusterOn",
        "AT_DropCluster",
        "AT_SetRelOptions",
        "AT_ResetRelOptions",
        "AT_ReplaceRelOptions",
        "AT_DetachPartitionFinalize",
    }
)
_AT_SHARE_ROW_EXCLUSIVE = frozenset(
    {
        "AT_EnableTrig",
        "AT_EnableAlwaysTrig",
        "AT_EnableReplicaTrig",
        "AT_EnableTrigAll",
        "AT_EnableTrigUser",
        "AT_DisableTrig",
        "AT_DisableTrigAll",
        "AT_DisableTrigUser",
    }
)


def _alter_table_cmd(cmd: Message, pg_version: int) -> LockClassification:
    subtype = enum_name(cmd, "subtype")
    if subtype == "AT_AddColumn":
        return _add_column(getattr(cmd, "def"), pg_version)
    if subtype == "AT_AddConstraint":
        return _add_constraint(getattr(cmd, "def"))
    if subtype == "AT_ValidateConstraint":
        return _SHARE_UPDATE_EXCLUSIVE_LONG
    if subtype == "AT_AttachPartition":
        if pg_version >= 12:
            return _SHARE_UPDATE_EXCLUSIVE_LONG
        return _ACCESS_EXCLUSIVE_LONG
    if subtype == "AT_DetachPartition":
        partition_cmd = unwrap_node(getattr(cmd, "def"))
        if pg_version >= 14 and getattr(partition_cmd, "concurrent", False):
            return _SHARE_UPDATE_EXCLUSIVE
        return _ACCESS_EXCLUSIVE
    if subtype in _AT_ACCESS_EXCLUSIVE_LONG:
        return _ACCESS_EXCLUSIVE_LONG
    if subtype in _AT_SHARE_UPDATE_EXCLUSIVE:
        return _SHARE_UPDATE_EXCLUSIVE
    if subtype in _AT_SHARE_ROW_EXCLUSIVE:
        return _SHARE_ROW_EXCLUSIVE
    # DROP COLUMN, DROP CONSTRAINT, DROP NOT NULL, SET DEFAULT, OWNER TO, ... are catalog-only changes.
    return _ACCESS_EXCLUSIVE


def column_default(column_def: Message) -> Message | None:
    """Return the ``DEFAULT`` expression of a ``ColumnDef``, or ``None``."""
    column_def = unwrap_node(column_def)
    if has_field(column_def, "raw_default"):
        return column_def.raw_default  # type: ignore[attr-defined]
    for item in getattr(column_def, "constraints", ()):
        constraint = unwrap_node(item)
        if enum_name(constraint, "contype") == "CONSTR_DEFAULT":
            return constraint.raw_expr  # type: ignore[attr-defined]
    return None


def volatile_functions(expr: Message) -> list[str]:
    """Return the functions from :data:`VOLATILE_FUNCTIONS` called in *expr*, in encounter order."""
    return [name for name in function_names(expr) if name in VOLATILE_FUNCTIONS]


def _rewrites_on_add(column_def: Message) -> bool:
    for item in getattr(column_def, "constraints", ()):
        contype = enum_name(unwrap_node(item), "contype")
        if contype in ("CONSTR_GENERATED", "CONSTR_IDENTITY"):
            return True
    return False


def _add_column(column_def: Message, pg_version: int) -> LockClassification:
    column_def = unwrap_node(column_def)
    if _rewrites_on_add(column_def):
        return _ACCESS_EXCLUSIVE_LONG
    default = column_default(column_def)
    if default is not None and pg_version < 11:
        # Below 11 any default rewrites the table, volatile or not. From 11 on a default, now() included, is
        # classified as a catalog-only change.
        return _ACCESS_EXCLUSIVE_LONG
    return _ACCESS_EXCLUSIVE


def _add_constraint(constraint: Message) -> LockClassification:
    constraint = unwrap_node(constraint)
    contype = enum_name(constraint, "contype") if type(constraint).DESCRIPTOR.name == "Constraint" else ""
    not_valid = bool(getattr(constraint, "skip_validation", False))
    # A foreign key takes SHARE ROW EXCLUSIVE on both tables, never ACCESS EXCLUSIVE.
    if contype == "CONSTR_FOREIGN":
        return _SHARE_ROW_EXCLUSIVE if not_valid else _SHARE_ROW_EXCLUSIVE_LONG
    if contype in ("CONSTR_PRIMARY", "CONSTR_UNIQUE") and getattr(constraint, "indexname", ""):
        return _ACCESS_EXCLUSIVE
    if not_valid:
        return _ACCESS_EXCLUSIVE
    return _ACCESS_EXCLUSIVE_LONG


# -- Dispatch tables ----------------------------------------------------------

_CLASSIFIERS: MappingProxyType[str, Callable[[Message, int], LockClassification]] = MappingProxyType(
    {
        "index_stmt": _index,
        "reindex_stmt": _reindex,
        "alter_table_stmt": _alter_table,
        "drop_stmt": _drop,
        "vacuum_stmt": _vacuum,
        "refresh_mat_view_stmt": _refresh_matview,
        "update_stmt": _update_or_delete,
        "delete_stmt": _update_or_delete,
        "copy_stmt": _copy,
        "lock_stmt": _lock_table,
        "rename_stmt": _rename,
        "alter_object_schema_stmt": _alter_object_schema,
        "view_stmt": _view,
        "explain_stmt": _explain,
        "alter_domain_stmt": _alter_domain,
    }
)

_FIXED: MappingProxyType[str, LockClassification] = MappingProxyType(
    {
        # New relations: nobody else can hold a lock on them yet.
        "create_stmt": _ACCESS_EXCLUSIVE,
        "create_table_as_stmt": _ACCESS_EXCLUSIVE,
        "create_foreign_table_stmt": _ACCESS_EXCLUSIVE,
        "truncate_stmt": _ACCESS_EXCLUSIVE,
        "cluster_stmt": _ACCESS_EXCLUSIVE_LONG,
        "alter_table_move_all_stmt": _ACCESS_EXCLUSIVE_LONG,
        "alter_enum_stmt": _ACCESS_EXCLUSIVE,
        "create_policy_stmt": _ACCESS_EXCLUSIVE,
        "alter_policy_stmt": _ACCESS_EXCLUSIVE,
        "rule_stmt": _ACCESS_EXCLUSIVE,
        "dropdb_stmt": _ACCESS_EXCLUSIVE,
        "create_trig_stmt": _SHARE_ROW_EXCLUSIVE,
        "comment_stmt": _SHARE_UPDATE_EXCLUSIVE,
        "create_stats_stmt": _SHARE_UPDATE_EXCLUSIVE,
        "alter_stats_stmt": _SHARE_UPDATE_EXCLUSIVE,
        "insert_stmt": _ROW_EXCLUSIVE,
        "merge_stmt": _ROW_EXCLUSIVE,
    }
)

_NO_TABLE_LOCK = frozenset(
    {
        "select_stmt",
        "variable_set_stmt",
        "variable_show_stmt",
        "transaction_stmt",
        "do_stmt",
        "call_stmt",
        "create_function_stmt",
        "alter_function_stmt",
        "create_schema_stmt",
        "create_extension_stmt",
        "alter_extension_stmt",
        "alter_extension_contents_stmt",
        "create_enum_stmt",
        "create_range_stmt",
        "composite_type_stmt",
        "create_domain_stmt",
        "define_stmt",
        "alter_type_stmt",
        "alter_operator_stmt",
        "create_seq_stmt",
        "alter_seq_stmt",
        "grant_stmt",
        "grant_role_stmt",
        "alter_default_privileges_stmt",
        "create_role_stmt",
        "alter_role_stmt",
        "alter_role_set_stmt",
        "drop_role_stmt",
        "reassign_owned_stmt",
        "drop_owned_stmt",
        "alter_owner_stmt",
        "createdb_stmt",
        "alter_database_stmt",
        "alter_database_set_stmt",
        "alter_database_refresh_coll_stmt",
        "alter_system_stmt",
        "create_cast_stmt",
        "create_conversion_stmt",
        "create_op_class_stmt",
        "create_op_family_stmt",
        "alter_op_family_stmt",
        "create_plang_stmt",
        "create_transform_stmt",
        "create_am_stmt",
        "create_fdw_stmt",
        "alter_fdw_stmt",
        "create_foreign_server_stmt",
        "alter_foreign_server_stmt",
        "create_user_mapping_stmt",
        "alter_user_mapping_stmt",
        "drop_user_mapping_stmt",
        "import_foreign_schema_stmt",
        "create_table_space_stmt",
        "drop_table_space_stmt",
        "alter_table_space_options_stmt",
        "create_event_trig_stmt",
        "alter_event_trig_stmt",
        "create_publication_stmt",
        "alter_publication_stmt",
        "create_subscription_stmt",
        "alter_subscription_stmt",
        "drop_subscription_stmt",
        "alter_collation_stmt",
        "alter_tsdictionary_stmt",
        "alter_tsconfiguration_stmt",
        "sec_label_stmt",
        "constraints_set_stmt",
        "discard_stmt",
        "notify_stmt",
        "listen_stmt",
        "unlisten_stmt",
        "checkpoint_stmt",
        "load_stmt",
        "prepare_stmt",
        "execute_stmt",
        "deallocate_stmt",
        "declare_cursor_stmt",
        "fetch_stmt",
        "close_portal_stmt",
        "return_stmt",
        "plassign_stmt",
    }
)


def classify(stmt: Message, pg_version: int = DEFAULT_PG_VERSION) -> LockClassification:
    """Classify the table lock a statement acquires on a server running *pg_version*.

    Args:
        stmt: A ``pg_query_pb2.Node`` wrapper (as found in ``RawStmt.stmt``) or a concrete statement message such as
            ``IndexStmt``.
        pg_version: Major version of the target server. Several decisions branch on it (11 for fast column defaults,
            12 for non-blocking index renames and partition attach, 14 for concurrent partition detach).

    Returns:
        The classification. Never raises: statements with no table lock, and statement types this module does not
        know, are ``ACCESS SHARE``, not long-held, blocking nothing.

    Example:
        >>> from postgast import parse
        >>> stmt = parse("CREATE INDEX idx ON users (email)").stmts[0].stmt
        >>> lock = classify(stmt)
        >>> lock.lock_type.value, lock.long_held
        ('SHARE', True)
    """
    kind = node_kind(stmt)
    if kind is None:
        return NO_TABLE_LOCK
    classifier = _CLASSIFIERS.get(kind)
    if classifier is not None:
        return classifier(unwrap_node(stmt), pg_version)
    fixed = _FIXED.get(kind)
    if fixed is not None:
        return fixed
    if kind not in _NO_TABLE_LOCK:
        logger.debug("unclassified_statement", kind=kind)
    return NO_TABLE_LOCK


def classified_kinds() -> frozenset[str]:
    """Return every statement tag with an explicit classification branch."""
    return frozenset(_CLASSIFIERS) | frozenset(_FIXED) | _NO_TABLE_LOCK
