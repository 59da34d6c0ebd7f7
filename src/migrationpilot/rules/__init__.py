"""Built-in migration safety rules and the engine that runs them."""

from __future__ import annotations

from migrationpilot.rules.columns import MultiAlterTableSameTable, NoColumnTypeChange, VolatileDefaultTableRewrite
from migrationpilot.rules.constraints import RequireCheckNotNullPattern, RequireNotValidForeignKey
from migrationpilot.rules.disable import (
    DisableDirective,
    StaleDirective,
    filter_disabled_violations,
    find_stale_directives,
    parse_disable_directives,
)
from migrationpilot.rules.engine import Rule, RuleContext, RuleViolation, apply_severity_overrides, run_rules
from migrationpilot.rules.indexes import (
    RequireConcurrentIndex,
    RequireConcurrentReindex,
    RequireDropIndexConcurrently,
    RequireIndexOnForeignKey,
)
from migrationpilot.rules.locking import NoVacuumFull, RequireLockTimeout, UnbatchedDataBackfill
from migrationpilot.rules.production import HighTrafficTableDdl, LargeTableDdl, NoExclusiveLockHighConnections
from migrationpilot.rules.transactions import (
    BanConcurrentInTransaction,
    BanUncommittedTransaction,
    NoEnumAddValueInTransaction,
    NoMultiDdlTransaction,
)

ALL_RULES: tuple[Rule, ...] = (
    RequireConcurrentIndex(),
    RequireCheckNotNullPattern(),
    VolatileDefaultTableRewrite(),
    RequireLockTimeout(),
    RequireNotValidForeignKey(),
    NoVacuumFull(),
    NoColumnTypeChange(),
    NoMultiDdlTransaction(),
    RequireDropIndexConcurrently(),
    UnbatchedDataBackfill(),
    NoEnumAddValueInTransaction(),
    HighTrafficTableDdl(),
    LargeTableDdl(),
    RequireIndexOnForeignKey(),
    NoExclusiveLockHighConnections(),
    RequireConcurrentReindex(),
    BanConcurrentInTransaction(),
    BanUncommittedTransaction(),
    MultiAlterTableSameTable(),
)

_RULES_BY_ID = {rule.id: rule for rule in ALL_RULES}


def get_rule(rule_id: str) -> Rule | None:
    """Return the built-in rule with *rule_id* (case-insensitive), or ``None``."""
    return _RULES_BY_ID.get(rule_id.upper())


__all__ = [
    "ALL_RULES",
    "BanConcurrentInTransaction",
    "BanUncommittedTransaction",
    "DisableDirective",
    "HighTrafficTableDdl",
    "LargeTableDdl",
    "MultiAlterTableSameTable",
    "NoColumnTypeChange",
    "NoEnumAddValueInTransaction",
    "NoExclusiveLockHighConnections",
    "NoMultiDdlTransaction",
    "NoVacuumFull",
    "RequireCheckNotNullPattern",
    "RequireConcurrentIndex",
    "RequireConcurrentReindex",
    "RequireDropIndexConcurrently",
    "RequireIndexOnForeignKey",
    "RequireLockTimeout",
    "RequireNotValidForeignKey",
    "Rule",
    "RuleContext",
    "RuleViolation",
    "StaleDirective",
    "UnbatchedDataBackfill",
    "VolatileDefaultTableRewrite",
    "apply_severity_overrides",
    "filter_disabled_violations",
    "find_stale_directives",
    "get_rule",
    "parse_disable_directives",
    "run_rules",
]
