"""Rule evaluation: run every enabled rule against every statement of a migration."""

from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from migrationpilot.config import parse_rule_overrides
from migrationpilot.errors import RuleEvaluationError
from migrationpilot.extract import primary_table
from migrationpilot.log import get_logger
from migrationpilot.rules.disable import filter_disabled_violations, parse_disable_directives
from migrationpilot.severity import Severity
from migrationpilot.transaction import TransactionContext, analyze_transactions

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from postgast import pg_query_pb2

    from migrationpilot.config import RuleOverride
    from migrationpilot.locks import LockClassification
    from migrationpilot.production import AffectedQuery, ProductionContext, TableStats
    from migrationpilot.statement import Statement

logger = get_logger(__name__)

__all__ = [
    "Rule",
    "RuleContext",
    "RuleViolation",
    "Severity",
    "apply_severity_overrides",
    "run_rules",
]


@dataclasses.dataclass(frozen=True, slots=True)
class RuleViolation:
    """A single finding.

    Attributes:
        rule_id: Rule identifier such as ``"MP001"``.
        rule_name: Kebab-case rule name.
        severity: Effective severity, after configuration overrides.
        message: What is wrong with the statement.
        line: Line of the offending statement.
        safe_alternative: SQL that achieves the same change safely, when the rule can suggest one.
    """

    rule_id: str
    rule_name: str
    severity: Severity
    message: str
    line: int
    safe_alternative: str | None = None


@dataclasses.dataclass(frozen=True)
class RuleContext:
    """Everything a rule may look at while checking one statement.

    ``all_statements`` is the same tuple for every context of a run; rules that look before or after the current
    statement slice it instead of copying it.
    """

    original_sql: str
    line: int
    pg_version: int
    lock: LockClassification
    all_statements: tuple[Statement, ...]
    statement_index: int
    transaction: TransactionContext = dataclasses.field(default_factory=TransactionContext)
    table_stats: TableStats | None = None
    affected_queries: tuple[AffectedQuery, ...] | None = None
    active_connections: int | None = None
    threshold: int | None = None

    @property
    def statement(self) -> Statement:
        return self.all_statements[self.statement_index]

    @property
    def previous_statements(self) -> tuple[Statement, ...]:
        """Statements before the current one, in file order."""
        return self.all_statements[: self.statement_index]

    @property
    def following_statements(self) -> tuple[Statement, ...]:
        """Statements after the current one, in file order."""
        return self.all_statements[self.statement_index + 1 :]


@runtime_checkable
class Rule(Protocol):
    """A migration safety rule.

    Implementations are stateless; ``check`` inspects one statement and returns at most one violation.
    """

    @property
    def id(self) -> str: ...
    @property
    def name(self) -> str: ...
    @property
    def severity(self) -> Severity: ...
    @property
    def description(self) -> str: ...
    def check(self, node: pg_query_pb2.Node, ctx: RuleContext) -> RuleViolation | None: ...


def apply_severity_overrides(
    violations: Iterable[RuleViolation], overrides: Mapping[str, RuleOverride]
) -> list[RuleViolation]:
    """Drop violations of disabled rules and rewrite the severity of overridden ones."""
    result: list[RuleViolation] = []
    for violation in violations:
        override = overrides.get(violation.rule_id)
        if override is None:
            result.append(violation)
        elif not override.enabled:
            continue
        elif override.severity is not None and override.severity != violation.severity:
            result.append(dataclasses.replace(violation, severity=override.severity))
        else:
            result.append(violation)
    return result


def run_rules(
    rules: Iterable[Rule],
    statements: Sequence[Statement],
    pg_version: int,
    production: ProductionContext | None = None,
    source: str | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> list[RuleViolation]:
    """Evaluate *rules* against *statements*.

    Args:
        rules: Rules to run. Rules disabled in *overrides* are skipped entirely.
        statements: Parsed statements of one file, in file order.
        pg_version: Target server major version.
        production: Production statistics; looked up by each statement's target table.
        source: Original file text. When given, ``migrationpilot-disable`` comments in it suppress violations.
        overrides: Rule id to ``bool``, ``dict`` or :class:`~migrationpilot.config.RuleOverride`.

    Returns:
        Violations sorted by line, then rule id. Statements sharing a line keep file order for the same rule.

    Raises:
        ConfigurationError: If *overrides* does not validate.
        RuleEvaluationError: If every single ``check`` invocation raised.
    """
    rule_overrides = parse_rule_overrides(overrides)
    enabled = [rule for rule in rules if _enabled(rule, rule_overrides)]
    all_statements = tuple(statements)
    transaction = analyze_transactions(all_statements)

    violations: list[RuleViolation] = []
    invocations = 0
    failures = 0
    last_error: Exception | None = None

    for position, stmt in enumerate(all_statements):
        table = primary_table(stmt.node) if production is not None else None
        base = RuleContext(
            original_sql=stmt.original_sql,
            line=stmt.line,
            pg_version=pg_version,
            lock=stmt.lock,
            all_statements=all_statements,
            statement_index=position,
            transaction=transaction,
            table_stats=production.table_stats_for(table) if production is not None else None,
            affected_queries=production.affected_queries_for(table) if production is not None else None,
            active_connections=production.active_connections_for(table) if production is not None else None,
        )
        for rule in enabled:
            override = rule_overrides.get(rule.id)
            ctx = base if override is None or override.threshold is None else _with_threshold(base, override)
            invocations += 1
            try:
                violation = rule.check(stmt.node, ctx)
            except Exception as e:
                failures += 1
                last_error = e
                logger.warning(
                    "rule_check_failed",
                    rule_id=rule.id,
                    statement_index=position,
                    line=stmt.line,
                    error=str(e),
                    exc_info=True,
                )
                continue
            if violation is not None:
                violations.append(violation)

    if invocations and failures == invocations:
        raise RuleEvaluationError(failures) from last_error

    violations.sort(key=lambda v: (v.line, v.rule_id))
    violations = apply_severity_overrides(violations, rule_overrides)

    if source is not None:
        directives = parse_disable_directives(source)
        if directives:
            violations = filter_disabled_violations(violations, directives, [s.line for s in all_statements])

    return violations


def _enabled(rule: Rule, overrides: Mapping[str, RuleOverride]) -> bool:
    override = overrides.get(rule.id)
    return override is None or override.enabled


def _with_threshold(ctx: RuleContext, override: RuleOverride) -> RuleContext:
    return dataclasses.replace(ctx, threshold=override.threshold)
