"""Whole-file analysis: parse, classify, check, filter and score one migration."""

from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING

from migrationpilot.config import AnalysisConfig
from migrationpilot.extract import primary_table
from migrationpilot.locks import NO_TABLE_LOCK
from migrationpilot.log import get_logger
from migrationpilot.rules import ALL_RULES
from migrationpilot.rules.disable import filter_disabled_violations, find_stale_directives, parse_disable_directives
from migrationpilot.rules.engine import run_rules
from migrationpilot.scoring import calculate_risk, overall_risk
from migrationpilot.statement import parse_migration

if TYPE_CHECKING:
    from collections.abc import Iterable

    from migrationpilot.production import ProductionContext
    from migrationpilot.rules.disable import DisableDirective, StaleDirective
    from migrationpilot.rules.engine import Rule, RuleViolation
    from migrationpilot.scoring import RiskScore
    from migrationpilot.statement import Statement

logger = get_logger(__name__)


@dataclasses.dataclass(frozen=True)
class StatementResult:
    """Analysis of one statement.

    Attributes:
        statement: The parsed statement, with its lock classification.
        risk: Risk score from the lock and the production statistics of ``table``.
        violations: Violations reported on the statement's line.
        table: Bare name of the statement's primary target table, if it has one.
    """

    statement: Statement
    risk: RiskScore
    violations: tuple[RuleViolation, ...] = ()
    table: str | None = None


@dataclasses.dataclass(frozen=True)
class AnalysisResult:
    """Analysis of one migration file.

    Attributes:
        file: Path or label of the file.
        statements: One result per statement, in file order.
        violations: Every violation left after overrides and disable comments, sorted by line.
        overall_risk: The highest statement risk (first on ties); a neutral ``GREEN`` score for an empty file.
        stale_directives: Disable comments whose rule ids suppressed nothing.
        directives: Every disable comment found in the file.
    """

    file: str
    statements: tuple[StatementResult, ...]
    violations: tuple[RuleViolation, ...]
    overall_risk: RiskScore
    stale_directives: tuple[StaleDirective, ...] = ()
    directives: tuple[DisableDirective, ...] = ()

    @property
    def has_critical(self) -> bool:
        return any(v.severity == "critical" for v in self.violations)


def analyze_sql(
    source: str,
    *,
    pg_version: int | None = None,
    rules: Iterable[Rule] | None = None,
    production: ProductionContext | None = None,
    config: AnalysisConfig | None = None,
    file_path: str = "<string>",
) -> AnalysisResult:
    """Analyze a migration file.

    Args:
        source: SQL text of the migration.
        pg_version: Target server major version; defaults to ``config.pg_version``.
        rules: Rules to run; defaults to :data:`~migrationpilot.rules.ALL_RULES`.
        production: Production statistics for risk scoring and production-gated rules.
        config: Rule overrides and defaults.
        file_path: Path or label used in results and errors.

    Returns:
        The per-statement and whole-file results.

    Raises:
        AnalysisError: If the SQL does not parse.
        RuleEvaluationError: If every rule invocation failed.

    Example:
        >>> result = analyze_sql("CREATE INDEX idx ON users (email);")
        >>> result.overall_risk.level.value, [v.rule_id for v in result.violations]
        ('YELLOW', ['MP001', 'MP004'])
    """
    config = config if config is not None else AnalysisConfig()
    version = pg_version if pg_version is not None else config.pg_version
    rule_list = tuple(rules) if rules is not None else ALL_RULES

    statements = parse_migration(source, version, file_path=file_path)
    unfiltered = run_rules(rule_list, statements, version, production=production, overrides=config.rules)

    directives = parse_disable_directives(source)
    statement_lines = [s.line for s in statements]
    violations = filter_disabled_violations(unfiltered, directives, statement_lines)
    stale = find_stale_directives(directives, unfiltered, statement_lines)

    results: list[StatementResult] = []
    for stmt in statements:
        table = primary_table(stmt.node)
        table_stats = production.table_stats_for(table) if production is not None else None
        queries = production.affected_queries_for(table) if production is not None else None
        results.append(
            StatementResult(
                statement=stmt,
                risk=calculate_risk(stmt.lock, table_stats, queries),
                violations=tuple(v for v in violations if v.line == stmt.line),
                table=table,
            )
        )

    worst = overall_risk(r.risk for r in results) or calculate_risk(NO_TABLE_LOCK)
    logger.debug(
        "analysis_complete",
        file=file_path,
        statements=len(results),
        violations=len(violations),
        risk=worst.level.value,
        score=worst.score,
    )
    return AnalysisResult(
        file=file_path,
        statements=tuple(results),
        violations=tuple(violations),
        overall_risk=worst,
        stale_directives=tuple(stale),
        directives=tuple(directives),
    )
