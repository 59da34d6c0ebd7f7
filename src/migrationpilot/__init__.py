"""Static lock and risk analysis for PostgreSQL migrations."""

from migrationpilot.analyze import AnalysisResult, StatementResult, analyze_sql
from migrationpilot.config import AnalysisConfig, RuleOverride
from migrationpilot.errors import AnalysisError, ConfigurationError, MigrationPilotError, RuleEvaluationError
from migrationpilot.extract import Target, extract_targets, primary_table
from migrationpilot.locks import LockClassification, LockLevel, classify, lock_severity, most_severe
from migrationpilot.log import configure_logging, get_logger
from migrationpilot.production import AffectedQuery, ProductionContext, TableStats
from migrationpilot.rules import ALL_RULES, get_rule
from migrationpilot.rules.disable import (
    DisableDirective,
    StaleDirective,
    filter_disabled_violations,
    find_stale_directives,
    parse_disable_directives,
)
from migrationpilot.rules.engine import Rule, RuleContext, RuleViolation, apply_severity_overrides, run_rules
from migrationpilot.scoring import RiskFactor, RiskLevel, RiskScore, calculate_risk, overall_risk
from migrationpilot.severity import Severity
from migrationpilot.statement import Statement, build_statements, parse_migration
from migrationpilot.transaction import TransactionBlock, TransactionContext, analyze_transactions

__all__ = [
    "AffectedQuery",
    "ALL_RULES",
    "analyze_sql",
    "analyze_transactions",
    "AnalysisConfig",
    "AnalysisError",
    "AnalysisResult",
    "apply_severity_overrides",
    "build_statements",
    "calculate_risk",
    "classify",
    "configure_logging",
    "ConfigurationError",
    "DisableDirective",
    "extract_targets",
    "filter_disabled_violations",
    "find_stale_directives",
    "get_logger",
    "get_rule",
    "lock_severity",
    "LockClassification",
    "LockLevel",
    "MigrationPilotError",
    "most_severe",
    "overall_risk",
    "parse_disable_directives",
    "parse_migration",
    "primary_table",
    "ProductionContext",
    "RiskFactor",
    "RiskLevel",
    "RiskScore",
    "Rule",
    "RuleContext",
    "RuleEvaluationError",
    "RuleOverride",
    "RuleViolation",
    "run_rules",
    "Severity",
    "StaleDirective",
    "Statement",
    "StatementResult",
    "TableStats",
    "Target",
    "TransactionBlock",
    "TransactionContext",
]
