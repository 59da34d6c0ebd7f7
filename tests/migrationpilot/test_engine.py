from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from structlog.testing import capture_logs

from migrationpilot import (
    ALL_RULES,
    ConfigurationError,
    Rule,
    RuleContext,
    RuleEvaluationError,
    RuleOverride,
    RuleViolation,
    Severity,
    apply_severity_overrides,
    get_rule,
    parse_migration,
    run_rules,
)
from migrationpilot.rules import RequireConcurrentIndex, RequireLockTimeout

from .conftest import make_violation, rule_ids

if TYPE_CHECKING:
    from postgast import pg_query_pb2


class Flags:
    """Reports every statement."""

    id = "XP001"
    name = "flag-everything"
    severity = Severity.WARNING
    description = "Flags every statement."

    def __init__(self) -> None:
        self.contexts: list[RuleContext] = []

    def check(self, node: pg_query_pb2.Node, ctx: RuleContext) -> RuleViolation | None:
        self.contexts.append(ctx)
        return RuleViolation(self.id, self.name, self.severity, f"statement {ctx.statement_index}", ctx.line)


class Explodes:
    id = "XP002"
    name = "explodes"
    severity = Severity.CRITICAL
    description = "Always raises."

    def check(self, node: pg_query_pb2.Node, ctx: RuleContext) -> RuleViolation | None:
        msg = "boom"
        raise RuntimeError(msg)


MIGRATION = "SET lock_timeout = '5s';\nCREATE INDEX idx ON users (email);\nVACUUM FULL users;"


class TestRunRules:
    def test_no_statements(self):
        assert run_rules([Explodes()], [], 17) == []

    def test_context_per_statement(self):
        rule = Flags()
        run_rules([rule], parse_migration(MIGRATION), 15)
        assert [ctx.statement_index for ctx in rule.contexts] == [0, 1, 2]
        assert [ctx.line for ctx in rule.contexts] == [1, 2, 3]
        ctx = rule.contexts[1]
        assert ctx.original_sql == "CREATE INDEX idx ON users (email)"
        assert ctx.pg_version == 15
        assert ctx.statement.kind == "index_stmt"
        assert [s.kind for s in ctx.previous_statements] == ["variable_set_stmt"]
        assert [s.kind for s in ctx.following_statements] == ["vacuum_stmt"]
        assert ctx.all_statements is rule.contexts[0].all_statements
        assert ctx.table_stats is None
        assert ctx.threshold is None

    def test_transaction_context_is_shared(self):
        rule = Flags()
        run_rules([rule], parse_migration("BEGIN;\nCREATE TABLE t (id int);\nCOMMIT;"), 17)
        assert rule.contexts[1].transaction.in_transaction(1)
        assert rule.contexts[0].transaction is rule.contexts[2].transaction

    def test_production_is_looked_up_by_table(self, production):
        rule = Flags()
        run_rules([rule], parse_migration("ALTER TABLE users ADD COLUMN a int;\nSELECT 1;"), 17, production=production)
        users, select = rule.contexts
        assert users.table_stats.row_count == 5_000_000
        assert users.active_connections == 50
        assert len(users.affected_queries) == 2
        assert (select.table_stats, select.affected_queries, select.active_connections) == (None, None, None)

    def test_sorted_by_line_then_rule_id(self):
        statements = parse_migration("CREATE INDEX a ON t (x);\nCREATE INDEX b ON t (y);")
        violations = run_rules([RequireLockTimeout(), RequireConcurrentIndex()], statements, 17)
        assert [(v.line, v.rule_id) for v in violations] == [(1, "MP001"), (1, "MP004"), (2, "MP001"), (2, "MP004")]

    def test_violation_order_independent_of_rule_order(self):
        statements = parse_migration(
            "BEGIN;\nALTER TABLE users ALTER COLUMN email SET NOT NULL;\nCREATE INDEX idx ON users (email); "
            "VACUUM FULL users;\nALTER TABLE users ADD COLUMN a int DEFAULT now();"
        )
        forward = run_rules(ALL_RULES, statements, 10)
        backward = run_rules(tuple(reversed(ALL_RULES)), statements, 10)
        assert len(forward) > 5
        assert backward == forward
        assert [v.line for v in forward] == sorted(v.line for v in forward)

    def test_failing_rule_is_isolated(self):
        with capture_logs() as logs:
            violations = run_rules([Explodes(), Flags()], parse_migration("SELECT 1;"), 17)
        assert rule_ids(violations) == ["XP001"]
        (entry,) = logs
        assert entry["event"] == "rule_check_failed"
        assert entry["log_level"] == "warning"
        assert (entry["rule_id"], entry["line"], entry["error"]) == ("XP002", 1, "boom")

    def test_every_invocation_failing_raises(self):
        with capture_logs(), pytest.raises(RuleEvaluationError) as exc_info:
            run_rules([Explodes()], parse_migration("SELECT 1; SELECT 2;"), 17)
        assert exc_info.value.failures == 2
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    def test_disabled_rule_is_not_run(self):
        rule = Flags()
        assert run_rules([rule], parse_migration("SELECT 1;"), 17, overrides={"xp001": False}) == []
        assert rule.contexts == []

    def test_severity_override(self):
        violations = run_rules(
            [RequireConcurrentIndex()],
            parse_migration("CREATE INDEX a ON t (x);"),
            17,
            overrides={"MP001": {"severity": "warning"}},
        )
        assert [v.severity for v in violations] == [Severity.WARNING]

    def test_threshold_reaches_context(self):
        rule = Flags()
        run_rules([rule], parse_migration("SELECT 1;"), 17, overrides={"XP001": RuleOverride(threshold=7)})
        assert rule.contexts[0].threshold == 7

    def test_invalid_overrides(self):
        with pytest.raises(ConfigurationError):
            run_rules([Flags()], parse_migration("SELECT 1;"), 17, overrides={"XP001": {"threshold": "lots"}})

    def test_source_enables_disable_comments(self):
        source = "-- migrationpilot-disable MP001\nCREATE INDEX a ON t (x);"
        statements = parse_migration(source)
        rules = [RequireConcurrentIndex(), RequireLockTimeout()]
        assert rule_ids(run_rules(rules, statements, 17)) == ["MP001", "MP004"]
        assert rule_ids(run_rules(rules, statements, 17, source=source)) == ["MP004"]


class TestApplySeverityOverrides:
    def test_rewrites_and_drops(self):
        violations = [make_violation("MP001", 1), make_violation("MP004", 1), make_violation("MP006", 2)]
        overrides = {"MP001": RuleOverride(severity=Severity.WARNING), "MP004": RuleOverride(enabled=False)}
        result = apply_severity_overrides(violations, overrides)
        assert [(v.rule_id, v.severity) for v in result] == [("MP001", "warning"), ("MP006", "critical")]

    def test_unchanged_violation_is_kept_as_is(self):
        violation = make_violation("MP001", 1)
        (result,) = apply_severity_overrides([violation], {"MP001": RuleOverride(severity=Severity.CRITICAL)})
        assert result is violation


class TestRegistry:
    def test_all_rules_satisfy_protocol(self):
        for rule in ALL_RULES:
            assert isinstance(rule, Rule)
            assert rule.severity in (Severity.CRITICAL, Severity.WARNING)
            assert rule.description

    def test_ids_are_unique_and_ordered(self):
        ids = [rule.id for rule in ALL_RULES]
        assert len(ids) == 19
        assert ids == sorted(set(ids))

    def test_names_are_kebab_case(self):
        for rule in ALL_RULES:
            assert rule.name == rule.name.lower()
            assert " " not in rule.name

    def test_get_rule(self):
        assert isinstance(get_rule("mp001"), RequireConcurrentIndex)
        assert get_rule("MP999") is None

    def test_custom_rule_satisfies_protocol(self):
        assert isinstance(Flags(), Rule)
