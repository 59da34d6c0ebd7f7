from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from migrationpilot import (
    AffectedQuery,
    LockLevel,
    ProductionContext,
    RuleViolation,
    Severity,
    TableStats,
    parse_migration,
    run_rules,
)

if TYPE_CHECKING:
    from migrationpilot import LockClassification, Rule, Statement


# -- Statement fixtures --------------------------------------------------------


@pytest.fixture
def index_statements() -> list[Statement]:
    return parse_migration("CREATE INDEX idx_users_email ON users (email);")


@pytest.fixture
def guarded_migration() -> str:
    return (
        "-- 0042_add_email_index.sql\n"
        "SET lock_timeout = '5s';\n"
        "CREATE INDEX CONCURRENTLY idx_users_email ON users (email);\n"
        "RESET lock_timeout;\n"
    )


@pytest.fixture
def production() -> ProductionContext:
    return ProductionContext.build(
        table_stats=[
            TableStats("users", row_count=5_000_000, total_bytes=2_000_000_000, index_count=4),
            TableStats("settings", row_count=12, total_bytes=8_192, index_count=1),
        ],
        affected_queries={
            "users": [
                AffectedQuery("101", "SELECT * FROM users WHERE id = $1", 60_000, 0.4, "api"),
                AffectedQuery("102", "UPDATE users SET last_seen = $1 WHERE id = $2", 15_000, 1.1, "worker"),
            ],
        },
        active_connections={"users": 50, "settings": 2},
    )


# -- Assertion helpers ---------------------------------------------------------


def lock_of(sql: str, pg_version: int = 17) -> LockClassification:
    """Return the lock classification of the only statement in *sql*."""
    statements = parse_migration(sql, pg_version)
    assert len(statements) == 1, f"expected one statement, got {len(statements)}"
    return statements[0].lock


def assert_lock(
    sql: str,
    level: LockLevel,
    *,
    long_held: bool = False,
    pg_version: int = 17,
) -> None:
    """Assert that *sql* takes *level*, long-held or not, and that the blocking flags follow from the level."""
    lock = lock_of(sql, pg_version)
    assert lock.lock_type is level, f"{sql!r}: expected {level.value}, got {lock.lock_type.value}"
    assert lock.long_held is long_held, f"{sql!r}: expected long_held={long_held}"
    if level is LockLevel.ACCESS_EXCLUSIVE:
        assert lock.blocks_reads and lock.blocks_writes


def check(
    sql: str,
    *rules: Rule,
    pg_version: int = 17,
    production: ProductionContext | None = None,
    overrides: dict[str, object] | None = None,
) -> list[RuleViolation]:
    """Run *rules* over *sql* and return the violations."""
    return run_rules(rules, parse_migration(sql, pg_version), pg_version, production=production, overrides=overrides)


def rule_ids(violations: list[RuleViolation]) -> list[str]:
    return [v.rule_id for v in violations]


def make_violation(rule_id: str, line: int, severity: Severity = Severity.CRITICAL) -> RuleViolation:
    return RuleViolation(rule_id=rule_id, rule_name=rule_id.lower(), severity=severity, message="test", line=line)
