from __future__ import annotations

import pytest
from postgast import parse, pg_query_pb2

from migrationpilot import LockClassification, LockLevel, classify, lock_severity, most_severe
from migrationpilot._ast import node_tags
from migrationpilot.locks import NO_TABLE_LOCK, classified_kinds, is_concurrent

from .conftest import assert_lock, lock_of

AE = LockLevel.ACCESS_EXCLUSIVE
SRE = LockLevel.SHARE_ROW_EXCLUSIVE
SHARE = LockLevel.SHARE
SUE = LockLevel.SHARE_UPDATE_EXCLUSIVE
RE = LockLevel.ROW_EXCLUSIVE
AS = LockLevel.ACCESS_SHARE


class TestLockLevel:
    def test_declared_weakest_first(self):
        assert [level.rank for level in LockLevel] == list(range(6))

    def test_ordering(self):
        assert AS < RE < SUE < SHARE < SRE < AE
        assert AE >= AE
        assert SHARE <= SRE
        assert AE > SHARE >= SHARE
        assert max(LockLevel) is AE

    def test_str_is_sql_name(self):
        assert str(SUE) == "SHARE UPDATE EXCLUSIVE"

    def test_comparison_with_other_types_is_unsupported(self):
        with pytest.raises(TypeError):
            _ = AE < 3  # type: ignore[operator]


class TestLockClassification:
    def test_access_exclusive_must_block_everything(self):
        with pytest.raises(ValueError, match="ACCESS EXCLUSIVE"):
            LockClassification(lock_type=AE, blocks_reads=False, blocks_writes=True, long_held=False)

    @pytest.mark.parametrize(
        ("level", "blocks_reads", "blocks_writes"),
        [
            (AS, False, False),
            (RE, False, False),
            (SUE, False, False),
            (SHARE, False, True),
            (SRE, False, True),
            (AE, True, True),
        ],
    )
    def test_for_level_derives_blocking(self, level, blocks_reads, blocks_writes):
        lock = LockClassification.for_level(level)
        assert (lock.blocks_reads, lock.blocks_writes, lock.long_held) == (blocks_reads, blocks_writes, False)

    def test_is_immutable(self):
        lock = LockClassification.for_level(SHARE)
        with pytest.raises(AttributeError):
            lock.long_held = True  # type: ignore[misc]


class TestMostSevere:
    def test_empty_is_no_table_lock(self):
        assert most_severe([]) == NO_TABLE_LOCK

    def test_long_held_breaks_level_ties(self):
        short = LockClassification.for_level(AE)
        long = LockClassification.for_level(AE, long_held=True)
        assert most_severe([short, long]) is long

    def test_level_beats_duration(self):
        share_long = LockClassification.for_level(SHARE, long_held=True)
        exclusive = LockClassification.for_level(AE)
        assert most_severe([share_long, exclusive]) is exclusive

    def test_first_wins_exact_ties(self):
        a = LockClassification.for_level(SUE)
        b = LockClassification.for_level(SUE)
        assert most_severe([a, b]) is a

    def test_severity_key(self):
        assert lock_severity(LockClassification.for_level(SHARE, long_held=True)) == (3, True)


class TestIndexes:
    def test_create_index(self):
        lock = lock_of("CREATE INDEX idx ON users (email)")
        assert lock.lock_type is SHARE
        assert lock.blocks_writes
        assert not lock.blocks_reads
        assert lock.long_held

    def test_create_index_concurrently(self):
        lock = lock_of("CREATE INDEX CONCURRENTLY idx ON users (email)")
        assert lock.lock_type is SUE
        assert not lock.blocks_reads
        assert not lock.blocks_writes
        assert not lock.long_held

    def test_drop_index(self):
        assert_lock("DROP INDEX idx", AE)

    def test_drop_index_concurrently(self):
        assert_lock("DROP INDEX CONCURRENTLY idx", SUE)

    def test_reindex_index(self):
        assert_lock("REINDEX INDEX idx", SHARE, long_held=True)

    def test_reindex_table(self):
        assert_lock("REINDEX TABLE users", AE, long_held=True)

    def test_reindex_concurrently(self):
        assert_lock("REINDEX INDEX CONCURRENTLY idx", SUE)

    @pytest.mark.parametrize(("pg_version", "level"), [(11, AE), (12, SUE)])
    def test_rename_index_depends_on_version(self, pg_version, level):
        assert_lock("ALTER INDEX idx RENAME TO idx2", level, pg_version=pg_version)


class TestAlterTable:
    def test_add_column_without_default(self):
        assert_lock("ALTER TABLE users ADD COLUMN nickname text", AE)

    @pytest.mark.parametrize(("pg_version", "long_held"), [(10, True), (11, False), (17, False)])
    def test_add_column_with_default(self, pg_version, long_held):
        sql = "ALTER TABLE users ADD COLUMN created_at timestamptz DEFAULT now()"
        assert_lock(sql, AE, long_held=long_held, pg_version=pg_version)

    @pytest.mark.parametrize(("pg_version", "long_held"), [(10, True), (11, False)])
    def test_add_column_with_constant_default(self, pg_version, long_held):
        assert_lock("ALTER TABLE users ADD COLUMN c int DEFAULT 0", AE, long_held=long_held, pg_version=pg_version)

    def test_add_generated_column_rewrites(self):
        assert_lock("ALTER TABLE t ADD COLUMN b int GENERATED ALWAYS AS (a * 2) STORED", AE, long_held=True)

    def test_alter_column_type(self):
        assert_lock("ALTER TABLE users ALTER COLUMN age TYPE bigint", AE, long_held=True)

    def test_set_not_null(self):
        assert_lock("ALTER TABLE users ALTER COLUMN email SET NOT NULL", AE, long_held=True)

    def test_drop_column_is_catalog_only(self):
        assert_lock("ALTER TABLE users DROP COLUMN nickname", AE)

    def test_foreign_key(self):
        sql = "ALTER TABLE orders ADD CONSTRAINT fk FOREIGN KEY (user_id) REFERENCES users (id)"
        assert_lock(sql, SRE, long_held=True)
        lock = lock_of(sql)
        assert (lock.blocks_reads, lock.blocks_writes) == (False, True)

    def test_foreign_key_not_valid(self):
        sql = "ALTER TABLE orders ADD CONSTRAINT fk FOREIGN KEY (user_id) REFERENCES users (id) NOT VALID"
        assert_lock(sql, SRE)

    def test_check_not_valid(self):
        assert_lock("ALTER TABLE users ADD CONSTRAINT c CHECK (email IS NOT NULL) NOT VALID", AE)

    def test_check_validated(self):
        assert_lock("ALTER TABLE users ADD CONSTRAINT c CHECK (age > 0)", AE, long_held=True)

    def test_primary_key_using_index(self):
        assert_lock("ALTER TABLE users ADD CONSTRAINT users_pkey PRIMARY KEY USING INDEX users_id_idx", AE)

    def test_validate_constraint(self):
        assert_lock("ALTER TABLE users VALIDATE CONSTRAINT c", SUE, long_held=True)

    def test_set_storage_parameters(self):
        assert_lock("ALTER TABLE users SET (fillfactor = 70)", SUE)

    def test_enable_trigger(self):
        assert_lock("ALTER TABLE users ENABLE TRIGGER trg", SRE)

    @pytest.mark.parametrize(("pg_version", "level", "long_held"), [(11, AE, True), (12, SUE, True)])
    def test_attach_partition(self, pg_version, level, long_held):
        sql = "ALTER TABLE measurements ATTACH PARTITION measurements_2024 FOR VALUES IN (2024)"
        assert_lock(sql, level, long_held=long_held, pg_version=pg_version)

    @pytest.mark.parametrize(("pg_version", "level"), [(13, AE), (14, SUE)])
    def test_detach_partition_concurrently(self, pg_version, level):
        sql = "ALTER TABLE measurements DETACH PARTITION measurements_2024 CONCURRENTLY"
        assert_lock(sql, level, pg_version=pg_version)

    def test_strongest_subcommand_wins(self):
        sql = "ALTER TABLE users ADD COLUMN a int, ALTER COLUMN b TYPE text, SET (fillfactor = 70)"
        assert_lock(sql, AE, long_held=True)

    def test_rename_column(self):
        assert_lock("ALTER TABLE users RENAME COLUMN email TO email_address", AE)


class TestMaintenance:
    def test_vacuum(self):
        assert_lock("VACUUM users", SUE)

    def test_vacuum_full(self):
        assert_lock("VACUUM FULL users", AE, long_held=True)

    def test_vacuum_full_option_list(self):
        assert_lock("VACUUM (FULL, ANALYZE) users", AE, long_held=True)

    def test_cluster(self):
        assert_lock("CLUSTER users USING users_pkey", AE, long_held=True)

    def test_refresh_materialized_view(self):
        assert_lock("REFRESH MATERIALIZED VIEW report", AE, long_held=True)

    def test_refresh_materialized_view_concurrently(self):
        assert_lock("REFRESH MATERIALIZED VIEW CONCURRENTLY report", SRE, long_held=True)

    def test_truncate(self):
        assert_lock("TRUNCATE users", AE)


class TestDataStatements:
    def test_update_without_where(self):
        assert_lock("UPDATE users SET active = true", RE, long_held=True)

    def test_update_with_where(self):
        assert_lock("UPDATE users SET active = true WHERE id = 1", RE)

    def test_delete_without_where(self):
        assert_lock("DELETE FROM users", RE, long_held=True)

    def test_insert(self):
        assert_lock("INSERT INTO users (id) VALUES (1)", RE)

    def test_copy_from(self):
        assert_lock("COPY users FROM STDIN", RE)

    def test_copy_to(self):
        assert_lock("COPY users TO STDOUT", AS)

    def test_select(self):
        assert_lock("SELECT * FROM users", AS)


class TestExplicitLocks:
    @pytest.mark.parametrize(
        ("mode", "level"),
        [
            ("ACCESS SHARE", AS),
            ("ROW SHARE", AS),
            ("ROW EXCLUSIVE", RE),
            ("SHARE UPDATE EXCLUSIVE", SUE),
            ("SHARE", SHARE),
            ("SHARE ROW EXCLUSIVE", SRE),
            ("EXCLUSIVE", SRE),
            ("ACCESS EXCLUSIVE", AE),
        ],
    )
    def test_lock_table_modes(self, mode, level):
        assert_lock(f"LOCK TABLE users IN {mode} MODE", level)

    def test_lock_table_defaults_to_access_exclusive(self):
        assert_lock("LOCK TABLE users", AE)


class TestOtherStatements:
    def test_create_table(self):
        assert_lock("CREATE TABLE t (id int PRIMARY KEY)", AE)

    def test_create_trigger(self):
        assert_lock("CREATE TRIGGER trg BEFORE INSERT ON users FOR EACH ROW EXECUTE FUNCTION audit()", SRE)

    def test_comment(self):
        assert_lock("COMMENT ON TABLE users IS 'people'", SUE)

    def test_create_or_replace_view(self):
        assert_lock("CREATE OR REPLACE VIEW v AS SELECT 1", AE)

    def test_create_view(self):
        assert_lock("CREATE VIEW v AS SELECT 1", AS)

    def test_alter_enum(self):
        assert_lock("ALTER TYPE mood ADD VALUE 'happy'", AE)

    def test_rename_table(self):
        assert_lock("ALTER TABLE users RENAME TO people", AE)

    def test_alter_table_set_schema(self):
        assert_lock("ALTER TABLE users SET SCHEMA archive", AE)

    def test_alter_function_set_schema_takes_no_table_lock(self):
        assert_lock("ALTER FUNCTION f() SET SCHEMA archive", AS)

    @pytest.mark.parametrize(
        "sql",
        [
            "SET lock_timeout = '5s'",
            "BEGIN",
            "CREATE EXTENSION IF NOT EXISTS pgcrypto",
            "CREATE SEQUENCE s",
            "GRANT SELECT ON users TO reader",
            "CREATE FUNCTION f() RETURNS int LANGUAGE sql AS 'SELECT 1'",
        ],
    )
    def test_no_table_lock(self, sql):
        assert lock_of(sql) == NO_TABLE_LOCK

    def test_explain_analyze_runs_the_statement(self):
        assert_lock("EXPLAIN ANALYZE UPDATE users SET active = true", RE, long_held=True)

    def test_plain_explain_does_not(self):
        assert_lock("EXPLAIN UPDATE users SET active = true", AS)

    def test_alter_domain_add_constraint(self):
        assert_lock("ALTER DOMAIN positive ADD CONSTRAINT c CHECK (VALUE > 0)", SHARE, long_held=True)

    def test_alter_domain_add_constraint_not_valid(self):
        assert_lock("ALTER DOMAIN positive ADD CONSTRAINT c CHECK (VALUE > 0) NOT VALID", SHARE)


class TestClassify:
    def test_accepts_concrete_message(self):
        stmt = parse("CREATE INDEX idx ON users (email)").stmts[0].stmt
        assert classify(stmt.index_stmt) == classify(stmt)

    def test_empty_node(self):
        assert classify(pg_query_pb2.Node()) == NO_TABLE_LOCK

    @pytest.mark.parametrize("tag", node_tags())
    def test_total_over_every_node_variant(self, tag):
        node = pg_query_pb2.Node()
        getattr(node, tag).SetInParent()
        for pg_version in (10, 17):
            lock = classify(node, pg_version)
            assert isinstance(lock, LockClassification)
            if lock.lock_type is AE:
                assert lock.blocks_reads and lock.blocks_writes

    def test_classified_kinds_are_node_tags(self):
        assert classified_kinds() <= set(node_tags())


class TestIsConcurrent:
    @pytest.mark.parametrize(
        ("sql", "expected"),
        [
            ("CREATE INDEX CONCURRENTLY idx ON users (email)", True),
            ("CREATE INDEX idx ON users (email)", False),
            ("DROP INDEX CONCURRENTLY idx", True),
            ("REINDEX TABLE CONCURRENTLY users", True),
            ("REINDEX TABLE users", False),
            ("REFRESH MATERIALIZED VIEW CONCURRENTLY report", False),
        ],
    )
    def test_is_concurrent(self, sql, expected):
        assert is_concurrent(parse(sql).stmts[0].stmt) is expected
