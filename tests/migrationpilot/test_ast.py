from __future__ import annotations

from postgast import parse, pg_query_pb2

from migrationpilot._ast import (
    bare_name,
    column_refs,
    def_elem_names,
    enum_name,
    function_names,
    node_kind,
    qualified_name,
)


def first_stmt(sql: str) -> pg_query_pb2.Node:
    return parse(sql).stmts[0].stmt


class TestNodeKind:
    def test_wrapper(self):
        assert node_kind(first_stmt("CREATE INDEX idx ON users (email)")) == "index_stmt"

    def test_concrete_message(self):
        assert node_kind(pg_query_pb2.IndexStmt()) == "index_stmt"

    def test_empty_wrapper(self):
        assert node_kind(pg_query_pb2.Node()) is None

    def test_message_outside_node(self):
        assert node_kind(pg_query_pb2.ParseResult()) is None


class TestFunctionNames:
    def test_unqualified_and_lower_cased(self):
        node = first_stmt("SELECT public.GEN_RANDOM_UUID(), now(), lower(name) FROM users")
        assert function_names(node) == ["gen_random_uuid", "now", "lower"]

    def test_nested_calls(self):
        node = first_stmt("ALTER TABLE t ADD COLUMN c text DEFAULT md5(random()::text)")
        assert function_names(node) == ["md5", "random"]

    def test_none(self):
        assert function_names(first_stmt("SELECT 1")) == []


class TestColumnRefs:
    def test_last_component(self):
        node = first_stmt("SELECT u.email, name FROM users u WHERE u.id = 1")
        assert column_refs(node) == ["email", "name", "id"]

    def test_star_is_skipped(self):
        assert column_refs(first_stmt("SELECT * FROM users")) == []

    def test_check_constraint(self):
        node = first_stmt("ALTER TABLE users ADD CONSTRAINT c CHECK (email IS NOT NULL) NOT VALID")
        assert column_refs(node) == ["email"]


class TestNames:
    def test_qualified_and_bare(self):
        stmt = first_stmt("DROP INDEX app.idx_users_email")
        (names,) = stmt.drop_stmt.objects
        assert qualified_name(names.list.items) == "app.idx_users_email"
        assert bare_name(names.list.items) == "idx_users_email"

    def test_bare_name_of_empty_list(self):
        assert bare_name([]) is None

    def test_enum_name(self):
        stmt = first_stmt("REINDEX TABLE users")
        assert enum_name(stmt.reindex_stmt, "kind") == "REINDEX_OBJECT_TABLE"

    def test_def_elem_names(self):
        stmt = first_stmt("VACUUM (FULL, VERBOSE) users")
        assert def_elem_names(stmt.vacuum_stmt.options) == {"full", "verbose"}
