from __future__ import annotations

import pytest

from migrationpilot import AffectedQuery, ProductionContext, TableStats


class TestProductionContext:
    def test_lookups(self, production):
        assert production.table_stats_for("users").row_count == 5_000_000
        assert [q.query_id for q in production.affected_queries_for("users")] == ["101", "102"]
        assert production.active_connections_for("users") == 50

    def test_missing_table(self, production):
        assert production.table_stats_for("ghosts") is None
        assert production.affected_queries_for("settings") is None
        assert production.active_connections_for("ghosts") is None

    def test_none_table(self, production):
        assert production.table_stats_for(None) is None
        assert production.affected_queries_for(None) is None
        assert production.active_connections_for(None) is None

    def test_empty(self):
        ctx = ProductionContext()
        assert ctx.table_stats_for("users") is None
        assert ctx.active_connections_for("users") is None

    def test_build_freezes_inputs(self):
        queries = {"users": [AffectedQuery("1", "SELECT 1", 10)]}
        ctx = ProductionContext.build([TableStats("users", 10)], affected_queries=queries)
        queries["users"].append(AffectedQuery("2", "SELECT 2", 20))
        assert len(ctx.affected_queries_for("users")) == 1
        with pytest.raises(TypeError):
            ctx.table_stats["orders"] = TableStats("orders", 1)  # type: ignore[index]

    def test_defaults(self):
        stats = TableStats("users", row_count=1)
        query = AffectedQuery("1", "SELECT 1", calls=1)
        assert (stats.total_bytes, stats.index_count) == (0, 0)
        assert (query.mean_exec_time, query.service_name) == (0.0, None)
