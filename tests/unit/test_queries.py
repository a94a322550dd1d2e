import pytest

from powa_sentinel.reader import (
    Environment,
    FlatSchemaQueries,
    HistoryQueries,
    NestedSchemaQueries,
    query_builder_for,
)
from powa_sentinel.reader.queries import (
    FLAT_KCACHE_TABLE,
    SUGGESTIONS_SQL,
    kcache_table_identifier,
    quote_identifier,
)


def nested_env(**overrides: object) -> Environment:
    values: dict[str, object] = {"pg_version_num": 150004, "powa_version": "4.2.2"}
    values.update(overrides)
    return Environment(**values)  # type: ignore[arg-type]


def flat_env(**overrides: object) -> Environment:
    values: dict[str, object] = {"pg_version_num": 120010, "powa_version": "3.2.0"}
    values.update(overrides)
    return Environment(**values)  # type: ignore[arg-type]


class TestBuilderSelection:
    def test_nested_for_powa_4(self) -> None:
        assert isinstance(query_builder_for(nested_env()), NestedSchemaQueries)

    def test_flat_for_powa_3(self) -> None:
        assert isinstance(query_builder_for(flat_env()), FlatSchemaQueries)

    def test_base_builder_is_abstract(self) -> None:
        with pytest.raises(TypeError):
            HistoryQueries(flat_env())  # type: ignore[abstract]

    def test_builders_share_suggestions_sql(self) -> None:
        for env in (nested_env(), flat_env()):
            builder = query_builder_for(env)
            assert isinstance(builder, HistoryQueries)
            assert builder.suggestions() == SUGGESTIONS_SQL


class TestStatementsDelta:
    @pytest.mark.parametrize("env", [nested_env(), flat_env()])
    def test_parameterized_window_and_cap(self, env: Environment) -> None:
        sql = query_builder_for(env).statements_delta()
        assert "$1::timestamptz" in sql
        assert "$2::timestamptz" in sql
        assert "LIMIT $3" in sql

    @pytest.mark.parametrize("env", [nested_env(), flat_env()])
    def test_returns_first_and_last_readings(self, env: Environment) -> None:
        sql = query_builder_for(env).statements_delta()
        for column in ("first_calls", "last_calls", "first_exec_time", "last_exec_time"):
            assert f"AS {column}" in sql
        assert "row_number() OVER" in sql
        assert "ORDER BY ts ASC" in sql
        assert "ORDER BY ts DESC" in sql

    def test_nested_reads_records_and_servers(self) -> None:
        sql = query_builder_for(nested_env()).statements_delta()
        assert "unnest(h.records)" in sql
        assert "coalesce_range" in sql
        assert "powa_servers" in sql
        assert "AS server_name" in sql

    def test_flat_uses_version_specific_column(self) -> None:
        old = query_builder_for(flat_env(pg_version_num=120010)).statements_delta()
        new = query_builder_for(flat_env(pg_version_num=130002)).statements_delta()
        assert "h.total_time AS exec_time" in old
        assert "h.total_exec_time AS exec_time" in new

    def test_flat_has_no_server_columns(self) -> None:
        sql = query_builder_for(flat_env()).statements_delta()
        assert "server_name" not in sql
        assert "srvid" not in sql


class TestKCacheDelta:
    def test_disabled_without_table(self) -> None:
        env = nested_env(has_kcache=True, kcache_table=None)
        assert query_builder_for(env).kcache_delta() is None

    def test_uses_discovered_table(self) -> None:
        table = kcache_table_identifier("powa", "powa_kcache_history")
        env = nested_env(has_kcache=True, kcache_table=table)
        sql = query_builder_for(env).kcache_delta()
        assert sql is not None
        assert 'FROM "powa"."powa_kcache_history" k' in sql
        assert "first_reads" in sql and "last_system_time" in sql

    def test_flat_uses_fixed_table(self) -> None:
        env = flat_env(has_kcache=True, kcache_table=FLAT_KCACHE_TABLE)
        sql = query_builder_for(env).kcache_delta()
        assert sql is not None
        assert FLAT_KCACHE_TABLE in sql


class TestIdentifiers:
    def test_quote_identifier_escapes_quotes(self) -> None:
        assert quote_identifier('we"ird') == '"we""ird"'

    @pytest.mark.parametrize(
        ("schema", "table"),
        [
            ("pg_catalog", "powa_kcache_history"),
            ("public", "powa_kcache_history; DROP TABLE x"),
            ("public", "pg_stat_kcache"),
        ],
    )
    def test_rejects_unexpected_names(self, schema: str, table: str) -> None:
        with pytest.raises(ValueError):
            kcache_table_identifier(schema, table)

    def test_suggestions_are_capped(self) -> None:
        assert "LIMIT $1" in SUGGESTIONS_SQL
        assert query_builder_for(nested_env()).suggestions() == SUGGESTIONS_SQL
