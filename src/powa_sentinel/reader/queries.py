"""SQL for the PoWA repository, one builder per history-table generation.

Both builders return statements with the same parameters (``$1`` window
start, ``$2`` window end, ``$3`` row cap) and the same output columns: the
first and last cumulative readings of each counter inside the window. The
subtraction happens in ``powa_sentinel.reader.delta``.
"""

import re
from abc import ABC, abstractmethod

from powa_sentinel.reader.environment import Environment, SchemaGeneration

SERVER_VERSION_SQL = "SHOW server_version_num"

POWA_VERSION_SQL = "SELECT extversion FROM pg_extension WHERE extname = 'powa'"

EXTENSION_EXISTS_SQL = "SELECT EXISTS (SELECT 1 FROM pg_extension WHERE extname = $1)"

KCACHE_CANDIDATE_SCHEMAS = ("public", "powa")

# Prefer the canonical name, then the shortest, then the candidate order.
KCACHE_TABLE_SQL = r"""
    SELECT schemaname, tablename
    FROM pg_tables
    WHERE schemaname = ANY($1::text[])
      AND tablename LIKE 'powa\_%kcache%history'
    ORDER BY
        tablename = 'powa_kcache_history' DESC,
        length(tablename) ASC,
        array_position($1::text[], schemaname::text) ASC
    LIMIT 1
"""

FLAT_KCACHE_TABLE = '"public"."powa_kcache_metrics_history"'

KCACHE_TABLE_PATTERN = re.compile(r"^powa_[a-z0-9_]*kcache[a-z0-9_]*history$")

SUGGESTIONS_SQL = """
    SELECT
        relname AS table_name,
        nspname AS schema_name,
        array_agg(DISTINCT attname) AS columns,
        qualtype AS qual_type,
        avg_filter AS est_improvement_percent,
        count(*) AS affected_queries,
        min(suggestion) AS suggested_ddl
    FROM powa_qualstats_indexes
    WHERE suggestion IS NOT NULL
    GROUP BY relname, nspname, qualtype, avg_filter
    ORDER BY est_improvement_percent DESC
    LIMIT $1
"""

DATABASE_LIST_SQL = "SELECT DISTINCT datname FROM powa_databases ORDER BY datname"

STATEMENT_COUNTERS = ("calls", "exec_time")
KCACHE_COUNTERS = ("reads", "writes", "user_time", "system_time")


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def kcache_table_identifier(schema: str, table: str) -> str:
    """Quote a discovered kcache table, refusing anything off the allow-list."""
    if schema not in KCACHE_CANDIDATE_SCHEMAS:
        raise ValueError(f"unexpected schema for kcache table: {schema!r}")
    if not KCACHE_TABLE_PATTERN.match(table):
        raise ValueError(f"unexpected kcache table name: {table!r}")
    return f"{quote_identifier(schema)}.{quote_identifier(table)}"


def first_last_ctes(keys: tuple[str, ...], counters: tuple[str, ...]) -> str:
    """CTEs reducing ``samples`` to the first and last reading per key."""
    key_list = ", ".join(keys)
    readings = ",\n        ".join(
        f"max({counter}) FILTER (WHERE first_rank = 1) AS first_{counter},\n"
        f"        max({counter}) FILTER (WHERE last_rank = 1) AS last_{counter}"
        for counter in counters
    )
    return f"""
windowed AS (
    SELECT
        samples.*,
        row_number() OVER (PARTITION BY {key_list} ORDER BY ts ASC) AS first_rank,
        row_number() OVER (PARTITION BY {key_list} ORDER BY ts DESC) AS last_rank
    FROM samples
),
bounds AS (
    SELECT
        {key_list},
        {readings},
        max(ts) AS ts
    FROM windowed
    WHERE first_rank = 1 OR last_rank = 1
    GROUP BY {key_list}
)"""


def _readings(counters: tuple[str, ...]) -> str:
    return ",\n    ".join(
        f"COALESCE(b.first_{counter}, 0) AS first_{counter},\n"
        f"    COALESCE(b.last_{counter}, 0) AS last_{counter}"
        for counter in counters
    )


_ORDER_BY_TIME_DELTA = (
    "ORDER BY GREATEST(COALESCE(b.last_exec_time, 0) - COALESCE(b.first_exec_time, 0), 0) DESC"
)


class HistoryQueries(ABC):
    """Base for the per-generation statement builders."""

    def __init__(self, environment: Environment) -> None:
        self._environment = environment

    @abstractmethod
    def statements_delta(self) -> str:
        ...

    @abstractmethod
    def kcache_delta(self) -> str | None:
        """Return the kcache statement, or None when enrichment is disabled."""

    def suggestions(self) -> str:
        return SUGGESTIONS_SQL


class FlatSchemaQueries(HistoryQueries):
    """PoWA 3: one row per snapshot, single server."""

    def statements_delta(self) -> str:
        exec_time = self._environment.exec_time_column
        keys = ("queryid", "dbid", "userid")
        return f"""
WITH samples AS (
    SELECT h.queryid, h.dbid, h.userid, h.ts, h.calls, h.{exec_time} AS exec_time
    FROM powa_statements_history h
    WHERE h.ts >= $1::timestamptz AND h.ts <= $2::timestamptz
),{first_last_ctes(keys, STATEMENT_COUNTERS)}
SELECT
    b.queryid AS query_id,
    s.query,
    pd.datname AS database_name,
    {_readings(STATEMENT_COUNTERS)},
    b.ts
FROM bounds b
JOIN powa_databases pd ON pd.oid = b.dbid
JOIN powa_statements s
    ON s.queryid = b.queryid AND s.dbid = b.dbid AND s.userid = b.userid
{_ORDER_BY_TIME_DELTA}
LIMIT $3
"""

    def kcache_delta(self) -> str | None:
        if not self._environment.kcache_enabled:
            return None
        keys = ("queryid", "dbid", "userid")
        return f"""
WITH samples AS (
    SELECT k.queryid, k.dbid, k.userid, k.ts,
        k.reads, k.writes, k.user_time, k.system_time
    FROM {self._environment.kcache_table} k
    WHERE k.ts >= $1::timestamptz AND k.ts <= $2::timestamptz
),{first_last_ctes(keys, KCACHE_COUNTERS)}
SELECT
    b.queryid AS query_id,
    pd.datname AS database_name,
    {_readings(KCACHE_COUNTERS)}
FROM bounds b
JOIN powa_databases pd ON pd.oid = b.dbid
LIMIT $3
"""


class NestedSchemaQueries(HistoryQueries):
    """PoWA 4+: coalesced ``records`` arrays, several servers."""

    def statements_delta(self) -> str:
        keys = ("srvid", "queryid", "dbid", "userid")
        return f"""
WITH samples AS (
    SELECT h.srvid, h.queryid, h.dbid, h.userid,
        (r).ts AS ts, (r).calls AS calls, (r).total_exec_time AS exec_time
    FROM powa_statements_history h
    CROSS JOIN LATERAL unnest(h.records) AS r
    WHERE h.coalesce_range && tstzrange($1::timestamptz, $2::timestamptz, '[]')
      AND (r).ts >= $1::timestamptz AND (r).ts <= $2::timestamptz
),{first_last_ctes(keys, STATEMENT_COUNTERS)}
SELECT
    b.queryid AS query_id,
    s.query,
    pd.datname AS database_name,
    b.srvid AS server_id,
    COALESCE(srv.alias, srv.hostname || ':' || CAST(srv.port AS TEXT)) AS server_name,
    {_readings(STATEMENT_COUNTERS)},
    b.ts
FROM bounds b
JOIN powa_databases pd ON pd.srvid = b.srvid AND pd.oid = b.dbid
JOIN powa_statements s
    ON s.srvid = b.srvid AND s.queryid = b.queryid
    AND s.dbid = b.dbid AND s.userid = b.userid
JOIN powa_servers srv ON srv.id = b.srvid
{_ORDER_BY_TIME_DELTA}
LIMIT $3
"""

    def kcache_delta(self) -> str | None:
        if not self._environment.kcache_enabled:
            return None
        keys = ("srvid", "queryid", "dbid", "userid")
        return f"""
WITH samples AS (
    SELECT k.srvid, k.queryid, k.dbid, k.userid, (r).ts AS ts,
        (r).exec_reads AS reads, (r).exec_writes AS writes,
        (r).exec_user_time AS user_time, (r).exec_system_time AS system_time
    FROM {self._environment.kcache_table} k
    CROSS JOIN LATERAL unnest(k.records) AS r
    WHERE k.coalesce_range && tstzrange($1::timestamptz, $2::timestamptz, '[]')
      AND (r).ts >= $1::timestamptz AND (r).ts <= $2::timestamptz
),{first_last_ctes(keys, KCACHE_COUNTERS)}
SELECT
    b.queryid AS query_id,
    b.srvid AS server_id,
    pd.datname AS database_name,
    {_readings(KCACHE_COUNTERS)}
FROM bounds b
JOIN powa_databases pd ON pd.srvid = b.srvid AND pd.oid = b.dbid
LIMIT $3
"""


_BUILDERS: dict[SchemaGeneration, type[HistoryQueries]] = {
    SchemaGeneration.FLAT: FlatSchemaQueries,
    SchemaGeneration.NESTED: NestedSchemaQueries,
}


def query_builder_for(environment: Environment) -> HistoryQueries:
    return _BUILDERS[environment.generation](environment)
