import logging
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from typing import Any, Self

import asyncpg
import asyncpg.exceptions

from powa_sentinel.config import DatabaseConfig
from powa_sentinel.domain import IndexSuggestion, MetricSnapshot
from powa_sentinel.reader.delta import aggregate_snapshots, kcache_from_rows, merge_kcache
from powa_sentinel.reader.environment import DetectOnce, Environment, SchemaGeneration
from powa_sentinel.reader.exceptions import (
    ConnectivityError,
    OptionalFeatureUnavailable,
    QueryError,
    ReaderError,
    SchemaDetectionError,
)
from powa_sentinel.reader.queries import (
    DATABASE_LIST_SQL,
    EXTENSION_EXISTS_SQL,
    FLAT_KCACHE_TABLE,
    KCACHE_CANDIDATE_SCHEMAS,
    KCACHE_TABLE_SQL,
    POWA_VERSION_SQL,
    SERVER_VERSION_SQL,
    HistoryQueries,
    kcache_table_identifier,
    query_builder_for,
)

logger = logging.getLogger(__name__)

_CONNECTION_ERRORS = (asyncpg.PostgresConnectionError, asyncpg.InterfaceError, OSError)

# undefined_table (42P01) and insufficient_privilege (42501)
_MISSING_OR_FORBIDDEN = (
    asyncpg.exceptions.UndefinedTableError,
    asyncpg.exceptions.InsufficientPrivilegeError,
)

_MAX_LOGGED_SCAN_ERRORS = 3


class PowaReader:
    """Read-only access to a PoWA repository database.

    Detects the PostgreSQL and PoWA versions once, then serves window-scoped
    delta snapshots through the query builder matching the detected schema
    generation.

    Usage:
        async with PowaReader(config.database) as reader:
            current = await reader.get_current_metrics(timedelta(hours=24))

    For testing, pass an already-built pool; the reader will not close it.
    """

    MAX_QUERY_ROWS = 10000
    MAX_SUGGESTION_ROWS = 100

    def __init__(self, config: DatabaseConfig, pool: asyncpg.Pool | None = None) -> None:
        self._config = config
        self._pool = pool
        self._owns_pool = pool is None
        self._environment: DetectOnce[Environment] = DetectOnce(self._detect_environment)

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    async def connect(self) -> None:
        if self._pool is not None:
            return
        try:
            self._pool = await asyncpg.create_pool(
                min_size=self._config.pool_min_size,
                max_size=self._config.pool_max_size,
                max_inactive_connection_lifetime=self._config.connection_lifetime_seconds,
                **self._config.connect_kwargs(),
            )
        except TimeoutError:
            raise
        except (*_CONNECTION_ERRORS, asyncpg.PostgresError) as exc:
            raise ConnectivityError(
                f"opening connection pool to {self._config.host}:{self._config.port}: {exc}"
            ) from exc
        logger.info(
            "Connection pool opened to %s:%s/%s",
            self._config.host,
            self._config.port,
            self._config.dbname,
        )

    async def close(self) -> None:
        if self._pool is not None and self._owns_pool:
            await self._pool.close()
        self._pool = None

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("Reader not connected. Use async context manager.")
        return self._pool

    async def ping(self) -> None:
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
        except TimeoutError:
            raise
        except (*_CONNECTION_ERRORS, asyncpg.PostgresError) as exc:
            raise ConnectivityError(f"pinging database: {exc}") from exc

    async def detect_environment(self) -> Environment:
        return await self._environment.get()

    async def _detect_environment(self) -> Environment:
        try:
            async with self.pool.acquire() as conn:
                pg_version_num = int(await conn.fetchval(SERVER_VERSION_SQL))

                powa_version = await conn.fetchval(POWA_VERSION_SQL)
                if powa_version is None:
                    raise SchemaDetectionError("powa extension is not installed")
                generation = SchemaGeneration.from_powa_version(powa_version)

                has_kcache = bool(await conn.fetchval(EXTENSION_EXISTS_SQL, "pg_stat_kcache"))
                has_qualstats = bool(await conn.fetchval(EXTENSION_EXISTS_SQL, "pg_qualstats"))

                kcache_table = None
                if has_kcache:
                    kcache_table = await self._find_kcache_table(conn, generation)
        except TimeoutError:
            raise
        except SchemaDetectionError:
            raise
        except ValueError as exc:
            raise SchemaDetectionError(f"unrecognized version: {exc}") from exc
        except (*_CONNECTION_ERRORS, asyncpg.PostgresError) as exc:
            raise SchemaDetectionError(f"detecting PoWA environment: {exc}") from exc

        environment = Environment(
            pg_version_num=pg_version_num,
            powa_version=powa_version,
            has_kcache=has_kcache,
            has_qualstats=has_qualstats,
            kcache_table=kcache_table,
        )
        logger.info(
            "Extension check: pg_stat_kcache=%s (table=%s), pg_qualstats=%s, "
            "powa_version=%s, schema=%s",
            environment.has_kcache,
            environment.kcache_table,
            environment.has_qualstats,
            environment.powa_version,
            environment.generation.value,
        )
        self._check_expected_extensions(environment)
        return environment

    async def _find_kcache_table(
        self, conn: asyncpg.Connection, generation: SchemaGeneration
    ) -> str | None:
        if generation is SchemaGeneration.FLAT:
            return FLAT_KCACHE_TABLE

        try:
            row = await conn.fetchrow(KCACHE_TABLE_SQL, list(KCACHE_CANDIDATE_SCHEMAS))
        except asyncpg.PostgresError as exc:
            logger.warning("Error searching for kcache history table: %s. Disabling kcache.", exc)
            return None

        if row is None:
            logger.warning(
                "pg_stat_kcache is installed but no kcache history table was found in %s. "
                "Disabling kcache enrichment.",
                ", ".join(KCACHE_CANDIDATE_SCHEMAS),
            )
            return None

        try:
            identifier = kcache_table_identifier(row["schemaname"], row["tablename"])
        except ValueError as exc:
            logger.warning("Ignoring kcache table: %s. Disabling kcache.", exc)
            return None

        logger.info("Detected kcache history table: %s", identifier)
        return identifier

    def _check_expected_extensions(self, environment: Environment) -> None:
        for extension in self._config.expected_extensions:
            if extension not in environment.installed_extensions:
                logger.warning(
                    "Expected extension %s is not installed in the PoWA repository", extension
                )

    async def get_current_metrics(
        self, window: timedelta, now: datetime | None = None
    ) -> list[MetricSnapshot]:
        end_time = now or datetime.now(UTC)
        return await self.get_metrics(end_time - window, end_time)

    async def get_baseline_metrics(
        self, offset: timedelta, window: timedelta, now: datetime | None = None
    ) -> list[MetricSnapshot]:
        end_time = (now or datetime.now(UTC)) - offset
        return await self.get_metrics(end_time - window, end_time)

    async def get_metrics(self, start_time: datetime, end_time: datetime) -> list[MetricSnapshot]:
        """Fetch delta snapshots for ``[start_time, end_time]``.

        Raises:
            SchemaDetectionError: If the environment detection failed.
            ConnectivityError: If the database cannot be reached.
            QueryError: If the statements query fails.
        """
        environment = await self.detect_environment()
        queries = query_builder_for(environment)

        rows = await self._fetch(
            queries.statements_delta(),
            start_time,
            end_time,
            self.MAX_QUERY_ROWS,
            operation="querying powa_statements_history",
        )
        snapshots = aggregate_snapshots(rows)

        if environment.kcache_enabled and snapshots:
            try:
                snapshots = await self._enrich_with_kcache(queries, snapshots, start_time, end_time)
            except OptionalFeatureUnavailable as exc:
                logger.warning("Failed to enrich with kcache data: %s", exc)

        return snapshots

    async def _enrich_with_kcache(
        self,
        queries: HistoryQueries,
        snapshots: Sequence[MetricSnapshot],
        start_time: datetime,
        end_time: datetime,
    ) -> list[MetricSnapshot]:
        sql = queries.kcache_delta()
        if sql is None:
            return list(snapshots)

        try:
            rows = await self._fetch(
                sql,
                start_time,
                end_time,
                self.MAX_QUERY_ROWS,
                operation="querying kcache history",
            )
        except ReaderError as exc:
            raise OptionalFeatureUnavailable("pg_stat_kcache", str(exc)) from exc

        return merge_kcache(snapshots, kcache_from_rows(rows))

    async def get_index_suggestions(self) -> list[IndexSuggestion] | None:
        """Fetch missing-index suggestions from pg_qualstats.

        Returns None when pg_qualstats is not installed, or when its view is
        missing or not readable by this role.
        """
        environment = await self.detect_environment()
        if not environment.has_qualstats:
            return None

        queries = query_builder_for(environment)
        try:
            rows = await self._fetch(
                queries.suggestions(),
                self.MAX_SUGGESTION_ROWS,
                operation="querying powa_qualstats_indexes",
                optional_feature="pg_qualstats",
            )
        except OptionalFeatureUnavailable as exc:
            logger.warning("Skipping index suggestions: %s", exc)
            return None

        suggestions: list[IndexSuggestion] = []
        scan_errors = 0
        for row in rows:
            try:
                suggestions.append(self._suggestion_from_row(row))
            except (KeyError, TypeError, ValueError) as exc:
                scan_errors += 1
                if scan_errors <= _MAX_LOGGED_SCAN_ERRORS:
                    logger.warning("Failed to read index suggestion row: %s", exc)

        if scan_errors > _MAX_LOGGED_SCAN_ERRORS:
            logger.warning("%d index suggestion rows could not be read", scan_errors)

        return suggestions

    @staticmethod
    def _suggestion_from_row(row: Any) -> IndexSuggestion:
        return IndexSuggestion(
            table=row["table_name"],
            schema=row["schema_name"] or "",
            columns=tuple(str(column) for column in row["columns"] or ()),
            qual_type=row["qual_type"] or "",
            est_improvement_percent=float(row["est_improvement_percent"] or 0),
            affected_queries=int(row["affected_queries"] or 0),
            suggested_ddl=row["suggested_ddl"],
        )

    async def get_database_list(self) -> list[str]:
        rows = await self._fetch(DATABASE_LIST_SQL, operation="querying powa_databases")
        return [row["datname"] for row in rows]

    async def _fetch(
        self,
        sql: str,
        *args: Any,
        operation: str,
        optional_feature: str | None = None,
    ) -> list[Any]:
        try:
            async with self.pool.acquire() as conn:
                return await conn.fetch(sql, *args)
        except TimeoutError:
            raise
        except _MISSING_OR_FORBIDDEN as exc:
            if optional_feature is not None:
                raise OptionalFeatureUnavailable(optional_feature, str(exc)) from exc
            raise QueryError(f"{operation}: {exc}", operation=operation) from exc
        except _CONNECTION_ERRORS as exc:
            raise ConnectivityError(f"{operation}: {exc}") from exc
        except asyncpg.PostgresError as exc:
            raise QueryError(f"{operation}: {exc}", operation=operation) from exc
