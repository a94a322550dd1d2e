"""Detected repository environment and the lazy cell that caches it."""

import asyncio
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from types import TracebackType
from typing import Generic, TypeVar

T = TypeVar("T")

# pg_stat_statements renamed total_time to total_exec_time in PostgreSQL 13.
EXEC_TIME_RENAME_VERSION = 130000
NESTED_SCHEMA_MAJOR = 4

_MAJOR_VERSION = re.compile(r"^\s*(\d+)")


def parse_major_version(version: str) -> int:
    match = _MAJOR_VERSION.match(version)
    if match is None:
        raise ValueError(f"cannot parse major version from {version!r}")
    return int(match.group(1))


class SchemaGeneration(Enum):
    """Layout of the PoWA history tables."""

    FLAT = "flat"
    NESTED = "nested"

    @classmethod
    def from_powa_version(cls, version: str) -> "SchemaGeneration":
        if parse_major_version(version) >= NESTED_SCHEMA_MAJOR:
            return cls.NESTED
        return cls.FLAT


@dataclass(frozen=True, slots=True)
class Environment:
    """Versions and optional extensions found in the PoWA repository.

    ``kcache_table`` is an already-quoted identifier, or None when CPU/IO
    enrichment is disabled even though the extension may be installed.
    """

    pg_version_num: int
    powa_version: str
    has_kcache: bool = False
    has_qualstats: bool = False
    kcache_table: str | None = None

    @property
    def generation(self) -> SchemaGeneration:
        return SchemaGeneration.from_powa_version(self.powa_version)

    @property
    def exec_time_column(self) -> str:
        if self.pg_version_num >= EXEC_TIME_RENAME_VERSION:
            return "total_exec_time"
        return "total_time"

    @property
    def kcache_enabled(self) -> bool:
        return self.has_kcache and self.kcache_table is not None

    @property
    def installed_extensions(self) -> frozenset[str]:
        installed = {"powa"}
        if self.has_kcache:
            installed.add("pg_stat_kcache")
        if self.has_qualstats:
            installed.add("pg_qualstats")
        return frozenset(installed)


class DetectOnce(Generic[T]):
    """Run an async detection at most once and share its outcome.

    Concurrent callers wait on the same lock; after the first detection finishes
    every caller gets the cached value, or the cached exception re-raised.
    A detection interrupted by cancellation is not cached and runs again on the
    next call.
    """

    def __init__(self, detect: Callable[[], Awaitable[T]]) -> None:
        self._detect = detect
        self._lock = asyncio.Lock()
        self._done = False
        self._value: T | None = None
        self._error: Exception | None = None
        self._error_tb: TracebackType | None = None

    @property
    def done(self) -> bool:
        return self._done

    async def get(self) -> T:
        if not self._done:
            async with self._lock:
                if not self._done:
                    try:
                        self._value = await self._detect()
                    except Exception as exc:
                        self._error = exc
                        self._error_tb = exc.__traceback__
                    self._done = True

        if self._error is not None:
            raise self._error.with_traceback(self._error_tb)
        return self._value  # type: ignore[return-value]
