"""Configuration value objects and validation."""

from dataclasses import dataclass, field
from datetime import UTC, timedelta, tzinfo
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from powa_sentinel.config.durations import parse_duration
from powa_sentinel.domain import RankBy

VALID_NOTIFIER_TYPES = ("console", "wecom", "sqs")
VALID_EXPECTED_EXTENSIONS = ("pg_stat_kcache", "pg_qualstats")


class ConfigError(ValueError):
    """Raised when configuration cannot be loaded or fails validation."""

    def __init__(self, message: str, problems: list[str] | None = None) -> None:
        super().__init__(message)
        self.problems = problems or []


@dataclass(frozen=True, slots=True)
class DatabaseConfig:
    host: str = "127.0.0.1"
    port: int = 5432
    user: str = "powa_readonly"
    password: str = ""
    dbname: str = "powa"
    sslmode: str = "disable"
    expected_extensions: tuple[str, ...] = ()
    pool_min_size: int = 1
    pool_max_size: int = 5
    connection_lifetime_seconds: float = 300.0

    def connect_kwargs(self) -> dict[str, Any]:
        """Keyword arguments accepted by ``asyncpg.create_pool``."""
        return {
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "password": self.password or None,
            "database": self.dbname,
            "ssl": self.sslmode,
        }


@dataclass(frozen=True, slots=True)
class ScheduleConfig:
    # Six fields, seconds first: every Monday at 09:00:00.
    cron: str = "0 0 9 * * 1"
    timezone: str = "UTC"

    @property
    def location(self) -> tzinfo:
        if self.timezone.upper() == "UTC":
            return UTC
        return ZoneInfo(self.timezone)


@dataclass(frozen=True, slots=True)
class AnalysisConfig:
    window_duration: str = "24h"
    comparison_offset: str = "168h"
    timeout: str = "5m"

    @property
    def window(self) -> timedelta:
        return parse_duration(self.window_duration)

    @property
    def offset(self) -> timedelta:
        return parse_duration(self.comparison_offset)

    @property
    def run_timeout(self) -> timedelta:
        return parse_duration(self.timeout)


@dataclass(frozen=True, slots=True)
class SlowSQLRuleConfig:
    top_n: int = 10
    rank_by: str = RankBy.TOTAL_TIME.value


@dataclass(frozen=True, slots=True)
class RegressionRuleConfig:
    threshold_percent: float = 50.0


@dataclass(frozen=True, slots=True)
class IndexSuggestionRuleConfig:
    min_improvement_percent: float = 30.0


@dataclass(frozen=True, slots=True)
class RulesConfig:
    slow_sql: SlowSQLRuleConfig = field(default_factory=SlowSQLRuleConfig)
    regression: RegressionRuleConfig = field(default_factory=RegressionRuleConfig)
    index_suggestion: IndexSuggestionRuleConfig = field(default_factory=IndexSuggestionRuleConfig)


@dataclass(frozen=True, slots=True)
class NotifierConfig:
    type: str = "console"
    webhook_url: str = ""
    queue_url: str = ""
    region: str = "us-east-1"
    retries: int = 3
    retry_delay: str = "1s"

    @property
    def retry_delay_seconds(self) -> float:
        return parse_duration(self.retry_delay).total_seconds()


@dataclass(frozen=True, slots=True)
class ServerConfig:
    port: int = 8080
    deep_check: bool = False


@dataclass(frozen=True, slots=True)
class Config:
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    rules: RulesConfig = field(default_factory=RulesConfig)
    notifier: NotifierConfig = field(default_factory=NotifierConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    def validate(self) -> None:
        """Check every setting and raise ConfigError listing all problems."""
        problems: list[str] = []

        if not self.database.host:
            problems.append("database.host is required")

        seen_invalid: set[str] = set()
        for extension in self.database.expected_extensions:
            if extension in VALID_EXPECTED_EXTENSIONS or extension in seen_invalid:
                continue
            seen_invalid.add(extension)
            problems.append(
                f'database.expected_extensions contains "{extension}"; '
                f"allowed values: {', '.join(VALID_EXPECTED_EXTENSIONS)}"
            )

        try:
            self.schedule.location
        except (ZoneInfoNotFoundError, ValueError) as exc:
            problems.append(f"schedule.timezone is invalid: {exc}")

        for name, raw in (
            ("analysis.window_duration", self.analysis.window_duration),
            ("analysis.comparison_offset", self.analysis.comparison_offset),
            ("analysis.timeout", self.analysis.timeout),
            ("notifier.retry_delay", self.notifier.retry_delay),
        ):
            try:
                parse_duration(raw)
            except ValueError as exc:
                problems.append(f"{name} is invalid: {exc}")

        if self.notifier.type not in VALID_NOTIFIER_TYPES:
            problems.append(f"notifier.type must be one of: {', '.join(VALID_NOTIFIER_TYPES)}")
        if self.notifier.type == "wecom" and not self.notifier.webhook_url:
            problems.append("notifier.webhook_url is required when type is 'wecom'")
        if self.notifier.type == "sqs" and not self.notifier.queue_url:
            problems.append("notifier.queue_url is required when type is 'sqs'")
        if self.notifier.retries < 0:
            problems.append("notifier.retries must not be negative")

        if self.rules.slow_sql.top_n < 1:
            problems.append("rules.slow_sql.top_n must be at least 1")
        if self.rules.slow_sql.rank_by not in {member.value for member in RankBy}:
            problems.append(
                "rules.slow_sql.rank_by must be one of: "
                + ", ".join(member.value for member in RankBy)
            )

        if problems:
            raise ConfigError(
                "configuration errors:\n  - " + "\n  - ".join(problems),
                problems=problems,
            )
