"""Tests for configuration loading and validation."""

from datetime import UTC, timedelta
from pathlib import Path

import pytest

from powa_sentinel.config import (
    AnalysisConfig,
    Config,
    ConfigError,
    DatabaseConfig,
    NotifierConfig,
    RulesConfig,
    ScheduleConfig,
    SlowSQLRuleConfig,
    config_from_mapping,
    expand_env_vars,
    load_config,
)


def write_config(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestDefaults:
    def test_empty_mapping_uses_defaults(self) -> None:
        config = config_from_mapping({})
        assert config.database.host == "127.0.0.1"
        assert config.database.port == 5432
        assert config.database.user == "powa_readonly"
        assert config.database.dbname == "powa"
        assert config.schedule.cron == "0 0 9 * * 1"
        assert config.schedule.location is UTC
        assert config.analysis.window == timedelta(hours=24)
        assert config.analysis.offset == timedelta(hours=168)
        assert config.analysis.run_timeout == timedelta(minutes=5)
        assert config.rules.slow_sql.top_n == 10
        assert config.rules.slow_sql.rank_by == "total_time"
        assert config.rules.regression.threshold_percent == 50
        assert config.rules.index_suggestion.min_improvement_percent == 30
        assert config.notifier.type == "console"
        assert config.notifier.retries == 3
        assert config.notifier.retry_delay_seconds == 1.0
        assert config.server.port == 8080
        assert config.server.deep_check is False

    def test_zero_values_fall_back_to_defaults(self) -> None:
        config = config_from_mapping({"database": {"port": 0}, "rules": {"slow_sql": {"top_n": 0}}})
        assert config.database.port == 5432
        assert config.rules.slow_sql.top_n == 10

    def test_false_booleans_are_kept(self) -> None:
        config = config_from_mapping({"server": {"deep_check": False}})
        assert config.server.deep_check is False

    def test_defaults_pass_validation(self) -> None:
        Config().validate()


class TestLoadConfig:
    def test_loads_yaml_sections(self, tmp_path: Path) -> None:
        path = write_config(
            tmp_path,
            """
database:
  host: powa.internal
  port: 6432
  password: secret
  expected_extensions: [pg_stat_kcache, pg_qualstats]
schedule:
  cron: "0 */30 * * * *"
  timezone: Asia/Shanghai
rules:
  slow_sql:
    top_n: 5
    rank_by: mean_time
  regression:
    threshold_percent: 75
notifier:
  type: wecom
  webhook_url: https://qyapi.weixin.qq.com/cgi-bin/webhook/send?key=abc
  retry_delay: 2s
""",
        )
        config = load_config(path)
        assert config.database.host == "powa.internal"
        assert config.database.port == 6432
        assert config.database.expected_extensions == ("pg_stat_kcache", "pg_qualstats")
        assert config.schedule.timezone == "Asia/Shanghai"
        assert config.rules.slow_sql.top_n == 5
        assert config.rules.slow_sql.rank_by == "mean_time"
        assert config.rules.regression.threshold_percent == 75
        assert config.notifier.retry_delay_seconds == 2.0
        config.validate()

    def test_expands_environment_variables(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("POWA_PASSWORD", "from-env")
        monkeypatch.delenv("POWA_HOST", raising=False)
        path = write_config(
            tmp_path,
            "database:\n  host: ${POWA_HOST:-db.local}\n  password: ${POWA_PASSWORD}\n",
        )
        config = load_config(path)
        assert config.database.host == "db.local"
        assert config.database.password == "from-env"

    def test_missing_file_raises_config_error(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="reading config file"):
            load_config(tmp_path / "missing.yaml")

    def test_invalid_yaml_raises_config_error(self, tmp_path: Path) -> None:
        path = write_config(tmp_path, "database: [unclosed\n")
        with pytest.raises(ConfigError, match="parsing config file"):
            load_config(path)

    def test_non_mapping_document_raises_config_error(self, tmp_path: Path) -> None:
        path = write_config(tmp_path, "- just\n- a list\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_config(path)

    def test_section_must_be_mapping(self) -> None:
        with pytest.raises(ConfigError, match="database must be a mapping"):
            config_from_mapping({"database": "localhost"})


class TestExpandEnvVars:
    def test_unset_variable_without_default_becomes_empty(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("POWA_UNSET", raising=False)
        assert expand_env_vars("x=${POWA_UNSET}") == "x="

    def test_set_variable_wins_over_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("POWA_PORT", "6543")
        assert expand_env_vars("${POWA_PORT:-5432}") == "6543"


class TestValidate:
    def test_collects_every_problem(self) -> None:
        config = Config(
            schedule=ScheduleConfig(timezone="Mars/Olympus_Mons"),
            notifier=NotifierConfig(type="wecom", retries=-1),
            rules=RulesConfig(slow_sql=SlowSQLRuleConfig(top_n=0, rank_by="wall_time")),
        )
        with pytest.raises(ConfigError) as exc_info:
            config.validate()

        problems = exc_info.value.problems
        assert any("schedule.timezone" in p for p in problems)
        assert any("webhook_url is required" in p for p in problems)
        assert any("retries must not be negative" in p for p in problems)
        assert any("top_n must be at least 1" in p for p in problems)
        assert any("rank_by must be one of" in p for p in problems)
        assert str(exc_info.value).startswith("configuration errors:")

    def test_invalid_extension_reported_once(self) -> None:
        config = Config(
            database=DatabaseConfig(
                expected_extensions=("pg_stat_kcache", "pg_hint_plan", "pg_hint_plan")
            )
        )
        with pytest.raises(ConfigError) as exc_info:
            config.validate()

        problems = exc_info.value.problems
        assert len(problems) == 1
        assert '"pg_hint_plan"' in problems[0]

    def test_unknown_notifier_type(self) -> None:
        with pytest.raises(ConfigError, match="notifier.type must be one of"):
            Config(notifier=NotifierConfig(type="slack")).validate()

    def test_sqs_requires_queue_url(self) -> None:
        with pytest.raises(ConfigError, match="queue_url is required"):
            Config(notifier=NotifierConfig(type="sqs")).validate()

    def test_invalid_duration(self) -> None:
        with pytest.raises(ConfigError, match="analysis.window_duration is invalid"):
            Config(analysis=AnalysisConfig(window_duration="one day")).validate()


class TestConnectKwargs:
    def test_empty_password_becomes_none(self) -> None:
        kwargs = DatabaseConfig().connect_kwargs()
        assert kwargs["password"] is None
        assert kwargs["database"] == "powa"
        assert kwargs["ssl"] == "disable"
