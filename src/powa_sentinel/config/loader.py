import logging
import os
import re
from dataclasses import fields
from pathlib import Path
from typing import Any, TypeVar

import yaml

from powa_sentinel.config.models import (
    AnalysisConfig,
    Config,
    ConfigError,
    DatabaseConfig,
    IndexSuggestionRuleConfig,
    NotifierConfig,
    RegressionRuleConfig,
    RulesConfig,
    ScheduleConfig,
    ServerConfig,
    SlowSQLRuleConfig,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_ENV_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")


def expand_env_vars(text: str) -> str:
    """Replace ``${VAR}`` and ``${VAR:-default}`` with values from the environment."""

    def _substitute(match: re.Match[str]) -> str:
        name = match.group(1)
        default = match.group(2) or ""
        return os.environ.get(name, default)

    return _ENV_PATTERN.sub(_substitute, text)


def load_config(path: str | Path) -> Config:
    """Read a YAML configuration file and apply defaults.

    The result is not validated; call ``Config.validate()`` before use.
    """
    config_path = Path(path)
    try:
        raw_text = config_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"reading config file {config_path}: {exc}") from exc

    try:
        data = yaml.safe_load(expand_env_vars(raw_text)) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"parsing config file {config_path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"config file {config_path} must contain a mapping at the top level")

    return config_from_mapping(data)


def config_from_mapping(data: dict[str, Any]) -> Config:
    rules = _mapping(data, "rules")
    database = _section(DatabaseConfig, _mapping(data, "database"))
    return Config(
        database=database,
        schedule=_section(ScheduleConfig, _mapping(data, "schedule")),
        analysis=_section(AnalysisConfig, _mapping(data, "analysis")),
        rules=RulesConfig(
            slow_sql=_section(SlowSQLRuleConfig, _mapping(rules, "slow_sql")),
            regression=_section(RegressionRuleConfig, _mapping(rules, "regression")),
            index_suggestion=_section(
                IndexSuggestionRuleConfig, _mapping(rules, "index_suggestion")
            ),
        ),
        notifier=_section(NotifierConfig, _mapping(data, "notifier")),
        server=_section(ServerConfig, _mapping(data, "server")),
    )


def _mapping(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{key} must be a mapping, got {type(value).__name__}")
    return value


def _section(cls: type[T], raw: dict[str, Any]) -> T:
    """Build a section, keeping the default for any missing or zero value."""
    known = {f.name for f in fields(cls)}  # type: ignore[arg-type]
    kwargs: dict[str, Any] = {}
    for key, value in raw.items():
        if key not in known:
            logger.warning("Ignoring unknown configuration key %r in %s", key, cls.__name__)
            continue
        if value is None or value == "" or (value == 0 and not isinstance(value, bool)):
            continue
        if isinstance(value, list):
            value = tuple(str(item) for item in value)
        kwargs[key] = value
    return cls(**kwargs)
