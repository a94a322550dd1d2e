"""Configuration loading and validation."""

from powa_sentinel.config.durations import parse_duration
from powa_sentinel.config.loader import config_from_mapping, expand_env_vars, load_config
from powa_sentinel.config.models import (
    VALID_EXPECTED_EXTENSIONS,
    VALID_NOTIFIER_TYPES,
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

__all__ = [
    "VALID_EXPECTED_EXTENSIONS",
    "VALID_NOTIFIER_TYPES",
    "AnalysisConfig",
    "Config",
    "ConfigError",
    "DatabaseConfig",
    "IndexSuggestionRuleConfig",
    "NotifierConfig",
    "RegressionRuleConfig",
    "RulesConfig",
    "ScheduleConfig",
    "ServerConfig",
    "SlowSQLRuleConfig",
    "config_from_mapping",
    "expand_env_vars",
    "load_config",
    "parse_duration",
]
