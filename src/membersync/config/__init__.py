"""Environment-driven application configuration."""

from membersync.config.settings import AppConfig, get_config

__all__ = ["AppConfig", "get_config"]
