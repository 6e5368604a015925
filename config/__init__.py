"""Configuration package."""
from config.settings import (  # noqa: F401
    AccountSettings,
    BotSettings,
    ConfigError,
    Timeouts,
    load_settings,
)
