from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

ENV_TEMPLATE = """\
# Slack credentials for the bot user and the Socket Mode app-level token
SLACK_BOT_TOKEN=
SLACK_APP_TOKEN=
SLACK_SIGNING_SECRET=
# Channel id that receives operator warnings (missing roles, broken settings)
CONTROL_CHANNEL=
COMMAND_PREFIX=!
PROMPT_TIMEOUT=60
LOG_LEVEL=INFO
PLUGIN_PACKAGES=plugins
ENABLED_PLUGINS=
DATABASE_URL=sqlite+aiosqlite:///./bot.db
"""


class ConfigError(RuntimeError):
    """Raised when the instance configuration is missing or incomplete."""


@dataclass(slots=True)
class AppConfig:
    """Runtime configuration derived from environment variables."""

    slack_bot_token: str
    slack_app_token: str
    control_channel: str
    signing_secret: Optional[str] = None
    log_level: str = "INFO"
    command_prefix: str = "!"
    prompt_timeout: float = 60.0
    plugin_packages: List[str] = field(default_factory=lambda: ["plugins"])
    enabled_plugins: List[str] = field(default_factory=list)
    database_url: Optional[str] = None

    @classmethod
    def from_env(cls) -> "AppConfig":
        bot_token = os.getenv("SLACK_BOT_TOKEN")
        app_token = os.getenv("SLACK_APP_TOKEN")
        control_channel = os.getenv("CONTROL_CHANNEL")
        pairs = [
            ("SLACK_BOT_TOKEN", bot_token),
            ("SLACK_APP_TOKEN", app_token),
            ("CONTROL_CHANNEL", control_channel),
        ]
        missing = [name for name, value in pairs if not value]
        if missing:
            raise ConfigError(
                "Missing required environment variables: " + ", ".join(missing)
            )

        signing_secret = os.getenv("SLACK_SIGNING_SECRET") or None
        log_level = os.getenv("LOG_LEVEL", "INFO")

        command_prefix = os.getenv("COMMAND_PREFIX", "!").strip() or "!"

        raw_timeout = os.getenv("PROMPT_TIMEOUT", "60")
        try:
            prompt_timeout = float(raw_timeout)
        except ValueError as exc:
            raise ConfigError(f"PROMPT_TIMEOUT must be a number, got {raw_timeout!r}") from exc
        if prompt_timeout <= 0:
            raise ConfigError("PROMPT_TIMEOUT must be positive")

        plugin_packages_raw = os.getenv("PLUGIN_PACKAGES", "plugins")
        plugin_packages = [pkg.strip() for pkg in plugin_packages_raw.split(",") if pkg.strip()]

        enabled_plugins_raw = os.getenv("ENABLED_PLUGINS", "")
        enabled_plugins = [slug.strip() for slug in enabled_plugins_raw.split(",") if slug.strip()]

        raw_db_url = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./bot.db")
        database_url = raw_db_url.strip() or None

        return cls(
            slack_bot_token=bot_token,  # type: ignore[arg-type]
            slack_app_token=app_token,  # type: ignore[arg-type]
            control_channel=control_channel,  # type: ignore[arg-type]
            signing_secret=signing_secret,
            log_level=log_level,
            command_prefix=command_prefix,
            prompt_timeout=prompt_timeout,
            plugin_packages=plugin_packages,
            enabled_plugins=enabled_plugins,
            database_url=database_url,
        )


def ensure_env_file(path: Path) -> None:
    """Write an empty configuration template on first run.

    Raises ConfigError after creating the template so the operator fills it in
    before the bot connects anywhere.
    """

    if path.exists():
        return
    try:
        path.write_text(ENV_TEMPLATE, encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Failed to create configuration template at {path}") from exc
    raise ConfigError(f"Created {path}; fill in the Slack credentials and CONTROL_CHANNEL")
