"""Plugin runtime for the Slack moderation bot."""

__all__ = [
    "builtin",
    "commands",
    "config",
    "configurator",
    "dispatch",
    "events",
    "logging",
    "permissions",
    "plugins",
    "prompts",
    "runtime",
    "slack",
    "state",
    "storage",
]
