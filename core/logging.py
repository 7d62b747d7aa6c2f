from __future__ import annotations

import logging

NOISY_LOGGERS = ("slack_bolt", "slack_sdk", "aiohttp.access")


def setup_logging(level: str = "INFO") -> None:
    """Configure application-wide logging."""

    # basicConfig is a no-op if already configured; force with handlers reset
    root = logging.getLogger()
    if root.handlers:
        for handler in list(root.handlers):
            root.removeHandler(handler)
    resolved = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=resolved,
        format="%(asctime)s | %(levelname)8s | %(name)s | %(message)s",
    )
    # Socket Mode logs every envelope at INFO
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved, logging.WARNING))


def get_plugin_logger(key: str) -> logging.Logger:
    return logging.getLogger(f"plugins.{key}")
