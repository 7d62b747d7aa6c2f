"""FastAPI + Slack Socket Mode bootstrap and plugin runtime wiring."""

import asyncio
import logging
import os
import sys
from contextlib import suppress
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from slack_bolt.adapter.fastapi.async_handler import AsyncSlackRequestHandler
from slack_bolt.adapter.socket_mode.aiohttp import AsyncSocketModeHandler

from core.config import AppConfig, ConfigError, ensure_env_file
from core.logging import setup_logging
from core.runtime import build_runtime
from core.slack import SlackGateway, bind_events, create_slack_app
from core.storage import create_storage

ENV_PATH = Path(os.getenv("BOT_ENV_FILE", ".env"))


def load_config() -> AppConfig:
    """Read the instance configuration or terminate the process."""

    try:
        # Containers pass credentials directly; only bare checkouts get a template
        if not os.getenv("SLACK_BOT_TOKEN"):
            ensure_env_file(ENV_PATH)
        load_dotenv(ENV_PATH)
        return AppConfig.from_env()
    except ConfigError as exc:
        setup_logging("ERROR")
        logging.getLogger(__name__).critical("Cannot start: %s", exc)
        sys.exit(1)


config = load_config()
setup_logging(config.log_level)
logger = logging.getLogger(__name__)

slack_app = create_slack_app(config)
api = FastAPI()
slack_handler = AsyncSlackRequestHandler(slack_app)
socket_mode_handler = AsyncSocketModeHandler(slack_app, config.slack_app_token)

storage = create_storage(config.database_url)
gateway = SlackGateway(slack_app.client)
runtime = build_runtime(config, storage, gateway, slack_app=slack_app)
bind_events(slack_app, runtime.dispatcher)


@api.on_event("startup")
async def start_services() -> None:
    await storage.init()
    await runtime.start()
    logger.info("Starting Socket Mode handler")
    api.state.socket_task = asyncio.create_task(socket_mode_handler.start_async())


@api.on_event("shutdown")
async def stop_services() -> None:
    logger.info("Stopping Socket Mode handler")
    await socket_mode_handler.close_async()
    task = getattr(api.state, "socket_task", None)
    if task:
        with suppress(asyncio.CancelledError):
            await task
    await storage.close()


@api.post("/slack/events")
async def slack_events(req: Request):
    return await slack_handler.handle(req)


@api.get("/health")
async def health_check() -> dict:
    plugins = runtime.plugins
    return {
        "ok": True,
        "plugins": len(plugins.plugins),
        "chat_commands": len(plugins.chat_commands),
        "reaction_commands": len(plugins.reaction_commands),
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app:api",
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "3000")),
        reload=False,
        log_level=os.environ.get("UVICORN_LOG_LEVEL", "info"),
    )
