from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from core.builtin import BuiltinPlugin
from core.config import AppConfig
from core.configurator import ConfigurationWorkflow
from core.dispatch import Dispatcher
from core.events import EventRouter
from core.permissions import PermissionResolver
from core.plugins import PluginContext, PluginManager
from core.prompts import PromptCollector
from core.slack import OperatorAlerts, SlackGateway
from core.storage import Storage

if TYPE_CHECKING:  # pragma: no cover - typing only
    from slack_bolt.async_app import AsyncApp

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BotRuntime:
    context: PluginContext
    plugins: PluginManager
    dispatcher: Dispatcher
    workflow: ConfigurationWorkflow

    async def start(self) -> None:
        """Load discovered plugins, install built-ins, restore active plugins."""

        config = self.context.config
        for package in config.plugin_packages:
            self.plugins.discover(package, enabled=config.enabled_plugins)
        await self.plugins.register_all(self.context)
        await self.plugins.add_builtin(BuiltinPlugin(self.workflow))
        await self.plugins.initiate_all()
        logger.info(
            "Runtime ready: %d plugins, %d chat commands, %d reaction commands",
            len(self.plugins.plugins),
            len(self.plugins.chat_commands),
            len(self.plugins.reaction_commands),
        )


def build_runtime(
    config: AppConfig,
    storage: Storage,
    gateway: SlackGateway,
    slack_app: Optional["AsyncApp"] = None,
    event_router: Optional[EventRouter] = None,
) -> BotRuntime:
    event_router = event_router or EventRouter()
    alerts = OperatorAlerts(gateway, config.control_channel)
    prompts = PromptCollector(gateway, timeout=config.prompt_timeout)
    plugins = PluginManager(storage, event_router=event_router)
    permissions = PermissionResolver(plugins.permissions.state, alerts)  # type: ignore[arg-type]
    context = PluginContext(
        slack_app=slack_app,
        config=config,
        event_router=event_router,
        storage=storage,
        gateway=gateway,
        alerts=alerts,
        prompts=prompts,
        plugins=plugins,
        permissions=permissions,
    )
    plugins.attach_context(context)
    dispatcher = Dispatcher(
        plugins, permissions, prompts, gateway, command_prefix=config.command_prefix
    )
    workflow = ConfigurationWorkflow(plugins, prompts)
    return BotRuntime(context=context, plugins=plugins, dispatcher=dispatcher, workflow=workflow)
