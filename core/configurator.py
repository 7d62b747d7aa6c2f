"""Walks a plugin's setup template, storing each answer in its config section."""

from __future__ import annotations

import enum
import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, Optional

from core.permissions import CONFIG_SECTION
from core.prompts import PromptCollector, PromptOutcome

if TYPE_CHECKING:  # pragma: no cover - typing only
    from core.plugins import BasePlugin, PluginManager

logger = logging.getLogger(__name__)


class ConfigureOutcome(str, enum.Enum):
    COMPLETED = "completed"
    ABORTED = "aborted"
    NO_TEMPLATE = "no_template"


class ConfigurationWorkflow:
    def __init__(self, plugins: "PluginManager", prompts: PromptCollector) -> None:
        self.plugins = plugins
        self.prompts = prompts

    async def configure(self, plugin: "BasePlugin", channel: str, user: str) -> ConfigureOutcome:
        """Prompt ``user`` for every setting of ``plugin`` in order.

        Each answer is written as soon as it arrives. A timeout or cancel
        stops the run and leaves the ``configured`` flag as it was, while
        answers already given stay stored.
        """

        if not plugin.setup_template:
            return ConfigureOutcome.NO_TEMPLATE
        if plugin.state is None:
            logger.error("Plugin %s has a setup template but no state", plugin.key)
            return ConfigureOutcome.ABORTED

        for setting in plugin.setup_template:
            value, outcome = await self.prompts.query(channel, user, setting.prompt, setting.type)
            if outcome is not PromptOutcome.ANSWERED:
                logger.info(
                    "Configuration of %s stopped at %s (%s)", plugin.key, setting.name, outcome.value
                )
                return ConfigureOutcome.ABORTED
            await plugin.state.write(CONFIG_SECTION, setting.name, value)

        await self.plugins.set_configured(plugin.key, True)

        # Re-run init so an active plugin picks the new values up
        if await self.plugins.is_active(plugin.key):
            await self.plugins.deactivate(plugin.key)
            await self.plugins.activate(plugin.key)

        logger.info("Plugin %s configured by %s", plugin.key, user)
        return ConfigureOutcome.COMPLETED

    async def configure_all(
        self,
        channel: str,
        user: str,
        announce: Optional[Callable[["BasePlugin"], Awaitable[None]]] = None,
    ) -> Dict[str, ConfigureOutcome]:
        """Configure every plugin that has a template and is not configured yet.

        An aborted plugin does not stop the run. Returns the outcome per
        plugin key, in the order they were attempted.
        """

        outcomes: Dict[str, ConfigureOutcome] = {}
        for key, plugin in list(self.plugins.plugins.items()):
            if not plugin.setup_template or await self.plugins.is_configured(key):
                continue
            if announce is not None:
                await announce(plugin)
            outcomes[key] = await self.configure(plugin, channel, user)
        return outcomes
