"""Commands the bot needs to manage itself: help, plugin and config."""

from __future__ import annotations

from typing import Dict, List

from core.commands import ChatCommand, ReactionCommand
from core.configurator import ConfigurationWorkflow, ConfigureOutcome
from core.events import ChatMessage
from core.permissions import Tier
from core.plugins import BasePlugin, LifecycleOutcome, PluginContext

PLUGIN_HELP = (
    "*plugin* manages plugins:\n"
    "• `plugin list` shows every plugin and its state\n"
    "• `plugin activate <name>` or `plugin activate all`\n"
    "• `plugin deactivate <name>`\n"
    "• `plugin commands <name>` lists a plugin's commands"
)
CONFIG_HELP = (
    "*config* sets a plugin up:\n"
    "• `config <name>` asks for each of the plugin's settings\n"
    "• `config all` sets up every plugin that is not configured yet"
)


def _not_found(key: str) -> str:
    return f"There is no plugin called `{key}`."


class BuiltinPlugin(BasePlugin):
    key = "builtin-commands"
    name = "Built-in commands"
    description = "Help, plugin management and configuration."

    def __init__(self, workflow: ConfigurationWorkflow) -> None:
        super().__init__()
        self.workflow = workflow

    def register(self, context: PluginContext) -> None:
        self.commands = [
            HelpCommand(context),
            PluginCommand(context),
            ConfigCommand(context, self.workflow),
        ]


class HelpCommand(ChatCommand):
    name = "help"
    permission = Tier.ANY

    def __init__(self, context: PluginContext) -> None:
        self.context = context

    def help_text(self) -> str:
        return "I heard you like help, so I got you some help for your help."

    async def run(self, message: ChatMessage, args: List[str]) -> None:
        gateway = self.context.gateway
        plugins = self.context.plugins
        member = await gateway.fetch_member(message.user)
        tier = await self.context.permissions.resolve_tier(member)

        chat = {name: c for name, c in plugins.chat_commands.items() if c.permission <= tier}
        reactions: Dict[str, ReactionCommand] = {
            emoji: c for emoji, c in plugins.reaction_commands.items() if c.permission <= tier
        }

        if args:
            wanted = args[0].lower()
            command = chat.get(wanted) or reactions.get(wanted.strip(":"))
            if command is not None:
                await gateway.post_message(message.channel, command.help_text() or "No help available.")
                return

        prefix = self.context.config.command_prefix
        lines = ["*Commands*"]
        lines.extend(f"• `{prefix}{name}`" for name in sorted(chat))
        if reactions:
            lines.append("*Reactions*")
            lines.extend(f"• :{emoji}: {c.name}" for emoji, c in sorted(reactions.items()))
        lines.append(f"Use `{prefix}help <command>` for details.")
        await gateway.post_message(message.channel, "\n".join(lines))


class PluginCommand(ChatCommand):
    name = "plugin"
    permission = Tier.ADMIN

    def __init__(self, context: PluginContext) -> None:
        self.context = context

    def help_text(self) -> str:
        return PLUGIN_HELP

    async def run(self, message: ChatMessage, args: List[str]) -> None:
        reply = await self._handle(args)
        await self.context.gateway.post_message(message.channel, reply)

    async def _handle(self, args: List[str]) -> str:
        if not args:
            return self.help_text()
        action, target = args[0].lower(), (args[1] if len(args) > 1 else None)
        plugins = self.context.plugins

        if action == "list":
            return await self._list()

        if target is None:
            return self.help_text()

        if action == "activate":
            if target.lower() == "all":
                results = await plugins.activate_all()
                active = sorted(key for key, outcome in results.items() if outcome.ok)
                return "Activated: " + (", ".join(f"`{key}`" for key in active) or "nothing")
            outcome = await plugins.activate(target)
            if outcome is LifecycleOutcome.NOT_FOUND:
                return _not_found(target)
            if outcome is LifecycleOutcome.NOT_CONFIGURED:
                return f"`{target}` is not configured yet. Run `config {target}` first."
            if outcome is LifecycleOutcome.INIT_FAILED:
                return f"`{target}` failed to start; check the logs."
            return f"`{target}` is now active."

        if action == "deactivate":
            outcome = await plugins.deactivate(target)
            if outcome is LifecycleOutcome.NOT_FOUND:
                return _not_found(target)
            return f"`{target}` is now inactive."

        if action == "commands":
            plugin = plugins.find(target)
            if plugin is None:
                return _not_found(target)
            return self._commands(plugin)

        return self.help_text()

    async def _list(self) -> str:
        plugins = self.context.plugins
        lines = ["*Plugins*"]
        for key, plugin in plugins.plugins.items():
            if await plugins.is_active(key):
                status = ":large_green_circle: active"
            elif await plugins.is_configured(key):
                status = ":white_circle: inactive"
            else:
                status = ":red_circle: not configured"
            line = f"• `{key}` {status}"
            if plugin.description:
                line += f" – {plugin.description}"
            lines.append(line)
        return "\n".join(lines)

    def _commands(self, plugin: BasePlugin) -> str:
        prefix = self.context.config.command_prefix
        chat = [c for c in plugin.commands if isinstance(c, ChatCommand)]
        reactions = [c for c in plugin.commands if isinstance(c, ReactionCommand)]
        if not chat and not reactions:
            return f"`{plugin.key}` has no commands."
        lines = [f"*Commands of {plugin.key}*"]
        lines.extend(f"• `{prefix}{c.name}` ({c.permission.label})" for c in chat)
        lines.extend(
            f"• :{c.emoji or '?'}: {c.name} ({c.permission.label})" for c in reactions
        )
        return "\n".join(lines)


class ConfigCommand(ChatCommand):
    name = "config"
    permission = Tier.ADMIN

    def __init__(self, context: PluginContext, workflow: ConfigurationWorkflow) -> None:
        self.context = context
        self.workflow = workflow

    def help_text(self) -> str:
        return CONFIG_HELP

    async def run(self, message: ChatMessage, args: List[str]) -> None:
        gateway = self.context.gateway
        channel = message.channel
        if not args:
            await gateway.post_message(channel, self.help_text())
            return

        if args[0].lower() == "all":
            async def announce(plugin: BasePlugin) -> None:
                await gateway.post_message(channel, f"Now configuring `{plugin.key}`.")

            outcomes = await self.workflow.configure_all(channel, message.user, announce)
            if not outcomes:
                await gateway.post_message(channel, "Every plugin is already configured.")
            elif ConfigureOutcome.ABORTED not in outcomes.values():
                await gateway.post_message(channel, "Configuration run finished.")
            return

        plugin = self.context.plugins.find(args[0])
        if plugin is None:
            await gateway.post_message(channel, _not_found(args[0]))
            return

        outcome = await self.workflow.configure(plugin, channel, message.user)
        if outcome is ConfigureOutcome.NO_TEMPLATE:
            await gateway.post_message(channel, f"`{plugin.key}` has nothing to configure.")
        elif outcome is ConfigureOutcome.COMPLETED:
            await gateway.post_message(channel, f"`{plugin.key}` is configured.")
