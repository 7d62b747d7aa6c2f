"""Plugin infrastructure: discovery, context wiring, and lifecycle helpers."""

from __future__ import annotations

import enum
import importlib
import logging
import pkgutil
from abc import ABC
from dataclasses import dataclass
from types import ModuleType
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Sequence,
    Tuple,
)

if TYPE_CHECKING:  # pragma: no cover - typing only
    from slack_bolt.async_app import AsyncApp

    from core.slack import OperatorAlerts, SlackGateway

from core.commands import ChatCommand, Command, MessageStream, ReactionCommand, Setting
from core.config import AppConfig
from core.events import (
    PLUGIN_ACTIVATED,
    PLUGIN_CONFIGURED,
    PLUGIN_DEACTIVATED,
    EventRouter,
    MemberEvent,
    normalize_emoji,
)
from core.logging import get_plugin_logger
from core.permissions import (
    CONFIG_SECTION,
    MOD_ROLE_SETTING,
    USER_COMMAND_CHANNEL_SETTING,
    USER_ROLE_SETTING,
    PermissionResolver,
)
from core.prompts import InputType, PromptCollector
from core.state import PluginState
from core.storage import Storage

MemberHandler = Callable[[MemberEvent], Awaitable[None]]

MANAGER_NAMESPACE = "plugin_manager"
CONFIGURED_KEY = "configured"
ACTIVE_KEY = "active"

_CHAT = "chat"
_REACTION = "reaction"


@dataclass(slots=True)
class PluginContext:
    slack_app: Optional["AsyncApp"]
    config: AppConfig
    event_router: EventRouter
    storage: Storage
    gateway: "SlackGateway"
    alerts: "OperatorAlerts"
    prompts: PromptCollector
    plugins: "PluginManager"
    permissions: PermissionResolver

    def get_logger(self, key: str) -> logging.Logger:
        return get_plugin_logger(key)


class BasePlugin(ABC):
    key: str = "base"
    name: str = "Base Plugin"
    description: str = ""
    version: str = "0.1.0"
    enabled_by_default: bool = True
    # Settings an admin must provide before the plugin can be activated
    setup_template: Optional[Sequence[Setting]] = None

    def __init__(self) -> None:
        self.commands: List[Command] = []
        self.message_stream: Optional[MessageStream] = None
        self.join_handler: Optional[MemberHandler] = None
        self.leave_handler: Optional[MemberHandler] = None
        self.state: Optional[PluginState] = None
        self.context: Optional[PluginContext] = None

    def register(self, context: PluginContext) -> None:
        """Build commands, message stream and member handlers."""

    async def init(self, context: PluginContext) -> None:
        """Async hook run every time the plugin is activated."""

    async def get_setting(self, setting: str) -> Any:
        """Read a configured value, alerting operators when it is missing."""

        if self.state is None:
            await self._setting_problem(
                f"Plugin `{self.key}` read setting `{setting}` but has no state"
            )
            return None
        value = await self.state.read(CONFIG_SECTION, setting)
        if value is None or value == "" or value == []:
            await self._setting_problem(
                f"Plugin `{self.key}` has no value for `{setting}`. "
                f"Run `config {self.key}` to fix this."
            )
            return None
        return value

    async def _setting_problem(self, text: str) -> None:
        if self.context is not None:
            await self.context.alerts.warn(text)
        else:
            get_plugin_logger(self.key).warning(text)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.key!r}>"


class PermissionsPlugin(BasePlugin):
    """Holds the user groups and channel behind the User and Mod tiers."""

    key = "permissions"
    name = "Permissions"
    description = "User groups behind the User and Mod levels, and the channel for user commands."
    setup_template = (
        Setting(
            USER_ROLE_SETTING,
            InputType.ROLE,
            "Which user group may use user-level commands?",
        ),
        Setting(
            USER_COMMAND_CHANNEL_SETTING,
            InputType.CHANNEL,
            "In which channel may users run user-level commands?",
        ),
        Setting(
            MOD_ROLE_SETTING,
            InputType.ROLE,
            "Which user group are the moderators?",
        ),
    )


class LifecycleOutcome(str, enum.Enum):
    ACTIVATED = "activated"
    DEACTIVATED = "deactivated"
    NOT_FOUND = "not_found"
    NOT_CONFIGURED = "not_configured"
    INIT_FAILED = "init_failed"

    @property
    def ok(self) -> bool:
        return self in (LifecycleOutcome.ACTIVATED, LifecycleOutcome.DEACTIVATED)


class PluginLoadError(RuntimeError):
    pass


class PluginManager:
    """Owns loaded plugins, their configured/active flags and the lookup tables.

    Tables follow last-write-wins: installing a command whose name or emoji
    is already taken replaces the previous entry.
    """

    def __init__(
        self,
        storage: Storage,
        event_router: Optional[EventRouter] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.logger = logger or logging.getLogger("plugins")
        self.storage = storage
        self.event_router = event_router
        self.state = PluginState(storage, MANAGER_NAMESPACE)
        self.context: Optional[PluginContext] = None

        self.discovered: List[BasePlugin] = []
        self.plugins: Dict[str, BasePlugin] = {}
        self.builtins: Dict[str, BasePlugin] = {}

        self.chat_commands: Dict[str, ChatCommand] = {}
        self.reaction_commands: Dict[str, ReactionCommand] = {}
        self.message_streams: Dict[str, MessageStream] = {}
        self.join_handlers: Dict[str, MemberHandler] = {}
        self.leave_handlers: Dict[str, MemberHandler] = {}
        self._installed: Dict[str, List[Tuple[str, str, Command]]] = {}

        self.permissions = PermissionsPlugin()
        self.permissions.state = PluginState(storage, self.permissions.key)
        self.plugins[self.permissions.key] = self.permissions

    def attach_context(self, context: PluginContext) -> None:
        self.context = context
        self.permissions.context = context

    # ----- discovery -----

    def discover(self, package: str, enabled: Optional[Iterable[str]] = None) -> None:
        enabled_set = {slug for slug in enabled or []}
        try:
            pkg = importlib.import_module(package)
        except ImportError as exc:
            self.logger.error("Plugin package %s cannot be imported: %s", package, exc)
            return
        pkg_paths = getattr(pkg, "__path__", None)
        if not pkg_paths:
            self.logger.warning("Package %s has no __path__; skipping discovery", package)
            return

        for _, name, is_pkg in pkgutil.iter_modules(pkg_paths):
            if not is_pkg or name.startswith("_"):
                continue
            module_name = f"{package}.{name}.plugin"
            try:
                module = importlib.import_module(module_name)
                plugin = self._extract_plugin(module)
            except Exception:
                # One broken plugin must not stop the rest from loading
                self.logger.exception("Skipping plugin %s", module_name)
                continue

            if enabled_set and plugin.key not in enabled_set:
                self.logger.info("Plugin %s disabled via configuration", plugin.key)
                continue

            if not enabled_set and not plugin.enabled_by_default:
                self.logger.info("Plugin %s disabled by default", plugin.key)
                continue

            self.logger.info("Discovered plugin %s (%s)", plugin.key, plugin.name)
            self.discovered.append(plugin)

    def _extract_plugin(self, module: ModuleType) -> BasePlugin:
        plugin = getattr(module, "plugin", None)
        if isinstance(plugin, BasePlugin):
            return plugin
        for attr in ("Plugin", "get_plugin"):
            candidate = getattr(module, attr, None)
            if isinstance(candidate, BasePlugin):
                return candidate
            if callable(candidate):
                candidate_instance = candidate()  # type: ignore[misc]
                if isinstance(candidate_instance, BasePlugin):
                    return candidate_instance
        raise PluginLoadError(f"Module {module.__name__} does not expose a plugin instance")

    async def register_all(self, context: PluginContext) -> None:
        self.attach_context(context)
        for plugin in self.discovered:
            logger = context.get_logger(plugin.key)
            logger.debug("Registering plugin %s", plugin.key)
            try:
                plugin.context = context
                plugin.register(context)
                await self.load(plugin)
            except Exception:
                logger.exception("Failed to register plugin %s; skipping it", plugin.key)

    # ----- lifecycle -----

    async def load(self, plugin: BasePlugin) -> None:
        if plugin.key in self.plugins or plugin.key in self.builtins:
            self.logger.warning("Plugin key %s loaded twice; keeping the newest", plugin.key)
        if plugin.context is None:
            plugin.context = self.context
        self.plugins[plugin.key] = plugin

        if not plugin.setup_template:
            await self.state.write(plugin.key, CONFIGURED_KEY, True)
        elif plugin.state is None:
            plugin.state = PluginState(self.storage, plugin.key)
        self.logger.info("Loaded plugin %s", plugin.key)

    async def is_configured(self, key: str) -> bool:
        return bool(await self.state.read(key, CONFIGURED_KEY))

    async def is_active(self, key: str) -> bool:
        return bool(await self.state.read(key, ACTIVE_KEY))

    async def set_configured(self, key: str, configured: bool) -> None:
        await self.state.write(key, CONFIGURED_KEY, configured)
        if configured:
            await self._publish(PLUGIN_CONFIGURED, key)

    async def activate(self, key: str) -> LifecycleOutcome:
        plugin = self.plugins.get(key)
        if plugin is None:
            return LifecycleOutcome.NOT_FOUND
        if not await self.is_configured(key):
            return LifecycleOutcome.NOT_CONFIGURED
        if plugin.setup_template and plugin.state is None:
            return LifecycleOutcome.NOT_CONFIGURED

        await self.state.write(key, ACTIVE_KEY, True)
        if not await self._initiate(plugin):
            await self.state.write(key, ACTIVE_KEY, False)
            return LifecycleOutcome.INIT_FAILED
        self.logger.info("Activated plugin %s", key)
        await self._publish(PLUGIN_ACTIVATED, key)
        return LifecycleOutcome.ACTIVATED

    async def deactivate(self, key: str) -> LifecycleOutcome:
        plugin = self.plugins.get(key)
        if plugin is None:
            return LifecycleOutcome.NOT_FOUND
        self._uninstall(plugin)
        await self.state.write(key, ACTIVE_KEY, False)
        self.logger.info("Deactivated plugin %s", key)
        await self._publish(PLUGIN_DEACTIVATED, key)
        return LifecycleOutcome.DEACTIVATED

    async def activate_all(self) -> Dict[str, LifecycleOutcome]:
        return {key: await self.activate(key) for key in list(self.plugins)}

    async def initiate_all(self) -> None:
        """Reinstall every plugin persisted as active, e.g. after a restart."""

        for key, plugin in list(self.plugins.items()):
            if not await self.is_active(key):
                continue
            if not await self._initiate(plugin):
                await self.state.write(key, ACTIVE_KEY, False)

    async def add_builtin(self, plugin: BasePlugin) -> None:
        """Install a plugin the bot cannot run without.

        Built-ins skip the configured/active state machine and are not in
        ``plugins``, so they can be neither deactivated nor configured.
        """

        if self.context is None:
            raise RuntimeError("attach_context() must run before add_builtin()")
        plugin.context = self.context
        plugin.register(self.context)
        await plugin.init(self.context)
        self._install(plugin)
        self.builtins[plugin.key] = plugin

    async def _initiate(self, plugin: BasePlugin) -> bool:
        try:
            await plugin.init(plugin.context)  # type: ignore[arg-type]
        except Exception:
            self.logger.exception("Init hook of plugin %s failed", plugin.key)
            return False
        self._install(plugin)
        return True

    async def _publish(self, event_type: str, key: str) -> None:
        if self.event_router is not None:
            await self.event_router.dispatch(event_type, {"plugin": key})

    # ----- lookup tables -----

    def _install(self, plugin: BasePlugin) -> None:
        # Re-activation must not leave stale keys from a previous install
        self._uninstall(plugin)
        installed: List[Tuple[str, str, Command]] = []
        for command in plugin.commands:
            if isinstance(command, ChatCommand):
                self._replace(self.chat_commands, command.name, command, plugin)
                installed.append((_CHAT, command.name, command))
            elif isinstance(command, ReactionCommand):
                if not command.emoji:
                    self.logger.warning(
                        "Reaction command %s of %s has no emoji; not installed",
                        command.name,
                        plugin.key,
                    )
                    continue
                emoji = normalize_emoji(command.emoji)
                self._replace(self.reaction_commands, emoji, command, plugin)
                installed.append((_REACTION, emoji, command))
        self._installed[plugin.key] = installed

        if plugin.message_stream is not None:
            self.message_streams[plugin.key] = plugin.message_stream
        if plugin.join_handler is not None:
            self.join_handlers[plugin.key] = plugin.join_handler
        if plugin.leave_handler is not None:
            self.leave_handlers[plugin.key] = plugin.leave_handler

    def _replace(self, table: Dict[str, Any], key: str, command: Command, plugin: BasePlugin) -> None:
        previous = table.get(key)
        if previous is not None and previous is not command:
            self.logger.debug("%s from %s replaces %r", key, plugin.key, previous)
        table[key] = command

    def _uninstall(self, plugin: BasePlugin) -> None:
        for kind, key, command in self._installed.pop(plugin.key, []):
            table: Dict[str, Any] = self.chat_commands if kind == _CHAT else self.reaction_commands
            # A later plugin may have taken the key over; leave its entry alone
            if table.get(key) is command:
                del table[key]
        self.message_streams.pop(plugin.key, None)
        self.join_handlers.pop(plugin.key, None)
        self.leave_handlers.pop(plugin.key, None)

    def get_chat_command(self, name: str) -> Optional[ChatCommand]:
        return self.chat_commands.get(name.lower())

    def get_reaction_command(self, emoji: str) -> Optional[ReactionCommand]:
        return self.reaction_commands.get(normalize_emoji(emoji))

    def find(self, key: str) -> Optional[BasePlugin]:
        return self.plugins.get(key)
