from __future__ import annotations

from typing import Any, Dict, Optional

from slack_sdk.errors import SlackApiError

from core.commands import Setting
from core.events import PLUGIN_ACTIVATED, PLUGIN_CONFIGURED, PLUGIN_DEACTIVATED, MemberEvent
from core.plugins import BasePlugin, PluginContext
from core.prompts import InputType
from .utils import format_member_join_event, format_member_leave_event, format_plugin_event

LIFECYCLE_EVENTS = (PLUGIN_ACTIVATED, PLUGIN_DEACTIVATED, PLUGIN_CONFIGURED)


class ModLogPlugin(BasePlugin):
    key = "modlog"
    name = "Moderation Log"
    description = "Forwards member joins, leaves and plugin changes to a log channel."
    setup_template = (
        Setting("log_channel", InputType.CHANNEL, "Which channel should receive the moderation log?"),
    )

    def register(self, context: PluginContext) -> None:
        logger = context.get_logger(self.key)
        gateway = context.gateway

        async def post_log(text: Optional[str]) -> None:
            if not text:
                return
            channel_id = await self.get_setting("log_channel")
            if not channel_id:
                logger.debug("Skipping mod log message because no channel is configured")
                return
            try:
                await gateway.post_message(channel_id, text)
            except SlackApiError as exc:  # pragma: no cover - depends on Slack API response
                logger.warning("Failed to send moderation log message: %s", exc)

        async def handle_join(event: MemberEvent) -> None:
            await post_log(format_member_join_event(event))

        async def handle_leave(event: MemberEvent) -> None:
            await post_log(format_member_leave_event(event))

        async def handle_lifecycle(event_type: str, payload: Dict[str, Any]) -> None:
            # Subscriptions outlive deactivation; stay quiet while inactive
            if not await context.plugins.is_active(self.key):
                return
            await post_log(format_plugin_event(event_type, payload))

        self.join_handler = handle_join
        self.leave_handler = handle_leave
        self._handle_lifecycle = handle_lifecycle

    async def init(self, context: PluginContext) -> None:
        for event_type in LIFECYCLE_EVENTS:
            await context.event_router.subscribe(event_type, self._handle_lifecycle)


plugin = ModLogPlugin()
