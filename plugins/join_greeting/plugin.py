from __future__ import annotations

import asyncio
from typing import Optional

from core.commands import Setting
from core.events import MemberEvent
from core.plugins import BasePlugin, PluginContext
from core.prompts import InputType

STATS_SECTION = "stats"
COUNTER_KEY = "greetings_sent"
# Slack rate limits make very long holds pointless
MAX_DELAY_SECONDS = 3600.0


def format_greeting(user_id: str, rule_channel: Optional[str], intro_channel: Optional[str]) -> str:
    mention = f"<@{user_id}>"
    text = f"Welcome {mention}!"
    if rule_channel:
        text += f" Please read <#{rule_channel}> first"
        if intro_channel:
            text += f" and then introduce yourself in <#{intro_channel}>"
        text += "."
    elif intro_channel:
        text += f" Please introduce yourself in <#{intro_channel}>."
    text += " A moderator will unlock the other channels for you afterwards."
    return text


class JoinGreetingPlugin(BasePlugin):
    key = "join_greeting"
    name = "Join Greeting"
    description = "Greets new members of the workspace."
    setup_template = (
        Setting("join_channel", InputType.CHANNEL, "In which channel should new members be greeted?"),
        Setting("rule_channel", InputType.CHANNEL, "Which channel holds the rules?"),
        Setting("intro_channel", InputType.CHANNEL, "In which channel do new members introduce themselves?"),
        Setting("greeting_delay", InputType.NUMBER, "How many seconds should I wait before greeting someone?"),
    )

    def register(self, context: PluginContext) -> None:
        logger = context.get_logger(self.key)
        gateway = context.gateway

        async def greet(event: MemberEvent) -> None:
            join_channel = await self.get_setting("join_channel")
            if not join_channel:
                return
            rule_channel = await self.get_setting("rule_channel")
            intro_channel = await self.get_setting("intro_channel")
            delay = await self.get_setting("greeting_delay") or 0
            delay = min(max(float(delay), 0.0), MAX_DELAY_SECONDS)
            if delay:
                await asyncio.sleep(delay)

            await gateway.post_message(join_channel, format_greeting(event.user, rule_channel, intro_channel))
            logger.debug("Greeted %s", event.user)

            if self.state is None:
                logger.warning("No state to count the greeting for %s", event.user)
                return
            current = await self.state.read(STATS_SECTION, COUNTER_KEY) or 0
            await self.state.write(STATS_SECTION, COUNTER_KEY, current + 1)

        self.join_handler = greet


plugin = JoinGreetingPlugin()
