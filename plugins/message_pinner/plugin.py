from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import TYPE_CHECKING, Any, Dict, List, Mapping

from core.commands import ReactionCommand, Setting
from core.events import Member, ReactionEvent
from core.permissions import Tier
from core.plugins import BasePlugin, PluginContext
from core.prompts import InputType

if TYPE_CHECKING:  # pragma: no cover - typing only
    from core.slack import SlackGateway

PINS_SECTION = "pins"
NOTES_SECTION = "notes"
# Follow-up messages by the same author are bundled when posted this close together
TIME_LIMIT_SECONDS = 600.0
MAX_BUNDLED_MESSAGES = 25
SECTION_TEXT_LIMIT = 3000

PIN_HELP = (
    "React to a message with the pin emoji. Once enough people, including the "
    "author, have reacted, the message is copied to the pin channel."
)


async def collect_messages(
    gateway: "SlackGateway",
    channel: str,
    message: Mapping[str, Any],
    author: str,
) -> List[Mapping[str, Any]]:
    """The pinned message plus the author's directly preceding ones, newest first."""

    messages: List[Mapping[str, Any]] = [message]
    history = await gateway.fetch_history_before(channel, message["ts"], MAX_BUNDLED_MESSAGES)
    previous = message
    for candidate in history:
        if candidate.get("user") != author or candidate.get("subtype"):
            break
        if float(previous["ts"]) - float(candidate["ts"]) > TIME_LIMIT_SECONDS:
            break
        messages.append(candidate)
        previous = candidate
    return messages


def render_pin_blocks(
    message: Mapping[str, Any], show_author: bool, show_timestamp: bool
) -> List[Dict[str, Any]]:
    blocks: List[Dict[str, Any]] = []
    if show_author and message.get("user"):
        blocks.append(
            {"type": "context", "elements": [{"type": "mrkdwn", "text": f"<@{message['user']}>"}]}
        )

    text = (message.get("text") or "").strip()
    files = message.get("files") or []
    if files:
        names = ", ".join(f.get("name") or "file" for f in files)
        text = f"{text}\n_(attachments: {names})_".strip()
    if text:
        if len(text) > SECTION_TEXT_LIMIT:
            text = text[: SECTION_TEXT_LIMIT - 1] + "…"
        blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": text}})

    if show_timestamp and message.get("ts"):
        seconds = int(float(message["ts"]))
        stamp = f"<!date^{seconds}^{{date_short_pretty}} {{time}}|{message['ts']}>"
        blocks.append({"type": "context", "elements": [{"type": "mrkdwn", "text": stamp}]})
    return blocks


class MessagePinnerPlugin(BasePlugin):
    key = "message_pinner"
    name = "Message Pinner"
    description = "Copies popular messages into a pin channel."
    setup_template = (
        Setting("pin_channel", InputType.CHANNEL, "Which channel should pinned messages go to?"),
        Setting("pin_count", InputType.NUMBER, "How many reactions does a message need to be pinned?"),
        Setting("pin_emoji", InputType.EMOJI, "Which emoji pins a message?"),
    )

    def __init__(self) -> None:
        super().__init__()
        self._channel_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def register(self, context: PluginContext) -> None:
        self.pin = PinCommand(self, context)
        self.commands = [self.pin]

    async def init(self, context: PluginContext) -> None:
        self.pin.emoji = await self.get_setting("pin_emoji")

    async def record_once(self, section: str, channel: str, ts: str) -> bool:
        """Add ``ts`` to the channel's list in ``section``; False if it was there."""

        if self.state is None:
            return False
        async with self._channel_locks[channel]:
            seen = await self.state.read(section, channel) or []
            if ts in seen:
                return False
            seen.append(ts)
            await self.state.write(section, channel, seen)
        return True


class PinCommand(ReactionCommand):
    name = "pin"
    permission = Tier.USER

    def __init__(self, plugin: MessagePinnerPlugin, context: PluginContext) -> None:
        self.plugin = plugin
        self.context = context

    def help_text(self) -> str:
        return PIN_HELP

    async def run(self, reaction: ReactionEvent, member: Member) -> None:
        plugin = self.plugin
        gateway = self.context.gateway
        logger = self.context.get_logger(plugin.key)
        if plugin.state is None:
            logger.warning("Pin reaction ignored, plugin has no state")
            return

        count = await plugin.get_setting("pin_count")
        pin_channel = await plugin.get_setting("pin_channel")
        if not count or not pin_channel:
            return
        count = int(count)

        channel, ts = reaction.channel, reaction.message_ts
        message = await gateway.fetch_message(channel, ts)
        if message is None or not message.get("user"):
            logger.debug("Reacted message %s in %s not found", ts, channel)
            return
        author = message["user"]
        users = await gateway.reaction_users(channel, ts, reaction.name)

        if author not in users:
            # Nudge the author once when their consent is the only thing missing
            if len(users) >= count - 1:
                if not await plugin.record_once(NOTES_SECTION, channel, ts):
                    return
                await gateway.post_message(
                    channel,
                    f"<@{author}> your message is about to be pinned to <#{pin_channel}>. "
                    f"React with :{self.emoji}: yourself to allow it.",
                    thread_ts=ts,
                )
            return

        if len(users) < count:
            return

        if not await plugin.record_once(PINS_SECTION, channel, ts):
            return

        messages = await collect_messages(gateway, channel, message, author)
        await gateway.post_message(pin_channel, f":pushpin: Message by <@{author}> in <#{channel}>")
        # Oldest first; author on the first block, time on the last
        ordered = list(reversed(messages))
        for index, item in enumerate(ordered):
            blocks = render_pin_blocks(
                item,
                show_author=index == 0,
                show_timestamp=index == len(ordered) - 1,
            )
            await gateway.post_message(pin_channel, item.get("text") or "pinned message", blocks=blocks)
        logger.info("Pinned %s from %s", ts, channel)


plugin = MessagePinnerPlugin()
