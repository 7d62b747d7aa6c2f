"""Interactive prompts: ask a user for a typed value in a channel and wait."""

from __future__ import annotations

import asyncio
import enum
import logging
import math
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from slack_sdk.errors import SlackApiError

from core.events import ChatMessage, normalize_emoji

if TYPE_CHECKING:  # pragma: no cover - typing only
    from core.slack import SlackGateway

logger = logging.getLogger(__name__)

CANCEL_WORD = "cancel"

CHANNEL_RE = re.compile(r"<#([CG][A-Z0-9]+)(?:\|[^>]*)?>")
ROLE_RE = re.compile(r"<!subteam\^(S[A-Z0-9]+)(?:\|[^>]*)?>")
USER_RE = re.compile(r"<@([UW][A-Z0-9]+)(?:\|[^>]*)?>")
BARE_CHANNEL_RE = re.compile(r"^[CG][A-Z0-9]{2,}$")
BARE_ROLE_RE = re.compile(r"^S[A-Z0-9]{2,}$")
BARE_USER_RE = re.compile(r"^[UW][A-Z0-9]{2,}$")
EMOJI_RE = re.compile(r"^:?[a-z0-9_+'\-]+(?:::skin-tone-[2-6])?:?$")
PERMALINK_RE = re.compile(r"/archives/([CG][A-Z0-9]+)/p(\d{10})(\d{6})")
TS_RE = re.compile(r"^\d{10}\.\d{6}$")


class InputType(enum.Enum):
    TEXT = "text"
    NUMBER = "number"
    CHANNEL = "channel"
    ROLE = "role"
    USER = "user"
    EMOJI = "emoji"
    MESSAGE = "message"
    CHANNEL_LIST = "channel_list"
    ROLE_LIST = "role_list"


class PromptOutcome(enum.Enum):
    ANSWERED = "answered"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


HINTS = {
    InputType.TEXT: "Reply with the text to use.",
    InputType.NUMBER: "Reply with a number.",
    InputType.CHANNEL: "Mention a channel, e.g. #general.",
    InputType.ROLE: "Mention a user group, e.g. @moderators.",
    InputType.USER: "Mention a user, e.g. @someone.",
    InputType.EMOJI: "Reply with an emoji, e.g. :pushpin:.",
    InputType.MESSAGE: "Paste a message link, or the timestamp of a message in this channel.",
    InputType.CHANNEL_LIST: "Mention one or more channels.",
    InputType.ROLE_LIST: "Mention one or more user groups.",
}


def _single(pattern: re.Pattern[str], bare: re.Pattern[str], text: str) -> Optional[str]:
    match = pattern.search(text)
    if match:
        return match.group(1)
    if bare.match(text):
        return text
    return None


def _many(pattern: re.Pattern[str], bare: re.Pattern[str], text: str) -> Optional[List[str]]:
    found: List[str] = []
    for token in text.split():
        value = _single(pattern, bare, token)
        if value and value not in found:
            found.append(value)
    return found or None


def _number(text: str) -> Optional[float]:
    try:
        return int(text)
    except ValueError:
        pass
    try:
        value = float(text)
    except ValueError:
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return value


def parse_input(expected: InputType, text: str, channel: str) -> Any:
    """Parse a reply into the stored representation, or None if unusable.

    Ids are stored rather than resolved objects; MESSAGE values are
    ``[channel_id, ts]`` pairs.
    """

    text = text.strip()
    if not text:
        return None

    if expected is InputType.TEXT:
        return text
    if expected is InputType.NUMBER:
        return _number(text)
    if expected is InputType.CHANNEL:
        return _single(CHANNEL_RE, BARE_CHANNEL_RE, text)
    if expected is InputType.ROLE:
        return _single(ROLE_RE, BARE_ROLE_RE, text)
    if expected is InputType.USER:
        return _single(USER_RE, BARE_USER_RE, text)
    if expected is InputType.EMOJI:
        if not EMOJI_RE.match(text):
            return None
        return normalize_emoji(text) or None
    if expected is InputType.MESSAGE:
        match = PERMALINK_RE.search(text)
        if match:
            return [match.group(1), f"{match.group(2)}.{match.group(3)}"]
        if TS_RE.match(text):
            return [channel, text]
        return None
    if expected is InputType.CHANNEL_LIST:
        return _many(CHANNEL_RE, BARE_CHANNEL_RE, text)
    if expected is InputType.ROLE_LIST:
        return _many(ROLE_RE, BARE_ROLE_RE, text)
    raise ValueError(f"Unsupported input type {expected!r}")


@dataclass(slots=True)
class _PendingPrompt:
    channel: str
    replies: "asyncio.Queue[str]"


class PromptCollector:
    """Tracks users who owe an answer and routes their replies to the waiter."""

    def __init__(self, gateway: "SlackGateway", timeout: float) -> None:
        self.gateway = gateway
        self.timeout = timeout
        self._pending: Dict[str, _PendingPrompt] = {}

    def is_user_in_prompt(self, user: str) -> bool:
        return user in self._pending

    def feed(self, message: ChatMessage) -> bool:
        """Hand a reply to a waiting prompt. Returns True if consumed."""

        pending = self._pending.get(message.user)
        if pending is None or pending.channel != message.channel:
            return False
        pending.replies.put_nowait(message.text)
        return True

    async def query(
        self,
        channel: str,
        user: str,
        prompt: str,
        expected: InputType,
    ) -> Tuple[Any, PromptOutcome]:
        if user in self._pending:
            logger.warning("User %s is already answering a prompt", user)
            return None, PromptOutcome.CANCELLED

        pending = _PendingPrompt(channel=channel, replies=asyncio.Queue())
        self._pending[user] = pending
        try:
            return await self._collect(pending, user, prompt, expected)
        except SlackApiError as exc:
            logger.warning("Prompt for %s aborted, Slack call failed: %s", user, exc)
            return None, PromptOutcome.CANCELLED
        finally:
            self._pending.pop(user, None)

    async def _collect(
        self,
        pending: _PendingPrompt,
        user: str,
        prompt: str,
        expected: InputType,
    ) -> Tuple[Any, PromptOutcome]:
        channel = pending.channel
        hint = HINTS[expected]
        await self.gateway.post_message(
            channel, f"<@{user}> {prompt}\n_{hint} Say `{CANCEL_WORD}` to stop._"
        )

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return None, PromptOutcome.TIMED_OUT
            try:
                reply = await asyncio.wait_for(pending.replies.get(), timeout=remaining)
            except asyncio.TimeoutError:
                logger.info("Prompt for %s timed out", user)
                return None, PromptOutcome.TIMED_OUT

            if reply.strip().lower() == CANCEL_WORD:
                await self.gateway.post_message(channel, "Cancelled.")
                return None, PromptOutcome.CANCELLED

            value = parse_input(expected, reply, channel)
            if value is None:
                await self.gateway.post_message(channel, f"I couldn't read that. {hint}")
                continue
            return value, PromptOutcome.ANSWERED
