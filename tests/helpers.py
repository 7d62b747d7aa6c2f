from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Sequence, Tuple

from slack_sdk.errors import SlackApiError

from core.commands import ChatCommand, MessageStream, ReactionCommand, Setting
from core.config import AppConfig
from core.events import ChatMessage, Member, ReactionEvent
from core.permissions import Tier
from core.plugins import BasePlugin, PluginContext
from core.prompts import PromptOutcome

CONTROL_CHANNEL = "CCONTROL"


def make_config(**overrides: Any) -> AppConfig:
    values: Dict[str, Any] = dict(
        slack_bot_token="xoxb-test",
        slack_app_token="xapp-test",
        control_channel=CONTROL_CHANNEL,
        prompt_timeout=0.5,
    )
    values.update(overrides)
    return AppConfig(**values)


def slack_error(error: str = "not_allowed") -> SlackApiError:
    return SlackApiError(error, {"ok": False, "error": error})


class FakeGateway:
    def __init__(self) -> None:
        self.posts: List[Tuple[str, str, Dict[str, Any]]] = []
        self.members: Dict[str, Member] = {}
        self.removed: List[Tuple[str, str, str]] = []
        self.messages: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.reactions: Dict[Tuple[str, str, str], List[str]] = {}
        self.fail_remove = False

    async def post_message(self, channel: str, text: str, **kwargs: Any) -> Optional[str]:
        self.posts.append((channel, text, kwargs))
        return f"{len(self.posts)}.000000"

    async def remove_reaction(self, channel: str, ts: str, name: str) -> None:
        if self.fail_remove:
            raise slack_error("cant_remove")
        self.removed.append((channel, ts, name))

    async def fetch_member(self, user_id: str) -> Member:
        return self.members.get(user_id, Member(id=user_id))

    async def fetch_message(self, channel: str, ts: str) -> Optional[Dict[str, Any]]:
        return self.messages.get((channel, ts))

    async def fetch_history_before(self, channel: str, ts: str, limit: int) -> List[Dict[str, Any]]:
        older = [m for (c, t), m in self.messages.items() if c == channel and float(t) < float(ts)]
        older.sort(key=lambda m: float(m["ts"]), reverse=True)
        return older[:limit]

    async def reaction_users(self, channel: str, ts: str, name: str) -> List[str]:
        return list(self.reactions.get((channel, ts, name), []))

    def texts(self, channel: Optional[str] = None) -> List[str]:
        return [text for c, text, _ in self.posts if channel is None or c == channel]


class RecordingCommand(ChatCommand):
    def __init__(self, name: str, permission: Tier = Tier.ANY, help_text: str = "") -> None:
        self.name = name
        self.permission = permission
        self._help = help_text
        self.calls: List[List[str]] = []

    def help_text(self) -> str:
        return self._help

    async def run(self, message: ChatMessage, args: List[str]) -> None:
        self.calls.append(args)


class FailingCommand(ChatCommand):
    name = "boom"
    permission = Tier.ANY

    async def run(self, message: ChatMessage, args: List[str]) -> None:
        raise RuntimeError("boom")


class RecordingReaction(ReactionCommand):
    def __init__(
        self,
        name: str,
        emoji: Optional[str],
        permission: Tier = Tier.MOD,
        remove_invalid: bool = True,
    ) -> None:
        self.name = name
        self.emoji = emoji
        self.permission = permission
        self.remove_invalid = remove_invalid
        self.calls: List[Tuple[ReactionEvent, Member]] = []

    async def run(self, reaction: ReactionEvent, member: Member) -> None:
        self.calls.append((reaction, member))


class SamplePlugin(BasePlugin):
    def __init__(
        self,
        key: str,
        commands: Sequence[Any] = (),
        template: Optional[Sequence[Setting]] = None,
        stream: Optional[MessageStream] = None,
        fail_init: bool = False,
    ) -> None:
        super().__init__()
        self.key = key
        self.name = key.title()
        self.commands = list(commands)
        self.setup_template = template
        self.message_stream = stream
        self.fail_init = fail_init
        self.init_calls = 0

    async def init(self, context: PluginContext) -> None:
        self.init_calls += 1
        if self.fail_init:
            raise RuntimeError("init failed")


class ScriptedPrompts:
    """Stands in for PromptCollector, answering from a fixed script."""

    def __init__(self, answers: Sequence[Tuple[Any, PromptOutcome]]) -> None:
        self.answers = list(answers)
        self.asked: List[Tuple[str, str, str, Any]] = []

    def is_user_in_prompt(self, user: str) -> bool:
        return False

    async def query(self, channel: str, user: str, prompt: str, expected: Any) -> Tuple[Any, PromptOutcome]:
        self.asked.append((channel, user, prompt, expected))
        if not self.answers:
            return None, PromptOutcome.TIMED_OUT
        return self.answers.pop(0)


def message(text: str, user: str = "U1", channel: str = "CGENERAL", ts: str = "1700000000.000100") -> ChatMessage:
    return ChatMessage(channel=channel, user=user, text=text, ts=ts)


def reaction(
    name: str, user: str = "U1", channel: str = "CGENERAL", ts: str = "1700000000.000100"
) -> ReactionEvent:
    return ReactionEvent(channel=channel, user=user, name=name, message_ts=ts)


async def settle(rounds: int = 20) -> None:
    """Let pending tasks run up to their next real suspension."""
    for _ in range(rounds):
        await asyncio.sleep(0)
