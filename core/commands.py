"""Commands, message streams and configuration settings contributed by plugins."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple, Union

from core.events import ChatMessage, Member, ReactionEvent
from core.permissions import Tier
from core.prompts import InputType


class ChatCommand(ABC):
    """Triggered by ``<prefix><name> args...`` in a channel."""

    name: str = ""
    permission: Tier = Tier.ADMIN

    def help_text(self) -> str:
        return ""

    @abstractmethod
    async def run(self, message: ChatMessage, args: List[str]) -> None:
        ...

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name!r}>"


class ReactionCommand(ABC):
    """Triggered by adding a reaction to a message."""

    name: str = ""
    # Reaction key, often only known once the owning plugin's init hook has
    # read it from configuration.
    emoji: Optional[str] = None
    permission: Tier = Tier.ADMIN
    # Try to retract reactions added by members below ``permission``. Slack
    # only removes the bot's own reactions, so this usually just gets logged.
    remove_invalid: bool = True

    def help_text(self) -> str:
        return ""

    @abstractmethod
    async def run(self, reaction: ReactionEvent, member: Member) -> None:
        ...

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name!r} :{self.emoji}:>"


Command = Union[ChatCommand, ReactionCommand]


@dataclass(slots=True)
class MessageStream:
    """Passive handler run on every message in scope before commands.

    ``run`` returns whether command processing may continue.
    """

    name: str
    run: Callable[[ChatMessage], Awaitable[bool]]
    channels: Optional[Sequence[str]] = None

    def applies_to(self, channel: str) -> bool:
        return self.channels is None or channel in self.channels


@dataclass(slots=True, frozen=True)
class Setting:
    name: str
    type: InputType
    description: Optional[str] = None

    @property
    def prompt(self) -> str:
        return self.description or self.name


def split_command(text: str, prefix: str) -> Optional[Tuple[str, List[str]]]:
    """Split ``!Name a B`` into ``("name", ["a", "B"])``.

    Only the command token is lowercased, arguments keep their case since
    Slack ids are case sensitive.
    """

    if not prefix or not text.startswith(prefix):
        return None
    tokens = text[len(prefix):].split()
    if not tokens:
        return None
    return tokens[0].lower(), tokens[1:]
