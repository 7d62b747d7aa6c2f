"""Inbound event shapes and the internal pub/sub router."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, FrozenSet, List, Mapping, Optional

logger = logging.getLogger(__name__)

EventHandler = Callable[[str, dict], Awaitable[None]]

PLUGIN_ACTIVATED = "plugin.activated"
PLUGIN_DEACTIVATED = "plugin.deactivated"
PLUGIN_CONFIGURED = "plugin.configured"

SKIN_TONE_SUFFIX = "::skin-tone-"


def normalize_emoji(raw: str) -> str:
    """Reduce ``:+1::skin-tone-3:`` style input to the reaction key ``+1``."""

    name = raw.strip().strip(":")
    if SKIN_TONE_SUFFIX in name:
        name = name.split(SKIN_TONE_SUFFIX, 1)[0]
    return name


class EventRouter:
    """Minimal async pub/sub router for internal events."""

    def __init__(self) -> None:
        self._subscribers: Dict[str, List[EventHandler]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def subscribe(self, event_type: str, handler: EventHandler) -> None:
        async with self._lock:
            if handler not in self._subscribers[event_type]:
                self._subscribers[event_type].append(handler)

    async def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        async with self._lock:
            listeners = self._subscribers.get(event_type)
            if listeners and handler in listeners:
                listeners.remove(handler)

    async def dispatch(self, event_type: str, payload: dict) -> None:
        listeners = list(self._subscribers.get(event_type, ()))
        for handler in listeners:
            try:
                await handler(event_type, payload)
            except Exception:
                logger.exception("Subscriber for %s failed", event_type)


@dataclass(slots=True, frozen=True)
class Member:
    """A caller resolved against the workspace."""

    id: str
    is_admin: bool = False
    roles: FrozenSet[str] = frozenset()

    def has_role(self, role_id: str) -> bool:
        return role_id in self.roles


@dataclass(slots=True)
class ChatMessage:
    channel: str
    user: str
    text: str
    ts: str
    thread_ts: Optional[str] = None
    raw: Mapping[str, Any] = field(default_factory=dict)

    @property
    def reply_ts(self) -> str:
        return self.thread_ts or self.ts

    @classmethod
    def from_slack(cls, event: Mapping[str, Any]) -> Optional["ChatMessage"]:
        # Edits, joins and bot posts arrive as message subtypes
        if event.get("subtype") or event.get("bot_id"):
            return None
        user = event.get("user")
        channel = event.get("channel")
        if not user or not channel:
            return None
        return cls(
            channel=channel,
            user=user,
            text=event.get("text") or "",
            ts=event.get("ts", ""),
            thread_ts=event.get("thread_ts"),
            raw=event,
        )


@dataclass(slots=True)
class ReactionEvent:
    channel: str
    user: str
    name: str
    message_ts: str
    item_user: Optional[str] = None
    raw: Mapping[str, Any] = field(default_factory=dict)

    @property
    def emoji(self) -> str:
        """Lookup key; skin tones collapse onto the base reaction."""
        return normalize_emoji(self.name)

    @classmethod
    def from_slack(cls, event: Mapping[str, Any]) -> Optional["ReactionEvent"]:
        item = event.get("item") or {}
        if item.get("type") != "message":
            return None
        user = event.get("user")
        reaction = event.get("reaction")
        if not user or not reaction:
            return None
        return cls(
            channel=item.get("channel", ""),
            user=user,
            name=reaction,
            message_ts=item.get("ts", ""),
            item_user=event.get("item_user"),
            raw=event,
        )


@dataclass(slots=True)
class MemberEvent:
    user: str
    profile: Mapping[str, Any] = field(default_factory=dict)
    raw: Mapping[str, Any] = field(default_factory=dict)

    @property
    def display_name(self) -> Optional[str]:
        return self.profile.get("display_name") or self.profile.get("real_name") or None

    @classmethod
    def from_slack(cls, event: Mapping[str, Any]) -> Optional["MemberEvent"]:
        user = event.get("user")
        if isinstance(user, Mapping):
            user_id = user.get("id")
            profile = user.get("profile") or {}
        else:
            user_id = user
            profile = {}
        if not user_id:
            return None
        return cls(user=user_id, profile=profile, raw=event)
