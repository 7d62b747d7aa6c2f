"""Slack client seam: app factory, outbound gateway, event binding."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, Dict, FrozenSet, List, Mapping, Optional

from slack_bolt.async_app import AsyncApp
from slack_sdk.errors import SlackApiError
from slack_sdk.web.async_client import AsyncWebClient

from core.config import AppConfig
from core.events import ChatMessage, Member, MemberEvent, ReactionEvent

if TYPE_CHECKING:  # pragma: no cover - typing only
    from core.dispatch import Dispatcher

logger = logging.getLogger(__name__)

USERGROUP_CACHE_SECONDS = 60.0


def create_slack_app(config: AppConfig) -> AsyncApp:
    """Instantiate the AsyncApp with configuration."""

    return AsyncApp(token=config.slack_bot_token, signing_secret=config.signing_secret)


class SlackGateway:
    """Outbound actions and id lookups used by the runtime and plugins."""

    def __init__(self, client: AsyncWebClient) -> None:
        self.client = client
        self._groups: Dict[str, FrozenSet[str]] = {}
        self._groups_fetched_at: Optional[float] = None

    async def post_message(
        self,
        channel: str,
        text: str,
        *,
        thread_ts: Optional[str] = None,
        blocks: Optional[List[Dict[str, Any]]] = None,
    ) -> Optional[str]:
        response = await self.client.chat_postMessage(
            channel=channel, text=text, thread_ts=thread_ts, blocks=blocks
        )
        return response.get("ts")

    async def remove_reaction(self, channel: str, ts: str, name: str) -> None:
        await self.client.reactions_remove(channel=channel, timestamp=ts, name=name)

    async def fetch_member(self, user_id: str) -> Member:
        response = await self.client.users_info(user=user_id)
        user = response.get("user") or {}
        is_admin = bool(user.get("is_admin") or user.get("is_owner"))
        groups = await self._user_groups()
        roles = frozenset(group for group, members in groups.items() if user_id in members)
        return Member(id=user_id, is_admin=is_admin, roles=roles)

    async def _user_groups(self) -> Dict[str, FrozenSet[str]]:
        now = time.monotonic()
        if (
            self._groups_fetched_at is not None
            and now - self._groups_fetched_at < USERGROUP_CACHE_SECONDS
        ):
            return self._groups
        response = await self.client.usergroups_list(include_users=True)
        self._groups = {
            group["id"]: frozenset(group.get("users") or ())
            for group in response.get("usergroups") or ()
            if group.get("id")
        }
        self._groups_fetched_at = now
        return self._groups

    async def fetch_message(self, channel: str, ts: str) -> Optional[Dict[str, Any]]:
        response = await self.client.conversations_history(
            channel=channel, latest=ts, inclusive=True, limit=1
        )
        messages = response.get("messages") or []
        if messages and messages[0].get("ts") == ts:
            return messages[0]
        return None

    async def fetch_history_before(self, channel: str, ts: str, limit: int) -> List[Dict[str, Any]]:
        """Messages strictly older than ``ts``, newest first."""

        response = await self.client.conversations_history(
            channel=channel, latest=ts, inclusive=False, limit=limit
        )
        return list(response.get("messages") or [])

    async def reaction_users(self, channel: str, ts: str, name: str) -> List[str]:
        response = await self.client.reactions_get(channel=channel, timestamp=ts, full=True)
        message = response.get("message") or {}
        for reaction in message.get("reactions") or ():
            if reaction.get("name") == name:
                return list(reaction.get("users") or ())
        return []


class OperatorAlerts:
    """Operator-facing warnings, mirrored to the control channel."""

    def __init__(self, gateway: SlackGateway, control_channel: str) -> None:
        self.gateway = gateway
        self.control_channel = control_channel

    async def warn(self, text: str) -> None:
        logger.warning("Operator alert: %s", text)
        try:
            await self.gateway.post_message(self.control_channel, f":warning: {text}")
        except SlackApiError as exc:
            logger.error(
                "Control channel %s unreachable, check CONTROL_CHANNEL: %s",
                self.control_channel,
                exc,
            )


def bind_events(app: AsyncApp, dispatcher: "Dispatcher") -> None:
    """Route Slack events into the dispatcher."""

    @app.event("message")
    async def handle_message(event: Dict[str, Any], **kwargs: Any) -> None:
        message = ChatMessage.from_slack(event)
        if message is not None:
            await dispatcher.handle_message(message)

    @app.event("reaction_added")
    async def handle_reaction_added(event: Dict[str, Any], **kwargs: Any) -> None:
        reaction = ReactionEvent.from_slack(event)
        if reaction is not None:
            await dispatcher.run_reaction_command(reaction)

    @app.event("team_join")
    async def handle_team_join(event: Dict[str, Any], **kwargs: Any) -> None:
        member = MemberEvent.from_slack(event)
        if member is not None:
            await dispatcher.handle_member_join(member)

    @app.event("user_change")
    async def handle_user_change(event: Dict[str, Any], **kwargs: Any) -> None:
        # Deactivated accounts are the only workspace "leave" Slack reports.
        # Every later edit of a deleted user repeats the flag.
        user = event.get("user")
        if not isinstance(user, Mapping):
            return
        member = MemberEvent.from_slack(event)
        if member is None:
            return
        if user.get("deleted"):
            await dispatcher.handle_member_leave(member)
        else:
            await dispatcher.handle_member_return(member)
