"""Routes inbound messages, reactions and member events to plugin code."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Dict, Optional

from slack_sdk.errors import SlackApiError

from core.commands import split_command
from core.events import ChatMessage, Member, MemberEvent, ReactionEvent
from core.permissions import PermissionResolver, Tier, is_authorized
from core.prompts import PromptCollector
from core.state import PluginState

if TYPE_CHECKING:  # pragma: no cover - typing only
    from core.plugins import MemberHandler, PluginManager
    from core.slack import SlackGateway

logger = logging.getLogger(__name__)

MEMBERS_NAMESPACE = "members"
DEPARTED_SECTION = "departed"


class Dispatcher:
    """Each entry point handles one inbound event; calls may interleave freely."""

    def __init__(
        self,
        plugins: "PluginManager",
        permissions: PermissionResolver,
        prompts: PromptCollector,
        gateway: "SlackGateway",
        command_prefix: str = "!",
    ) -> None:
        self.plugins = plugins
        self.permissions = permissions
        self.prompts = prompts
        self.gateway = gateway
        self.command_prefix = command_prefix
        self.members = PluginState(plugins.storage, MEMBERS_NAMESPACE)

    async def handle_message(self, message: ChatMessage) -> None:
        if self.prompts.feed(message):
            return
        if not await self.run_message_streams(message):
            return
        if message.text.startswith(self.command_prefix):
            await self.run_chat_command(message)

    async def run_message_streams(self, message: ChatMessage) -> bool:
        """Run every stream scoped to the message's channel.

        Returns True only if all of them allow command processing.
        """

        proceed = True
        for stream in list(self.plugins.message_streams.values()):
            if not stream.applies_to(message.channel):
                continue
            try:
                result = await stream.run(message)
            except Exception:
                logger.exception("Message stream %s failed", stream.name)
                continue
            proceed = bool(result) and proceed
        return proceed

    async def run_chat_command(self, message: ChatMessage) -> bool:
        """Returns whether a command was executed."""

        # Replies to a prompt are answers, not new commands
        if self.prompts.is_user_in_prompt(message.user):
            return False

        parsed = split_command(message.text, self.command_prefix)
        if parsed is None:
            return False
        name, args = parsed
        command = self.plugins.get_chat_command(name)
        if command is None:
            return False

        if command.permission is not Tier.ANY:
            member = await self._fetch_member(message.user)
            if member is None:
                return False
            tier = await self.permissions.resolve_tier(member)
            allowed = is_authorized(tier, command.permission)
            # Users may only run user commands in the user command channel
            if allowed and tier is Tier.USER and command.permission is Tier.USER:
                allowed = message.channel == await self.permissions.user_command_channel()
            if not allowed:
                logger.debug("Dropped %s from %s (tier %s)", name, message.user, tier.label)
                return False

        try:
            await command.run(message, args)
        except SlackApiError as exc:
            logger.warning("Command %s aborted, Slack call failed: %s", name, exc)
        except Exception:
            logger.exception("Command %s failed", name)
        return True

    async def run_reaction_command(self, reaction: ReactionEvent) -> bool:
        """Returns whether a reaction command was executed."""

        command = self.plugins.get_reaction_command(reaction.emoji)
        if command is None:
            return False

        member = await self._fetch_member(reaction.user)
        if member is None:
            return False
        tier = await self.permissions.resolve_tier(member)

        if not is_authorized(tier, command.permission):
            if command.remove_invalid:
                await self._retract(reaction)
            return False

        try:
            await command.run(reaction, member)
        except SlackApiError as exc:
            logger.warning("Reaction %s aborted, Slack call failed: %s", reaction.emoji, exc)
        except Exception:
            logger.exception("Reaction command %s failed", command.name)
        return True

    async def handle_member_join(self, event: MemberEvent) -> None:
        # A returning member may leave again later
        await self.members.delete(DEPARTED_SECTION, event.user)
        await self._run_member_handlers(self.plugins.join_handlers, event, "join")

    async def handle_member_leave(self, event: MemberEvent) -> None:
        """Report a departure once, however many deleted-user updates follow."""

        if await self.members.read(DEPARTED_SECTION, event.user):
            logger.debug("Departure of %s already reported", event.user)
            return
        await self.members.write(DEPARTED_SECTION, event.user, True)
        await self._run_member_handlers(self.plugins.leave_handlers, event, "leave")

    async def handle_member_return(self, event: MemberEvent) -> None:
        """A deactivated account was reactivated."""

        await self.members.delete(DEPARTED_SECTION, event.user)

    async def _run_member_handlers(
        self, handlers: Dict[str, "MemberHandler"], event: MemberEvent, kind: str
    ) -> None:
        # Run side by side; a handler may sleep before posting
        entries = list(handlers.items())
        results = await asyncio.gather(
            *(handler(event) for _, handler in entries), return_exceptions=True
        )
        for (key, _), result in zip(entries, results):
            if isinstance(result, Exception):
                logger.error(
                    "Member %s handler of %s failed", kind, key, exc_info=result
                )

    async def _fetch_member(self, user_id: str) -> Optional[Member]:
        try:
            return await self.gateway.fetch_member(user_id)
        except SlackApiError as exc:
            logger.warning("Could not resolve member %s: %s", user_id, exc)
            return None

    async def _retract(self, reaction: ReactionEvent) -> None:
        """Best effort: Slack only lets the bot remove its own reactions, so
        retracting a member's reaction usually fails and is only logged.
        """

        try:
            await self.gateway.remove_reaction(reaction.channel, reaction.message_ts, reaction.name)
        except SlackApiError as exc:
            logger.info("Could not retract :%s: by %s: %s", reaction.name, reaction.user, exc)
