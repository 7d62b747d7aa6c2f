"""Authority tiers and their resolution against configured user groups."""

from __future__ import annotations

import enum
import logging
import time
from typing import TYPE_CHECKING, Dict, Optional

from core.events import Member

if TYPE_CHECKING:  # pragma: no cover - typing only
    from core.slack import OperatorAlerts
    from core.state import PluginState

logger = logging.getLogger(__name__)

CONFIG_SECTION = "config"
USER_ROLE_SETTING = "User"
MOD_ROLE_SETTING = "Mod"
USER_COMMAND_CHANNEL_SETTING = "UserCommandChannel"

# Repeat "role not set" alerts at most this often per tier
ALERT_INTERVAL_SECONDS = 600.0


class Tier(enum.IntEnum):
    ANY = 0
    USER = 2
    MOD = 5
    ADMIN = 10

    @property
    def label(self) -> str:
        return self.name.capitalize()


def is_authorized(tier: Tier, required: Tier) -> bool:
    return tier >= required


ROLE_SETTINGS: Dict[Tier, str] = {
    Tier.USER: USER_ROLE_SETTING,
    Tier.MOD: MOD_ROLE_SETTING,
}


class PermissionResolver:
    """Resolves a member's effective tier.

    Admin comes from Slack's own admin/owner flags, User and Mod from
    membership in the user groups stored in the permissions plugin's config.
    """

    def __init__(self, settings: "PluginState", alerts: "OperatorAlerts") -> None:
        self.settings = settings
        self.alerts = alerts
        self._last_alert: Dict[Tier, float] = {}

    async def check(self, member: Member, tier: Tier) -> bool:
        if tier is Tier.ANY:
            return True
        if tier is Tier.ADMIN:
            return member.is_admin

        role = await self.settings.read(CONFIG_SECTION, ROLE_SETTINGS[tier])
        if not role:
            await self._alert_missing_role(tier)
            return False
        return member.has_role(role)

    async def resolve_tier(self, member: Member) -> Tier:
        for tier in (Tier.ADMIN, Tier.MOD, Tier.USER):
            if await self.check(member, tier):
                return tier
        return Tier.ANY

    async def user_command_channel(self) -> Optional[str]:
        return await self.settings.read(CONFIG_SECTION, USER_COMMAND_CHANNEL_SETTING)

    async def _alert_missing_role(self, tier: Tier) -> None:
        now = time.monotonic()
        last = self._last_alert.get(tier)
        if last is not None and now - last < ALERT_INTERVAL_SECONDS:
            logger.debug("Suppressing repeated alert for unset %s role", tier.label)
            return
        self._last_alert[tier] = now
        await self.alerts.warn(
            f"No user group is set for the {tier.label} permission level, "
            f"so nobody holds it. Run `config permissions` to set one."
        )
