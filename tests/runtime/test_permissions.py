import asyncio

import pytest

from core.events import Member
from core.permissions import Tier, is_authorized
from helpers import CONTROL_CHANNEL

MOD_GROUP = "SMODS"
USER_GROUP = "SUSERS"


async def configure_roles(runtime, user=USER_GROUP, mod=MOD_GROUP, channel="CBOT"):
    state = runtime.plugins.permissions.state
    if user:
        await state.write("config", "User", user)
    if mod:
        await state.write("config", "Mod", mod)
    if channel:
        await state.write("config", "UserCommandChannel", channel)


def test_tiers_are_ordered():
    assert Tier.ANY < Tier.USER < Tier.MOD < Tier.ADMIN


@pytest.mark.parametrize("tier", list(Tier))
def test_any_is_always_authorized(tier):
    assert is_authorized(tier, Tier.ANY)


def test_is_authorized_compares_tiers():
    assert is_authorized(Tier.ADMIN, Tier.MOD)
    assert is_authorized(Tier.MOD, Tier.MOD)
    assert not is_authorized(Tier.USER, Tier.MOD)


def test_resolve_tier_uses_admin_flag_and_groups(runtime):
    resolver = runtime.context.permissions

    async def scenario():
        await configure_roles(runtime)
        admin = await resolver.resolve_tier(Member(id="U1", is_admin=True))
        mod = await resolver.resolve_tier(Member(id="U2", roles=frozenset({MOD_GROUP})))
        user = await resolver.resolve_tier(Member(id="U3", roles=frozenset({USER_GROUP})))
        nobody = await resolver.resolve_tier(Member(id="U4"))
        return admin, mod, user, nobody

    assert asyncio.run(scenario()) == (Tier.ADMIN, Tier.MOD, Tier.USER, Tier.ANY)


def test_resolve_tier_is_monotonic(runtime):
    resolver = runtime.context.permissions

    async def scenario():
        await configure_roles(runtime)
        both = Member(id="U1", roles=frozenset({MOD_GROUP, USER_GROUP}))
        admin_mod = Member(id="U2", is_admin=True, roles=frozenset({MOD_GROUP}))
        return await resolver.resolve_tier(both), await resolver.resolve_tier(admin_mod)

    both, admin_mod = asyncio.run(scenario())
    assert both >= Tier.MOD
    assert admin_mod == Tier.ADMIN


def test_missing_role_fails_closed_and_alerts_once(runtime, gateway):
    resolver = runtime.context.permissions
    member = Member(id="U1", roles=frozenset({MOD_GROUP}))

    async def scenario():
        first = await resolver.resolve_tier(member)
        second = await resolver.resolve_tier(member)
        return first, second

    first, second = asyncio.run(scenario())

    assert first == second == Tier.ANY
    alerts = gateway.texts(CONTROL_CHANNEL)
    # One alert for Mod, one for User; repeats are throttled
    assert len(alerts) == 2
    assert any("Mod" in text for text in alerts)
    assert any("User" in text for text in alerts)


def test_user_command_channel_reads_permissions_config(runtime):
    resolver = runtime.context.permissions

    async def scenario():
        before = await resolver.user_command_channel()
        await configure_roles(runtime, channel="CBOTS")
        return before, await resolver.user_command_channel()

    assert asyncio.run(scenario()) == (None, "CBOTS")
