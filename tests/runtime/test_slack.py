import asyncio

from core.slack import OperatorAlerts, SlackGateway
from helpers import FakeGateway, slack_error


class FakeWebClient:
    """Answers the handful of Web API methods the gateway calls."""

    def __init__(self):
        self.calls = []
        self.usergroup_calls = 0

    async def chat_postMessage(self, **kwargs):
        self.calls.append(("chat_postMessage", kwargs))
        return {"ok": True, "ts": "1700000000.000900"}

    async def users_info(self, user):
        return {"ok": True, "user": {"id": user, "is_owner": user == "UOWNER"}}

    async def usergroups_list(self, include_users):
        self.usergroup_calls += 1
        return {
            "ok": True,
            "usergroups": [
                {"id": "SMODS", "users": ["UMOD"]},
                {"id": "SUSERS", "users": ["UMOD", "UOWNER"]},
            ],
        }

    async def conversations_history(self, channel, latest, inclusive, limit):
        messages = [
            {"ts": "1700000000.000300", "user": "U1"},
            {"ts": "1700000000.000200", "user": "U1"},
        ]
        if not inclusive:
            messages = [m for m in messages if m["ts"] < latest]
        return {"ok": True, "messages": [m for m in messages if m["ts"] <= latest][:limit]}

    async def reactions_get(self, channel, timestamp, full):
        return {
            "ok": True,
            "message": {"reactions": [{"name": "pushpin", "users": ["U1", "U2"]}]},
        }


def test_fetch_member_combines_admin_flag_and_groups():
    client = FakeWebClient()
    gateway = SlackGateway(client)

    async def scenario():
        return await gateway.fetch_member("UMOD"), await gateway.fetch_member("UOWNER")

    mod, owner = asyncio.run(scenario())

    assert (mod.is_admin, mod.roles) == (False, frozenset({"SMODS", "SUSERS"}))
    assert (owner.is_admin, owner.roles) == (True, frozenset({"SUSERS"}))
    # Group membership is cached between lookups
    assert client.usergroup_calls == 1


def test_post_message_passes_thread_and_blocks():
    client = FakeWebClient()
    gateway = SlackGateway(client)

    ts = asyncio.run(gateway.post_message("C1", "hi", thread_ts="1.0", blocks=[{"type": "divider"}]))

    assert ts == "1700000000.000900"
    assert client.calls == [
        ("chat_postMessage", {"channel": "C1", "text": "hi", "thread_ts": "1.0", "blocks": [{"type": "divider"}]})
    ]


def test_message_lookups():
    gateway = SlackGateway(FakeWebClient())

    async def scenario():
        found = await gateway.fetch_message("C1", "1700000000.000200")
        missing = await gateway.fetch_message("C1", "1700000000.000250")
        older = await gateway.fetch_history_before("C1", "1700000000.000300", 10)
        users = await gateway.reaction_users("C1", "1700000000.000300", "pushpin")
        none = await gateway.reaction_users("C1", "1700000000.000300", "star")
        return found, missing, older, users, none

    found, missing, older, users, none = asyncio.run(scenario())

    assert found["ts"] == "1700000000.000200"
    assert missing is None
    assert [m["ts"] for m in older] == ["1700000000.000200"]
    assert (users, none) == (["U1", "U2"], [])


def test_alerts_go_to_control_channel():
    gateway = FakeGateway()
    asyncio.run(OperatorAlerts(gateway, "CCONTROL").warn("Mod role is not set"))
    assert gateway.texts("CCONTROL") == [":warning: Mod role is not set"]


def test_unreachable_control_channel_is_logged_not_raised(caplog):
    class DeadGateway(FakeGateway):
        async def post_message(self, channel, text, **kwargs):
            raise slack_error("channel_not_found")

    asyncio.run(OperatorAlerts(DeadGateway(), "CMISSING").warn("something"))
    assert "CMISSING" in caplog.text
