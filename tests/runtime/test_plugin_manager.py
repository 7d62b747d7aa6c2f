import asyncio
import textwrap

from core.commands import MessageStream, Setting
from core.events import PLUGIN_ACTIVATED, PLUGIN_DEACTIVATED, EventRouter
from core.plugins import LifecycleOutcome, PluginManager
from core.prompts import InputType
from helpers import RecordingCommand, RecordingReaction, SamplePlugin

TEMPLATE = (Setting("channel", InputType.CHANNEL, "Where?"),)


def installed_keys(manager):
    return set(manager.chat_commands), set(manager.reaction_commands), set(manager.message_streams)


def test_load_without_template_is_configured(runtime):
    manager = runtime.plugins
    plugin = SamplePlugin("plain")

    async def scenario():
        await manager.load(plugin)
        return await manager.is_configured("plain"), await manager.is_active("plain")

    assert asyncio.run(scenario()) == (True, False)
    assert plugin.state is None


def test_load_with_template_allocates_state_and_stays_unconfigured(runtime):
    manager = runtime.plugins
    plugin = SamplePlugin("setup", template=TEMPLATE)

    async def scenario():
        await manager.load(plugin)
        return await manager.is_configured("setup")

    assert asyncio.run(scenario()) is False
    assert plugin.state is not None
    assert plugin.state.namespace == "setup"


def test_activate_unknown_and_unconfigured_are_distinct(runtime):
    manager = runtime.plugins
    plugin = SamplePlugin("setup", commands=[RecordingCommand("hidden")], template=TEMPLATE)

    async def scenario():
        await manager.load(plugin)
        before = installed_keys(manager)
        missing = await manager.activate("nonexistent")
        unconfigured = await manager.activate("setup")
        return before, missing, unconfigured

    before, missing, unconfigured = asyncio.run(scenario())

    assert missing is LifecycleOutcome.NOT_FOUND
    assert unconfigured is LifecycleOutcome.NOT_CONFIGURED
    assert installed_keys(manager) == before
    assert "hidden" not in manager.chat_commands
    assert plugin.init_calls == 0


def test_activate_runs_init_and_installs_everything(runtime):
    manager = runtime.plugins

    async def noop(message):
        return True

    stream = MessageStream(name="watch", run=noop)
    plugin = SamplePlugin(
        "sample",
        commands=[RecordingCommand("hello"), RecordingReaction("star", ":star:")],
        stream=stream,
    )

    async def scenario():
        await manager.load(plugin)
        outcome = await manager.activate("sample")
        return outcome, await manager.is_active("sample")

    outcome, active = asyncio.run(scenario())

    assert outcome is LifecycleOutcome.ACTIVATED
    assert active is True
    assert plugin.init_calls == 1
    assert manager.get_chat_command("HELLO") is plugin.commands[0]
    assert manager.get_reaction_command("star") is plugin.commands[1]
    assert manager.message_streams["sample"] is stream


def test_deactivate_then_reactivate_restores_same_keys(runtime):
    manager = runtime.plugins
    plugin = SamplePlugin(
        "sample",
        commands=[RecordingCommand("a"), RecordingCommand("b"), RecordingReaction("tick", "white_check_mark")],
    )

    async def scenario():
        await manager.load(plugin)
        await manager.activate("sample")
        first = installed_keys(manager)
        deactivated = await manager.deactivate("sample")
        empty = installed_keys(manager)
        again = await manager.deactivate("sample")
        await manager.activate("sample")
        return first, deactivated, empty, again, installed_keys(manager)

    first, deactivated, empty, again, restored = asyncio.run(scenario())

    assert deactivated is again is LifecycleOutcome.DEACTIVATED
    assert empty == (set(), set(), set())
    assert restored == first == ({"a", "b"}, {"white_check_mark"}, set())


def test_deactivate_unknown_plugin(runtime):
    assert asyncio.run(runtime.plugins.deactivate("ghost")) is LifecycleOutcome.NOT_FOUND


def test_name_collision_last_installed_wins(runtime):
    manager = runtime.plugins
    first = RecordingCommand("roll")
    second = RecordingCommand("roll")

    async def scenario():
        await manager.load(SamplePlugin("one", commands=[first]))
        await manager.load(SamplePlugin("two", commands=[second]))
        await manager.activate("one")
        await manager.activate("two")
        winner = manager.get_chat_command("roll")
        # Removing the overwritten plugin must not unhook the winner
        await manager.deactivate("one")
        return winner, manager.get_chat_command("roll")

    winner, after = asyncio.run(scenario())
    assert winner is second
    assert after is second


def test_failing_init_is_reported_and_nothing_installed(runtime):
    manager = runtime.plugins
    plugin = SamplePlugin("broken", commands=[RecordingCommand("oops")], fail_init=True)

    async def scenario():
        await manager.load(plugin)
        outcome = await manager.activate("broken")
        return outcome, await manager.is_active("broken")

    outcome, active = asyncio.run(scenario())
    assert outcome is LifecycleOutcome.INIT_FAILED
    assert active is False
    assert "oops" not in manager.chat_commands


def test_reaction_without_emoji_is_skipped(runtime):
    manager = runtime.plugins
    plugin = SamplePlugin("pending", commands=[RecordingReaction("pin", None)])

    async def scenario():
        await manager.load(plugin)
        return await manager.activate("pending")

    assert asyncio.run(scenario()) is LifecycleOutcome.ACTIVATED
    assert manager.reaction_commands == {}


def test_initiate_all_restores_active_plugins_after_restart(storage):
    async def scenario():
        first_run = PluginManager(storage)
        await first_run.load(SamplePlugin("keep", commands=[RecordingCommand("kept")]))
        await first_run.load(SamplePlugin("idle", commands=[RecordingCommand("idle")]))
        await first_run.activate("keep")

        second_run = PluginManager(storage)
        await second_run.load(SamplePlugin("keep", commands=[RecordingCommand("kept")]))
        await second_run.load(SamplePlugin("idle", commands=[RecordingCommand("idle")]))
        await second_run.initiate_all()
        return set(second_run.chat_commands)

    assert asyncio.run(scenario()) == {"kept"}


def test_builtins_bypass_lifecycle(runtime):
    manager = runtime.plugins
    builtin = SamplePlugin("core-stuff", commands=[RecordingCommand("status")])

    async def scenario():
        await manager.add_builtin(builtin)
        return await manager.deactivate("core-stuff")

    assert asyncio.run(scenario()) is LifecycleOutcome.NOT_FOUND
    assert manager.get_chat_command("status") is builtin.commands[0]
    assert builtin.init_calls == 1


def test_lifecycle_changes_are_published(storage):
    router = EventRouter()
    seen = []

    async def listener(event_type, payload):
        seen.append((event_type, payload["plugin"]))

    async def scenario():
        manager = PluginManager(storage, event_router=router)
        await router.subscribe(PLUGIN_ACTIVATED, listener)
        await router.subscribe(PLUGIN_DEACTIVATED, listener)
        await manager.load(SamplePlugin("sample"))
        await manager.activate("sample")
        await manager.deactivate("sample")

    asyncio.run(scenario())
    assert seen == [(PLUGIN_ACTIVATED, "sample"), (PLUGIN_DEACTIVATED, "sample")]


def test_discover_skips_broken_plugins(runtime, tmp_path, monkeypatch):
    package = tmp_path / "scanpkg"
    (package / "good").mkdir(parents=True)
    (package / "bad").mkdir()
    (package / "__init__.py").write_text("")
    (package / "good" / "__init__.py").write_text("")
    (package / "bad" / "__init__.py").write_text("")
    (package / "good" / "plugin.py").write_text(
        textwrap.dedent(
            """
            from core.plugins import BasePlugin

            class GoodPlugin(BasePlugin):
                key = "good"

            plugin = GoodPlugin()
            """
        )
    )
    (package / "bad" / "plugin.py").write_text("raise RuntimeError('broken on import')\n")
    monkeypatch.syspath_prepend(str(tmp_path))

    manager = runtime.plugins
    manager.discover("scanpkg")
    assert [plugin.key for plugin in manager.discovered] == ["good"]


def test_register_all_isolates_failing_plugins(runtime):
    manager = runtime.plugins

    class ExplodingPlugin(SamplePlugin):
        def register(self, context):
            raise RuntimeError("cannot register")

    manager.discovered = [ExplodingPlugin("explodes"), SamplePlugin("fine")]
    asyncio.run(manager.register_all(runtime.context))

    assert "fine" in manager.plugins
    assert "explodes" not in manager.plugins
