from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from typing import List, Optional

from core.commands import ChatCommand, MessageStream
from core.events import ChatMessage
from core.permissions import Tier
from core.plugins import BasePlugin, PluginContext
from core.state import PluginState

RULES_SECTION = "rules"
RULES_KEY = "rules"
SEPARATOR = "=>"

AUTOMOD_HELP = (
    "*automod* answers messages matching a pattern:\n"
    "• `automod list`\n"
    "• `automod add <pattern> => <response>`\n"
    "• `automod halt <pattern> => <response>` also stops commands in that message\n"
    "• `automod remove <number>`\n"
    "`{mention}` in a response is replaced by the author."
)


@dataclass
class AutoModRule:
    pattern: str
    response: str
    flags: int = re.IGNORECASE
    halt: bool = False

    def compiled(self) -> Optional[re.Pattern[str]]:
        try:
            return re.compile(self.pattern, self.flags)
        except re.error:
            return None


async def load_rules(state: PluginState) -> List[AutoModRule]:
    stored = await state.read(RULES_SECTION, RULES_KEY)
    if not stored:
        return []
    rules: List[AutoModRule] = []
    for item in stored:
        try:
            pattern = str(item["pattern"])
            response = str(item["response"])
            flags = int(item.get("flags", re.IGNORECASE))
            halt = bool(item.get("halt", False))
        except (KeyError, TypeError, ValueError, AttributeError):
            continue
        candidate = AutoModRule(pattern=pattern, response=response, flags=flags, halt=halt)
        if candidate.compiled() is not None:
            rules.append(candidate)
    return rules


async def save_rules(state: PluginState, rules: List[AutoModRule]) -> None:
    await state.write(RULES_SECTION, RULES_KEY, [asdict(rule) for rule in rules])


def parse_rule(text: str, halt: bool) -> Optional[AutoModRule]:
    if SEPARATOR not in text:
        return None
    pattern, response = (part.strip() for part in text.split(SEPARATOR, 1))
    if not pattern or not response:
        return None
    rule = AutoModRule(pattern=pattern, response=response, halt=halt)
    if rule.compiled() is None:
        return None
    return rule


class AutoModPlugin(BasePlugin):
    key = "automod"
    name = "Automoderator"
    description = "Auto-responds when messages match configured patterns."

    def register(self, context: PluginContext) -> None:
        gateway = context.gateway
        if self.state is None:
            self.state = PluginState(context.storage, self.key)
        state = self.state

        async def automod_stream(message: ChatMessage) -> bool:
            rules = await load_rules(state)
            for rule in rules:
                regex = rule.compiled()
                if regex and regex.search(message.text):
                    response_text = rule.response.replace("{mention}", f"<@{message.user}>")
                    await gateway.post_message(message.channel, response_text, thread_ts=message.reply_ts)
                    return not rule.halt
            return True

        self.message_stream = MessageStream(name=self.key, run=automod_stream)
        self.commands = [AutoModCommand(context, state)]


class AutoModCommand(ChatCommand):
    name = "automod"
    permission = Tier.MOD

    def __init__(self, context: PluginContext, state: PluginState) -> None:
        self.context = context
        self.state = state

    def help_text(self) -> str:
        return AUTOMOD_HELP

    async def run(self, message: ChatMessage, args: List[str]) -> None:
        reply = await self._handle(args)
        await self.context.gateway.post_message(message.channel, reply)

    async def _handle(self, args: List[str]) -> str:
        if not args:
            return self.help_text()
        action = args[0].lower()
        rules = await load_rules(self.state)

        if action == "list":
            if not rules:
                return "No automod rules yet."
            lines = []
            for index, rule in enumerate(rules, start=1):
                marker = " (halts commands)" if rule.halt else ""
                lines.append(f"{index}. `{rule.pattern}` → {rule.response}{marker}")
            return "\n".join(lines)

        if action in ("add", "halt"):
            rule = parse_rule(" ".join(args[1:]), halt=action == "halt")
            if rule is None:
                return f"Use `automod {action} <pattern> {SEPARATOR} <response>` with a valid pattern."
            rules.append(rule)
            await save_rules(self.state, rules)
            return f"Added rule {len(rules)}."

        if action == "remove":
            try:
                index = int(args[1]) - 1
            except (IndexError, ValueError):
                return "Use `automod remove <number>`."
            if not 0 <= index < len(rules):
                return f"There is no rule {index + 1}."
            del rules[index]
            await save_rules(self.state, rules)
            return f"Removed rule {index + 1}."

        return self.help_text()


plugin = AutoModPlugin()
