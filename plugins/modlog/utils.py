from __future__ import annotations

from typing import Any, Mapping, Optional

from core.events import (
    PLUGIN_ACTIVATED,
    PLUGIN_CONFIGURED,
    PLUGIN_DEACTIVATED,
    MemberEvent,
)

PLUGIN_EVENT_VERBS = {
    PLUGIN_ACTIVATED: ("white_check_mark", "activated"),
    PLUGIN_DEACTIVATED: ("double_vertical_bar", "deactivated"),
    PLUGIN_CONFIGURED: ("gear", "configured"),
}


def _collapse_whitespace(value: str) -> str:
    return " ".join(value.split())


def describe_user(user_id: Optional[str], profile: Mapping[str, Any]) -> str:
    display_name = profile.get("display_name") or profile.get("display_name_normalized")
    real_name = profile.get("real_name")
    label = display_name or real_name
    if label:
        label = _collapse_whitespace(str(label))
    if user_id:
        if label and label != user_id:
            return f"<@{user_id}> ({label})"
        return f"<@{user_id}>"
    return label or "Unknown user"


def format_member_join_event(event: MemberEvent) -> str:
    return f":tada: {describe_user(event.user, event.profile)} joined the workspace."


def format_member_leave_event(event: MemberEvent) -> str:
    return f":wave: {describe_user(event.user, event.profile)} left the workspace."


def format_plugin_event(event_type: str, payload: Mapping[str, Any]) -> Optional[str]:
    plugin = payload.get("plugin")
    verb = PLUGIN_EVENT_VERBS.get(event_type)
    if not plugin or verb is None:
        return None
    emoji, action = verb
    return f":{emoji}: Plugin `{plugin}` was {action}."


__all__ = [
    "describe_user",
    "format_member_join_event",
    "format_member_leave_event",
    "format_plugin_event",
]
