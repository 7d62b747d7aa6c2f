from __future__ import annotations

from typing import Any

from core.storage import Storage


class PluginState:
    """One plugin's partition of the state store.

    Sections group related keys: ``config`` holds values collected by the
    configuration workflow, plugins add their own (``pins``, ``notes``...).
    """

    __slots__ = ("storage", "namespace")

    def __init__(self, storage: Storage, namespace: str) -> None:
        self.storage = storage
        self.namespace = namespace

    async def read(self, section: str, key: str) -> Any:
        return await self.storage.read(self.namespace, section, key)

    async def write(self, section: str, key: str, value: Any) -> None:
        await self.storage.write(self.namespace, section, key, value)

    async def delete(self, section: str, key: str) -> None:
        await self.storage.delete(self.namespace, section, key)

    def __repr__(self) -> str:
        return f"PluginState({self.namespace!r})"
