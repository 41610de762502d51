"""Per-CLI capability adapters and the factory that selects one."""

from __future__ import annotations

from typing import List, Type

from .base import CliAdapter, PassthroughAdapter
from .q_chat import QChatAdapter


# Checked in order; the first variant whose ``matches`` holds wins
ADAPTERS: List[Type[CliAdapter]] = [QChatAdapter]


def create_adapter(command: str) -> CliAdapter:
    """Build the adapter for ``command``, falling back to passthrough."""
    for adapter_cls in ADAPTERS:
        if adapter_cls.matches(command):
            return adapter_cls(command)
    return PassthroughAdapter(command)


__all__ = [
    "ADAPTERS",
    "CliAdapter",
    "PassthroughAdapter",
    "QChatAdapter",
    "create_adapter",
]
