"""Transport interfaces."""

from __future__ import annotations

from typing import Protocol

from hubadapter.core.model import Command, Intent


class IntentSink(Protocol):
    def __call__(self, intent: Intent) -> None:
        """Deliver an intent to the host."""


class CommandSink(Protocol):
    def __call__(self, command: Command) -> None:
        """Deliver an encoded command to the device."""

