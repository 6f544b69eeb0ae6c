"""Probe/offline watchdog for a single device."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Protocol

LOGGER = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Anything with ``call_later``; an asyncio event loop qualifies."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle: ...


class LivenessMonitor:
    """Two repeating timers re-armed by device traffic.

    The probe timer asks the device for its status; the offline timer reports
    the device offline. Each reschedules itself after firing, so both keep
    firing until :meth:`notify_activity` restarts the pair.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        *,
        probe_s: float,
        offline_s: float,
        on_probe: Callable[[], None],
        on_offline: Callable[[], None],
    ) -> None:
        self._scheduler = scheduler
        self.probe_s = probe_s
        self.offline_s = offline_s
        self._on_probe = on_probe
        self._on_offline = on_offline
        self._probe: TimerHandle | None = None
        self._offline: TimerHandle | None = None

    @property
    def armed(self) -> bool:
        return self._probe is not None and self._offline is not None

    def arm(self, clear: bool = True) -> None:
        if clear:
            self.stop()
        if self._probe is None:
            self._probe = self._scheduler.call_later(self.probe_s, self._fire_probe)
        if self._offline is None:
            self._offline = self._scheduler.call_later(self.offline_s, self._fire_offline)

    def notify_activity(self) -> None:
        self.arm(clear=True)

    def stop(self) -> None:
        if self._probe is not None:
            self._probe.cancel()
            self._probe = None
        if self._offline is not None:
            self._offline.cancel()
            self._offline = None

    def _fire_probe(self) -> None:
        self._probe = None
        try:
            self._on_probe()
        except Exception:
            LOGGER.exception("Status probe callback failed")
        self.arm(clear=False)

    def _fire_offline(self) -> None:
        self._offline = None
        try:
            self._on_offline()
        except Exception:
            LOGGER.exception("Offline callback failed")
        self.arm(clear=False)
