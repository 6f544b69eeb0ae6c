from __future__ import annotations

from collections.abc import Callable
from typing import Any

from hubadapter.core.model import EditDevice, PublishMessage, RestartDriver, SetData


class FakeTimer:
    def __init__(self, scheduler: FakeScheduler, when: float, callback: Callable[..., Any], args: tuple) -> None:
        self.scheduler = scheduler
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Manual clock; ``advance`` fires due timers in order."""

    def __init__(self) -> None:
        self.now = 0.0
        self.timers: list[FakeTimer] = []

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> FakeTimer:
        timer = FakeTimer(self, self.now + delay, callback, args)
        self.timers.append(timer)
        return timer

    def pending(self) -> list[FakeTimer]:
        return sorted((t for t in self.timers if not t.cancelled), key=lambda t: t.when)

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [t for t in self.pending() if t.when <= target]
            if not due:
                break
            timer = due[0]
            self.timers.remove(timer)
            self.now = timer.when
            timer.callback(*timer.args)
        self.now = target


class Recorder:
    """Intent sink that keeps everything it receives."""

    def __init__(self) -> None:
        self.intents: list[Any] = []

    def __call__(self, intent: Any) -> None:
        self.intents.append(intent)

    def clear(self) -> None:
        self.intents.clear()

    @property
    def publishes(self) -> list[PublishMessage]:
        return [i for i in self.intents if isinstance(i, PublishMessage)]

    @property
    def set_data(self) -> list[SetData]:
        return [i for i in self.intents if isinstance(i, SetData)]

    @property
    def edits(self) -> list[EditDevice]:
        return [i for i in self.intents if isinstance(i, EditDevice)]

    @property
    def restarts(self) -> list[RestartDriver]:
        return [i for i in self.intents if isinstance(i, RestartDriver)]

    def statuses(self) -> list[str]:
        return [i.status for i in self.set_data if i.status is not None]


def feature(fid: str, name: str, category: str, *types: str) -> dict[str, Any]:
    return {"_id": fid, "name": name, "category": category, "verifyvalue": "", "types": list(types)}


def init_message(
    device_id: str,
    *,
    conf: dict[str, Any],
    features: list[dict[str, Any]],
    values: dict[str, Any] | None = None,
    status: str | None = None,
    name: str = "Device",
    disable: bool = False,
) -> dict[str, Any]:
    return {
        "type": "init",
        "device": {
            "_id": device_id,
            "name": name,
            "icon": "",
            "conf": conf,
            "features": features,
            "disable": disable,
        },
        "values": {"feature": values or {}, "status": status},
    }


def mqtt(topic: str, message: Any) -> dict[str, Any]:
    return {"type": "mqtt", "topic": topic, "message": message}


def redis(**feature_values: Any) -> dict[str, Any]:
    return {"type": "redis", "message": {"feature": feature_values}}
