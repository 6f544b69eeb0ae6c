"""Core data models shared by the loader, translator, controller, and CLI."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from dataclasses import field as dataclass_field
from typing import Any, Union

SENSOR = "sensor"
ACTION = "action"


@dataclass(frozen=True)
class FeatureTemplate:
    name: str
    category: str
    types: tuple[str, ...]
    verifyvalue: str = ""
    unit: str | None = None
    icon: str | None = None

    def to_record(self) -> dict[str, Any]:
        record: dict[str, Any] = {
            "name": self.name,
            "category": self.category,
            "verifyvalue": self.verifyvalue,
            "types": list(self.types),
        }
        if self.unit is not None:
            record["unit"] = self.unit
        if self.icon is not None:
            record["icon"] = self.icon
        return record


@dataclass(frozen=True)
class Feature:
    id: str
    name: str
    category: str
    types: tuple[str, ...]
    verifyvalue: str = ""
    unit: str | None = None
    icon: str | None = None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> Feature:
        return cls(
            id=str(record.get("_id", record.get("id", ""))),
            name=str(record.get("name", "")),
            category=str(record.get("category", SENSOR)),
            types=tuple(str(t) for t in record.get("types") or ()),
            verifyvalue=str(record.get("verifyvalue", "")),
            unit=record.get("unit"),
            icon=record.get("icon"),
        )

    def to_record(self) -> dict[str, Any]:
        record = FeatureTemplate(
            name=self.name,
            category=self.category,
            types=self.types,
            verifyvalue=self.verifyvalue,
            unit=self.unit,
            icon=self.icon,
        ).to_record()
        record["_id"] = self.id
        return record

    def sub_id(self, key: str) -> str | None:
        """Return the value of a ``key:value`` type tag, e.g. ``pin:3`` -> ``"3"``."""
        prefix = f"{key}:"
        for tag in self.types:
            if tag.startswith(prefix):
                return tag[len(prefix):]
        return None

    def sub_ids(self) -> dict[str, str]:
        ids: dict[str, str] = {}
        for tag in self.types:
            key, sep, value = tag.partition(":")
            if sep and key not in ids:
                ids[key] = value
        return ids


@dataclass
class Device:
    id: str
    name: str
    icon: str
    conf: dict[str, Any]
    features: list[Feature]
    perms: dict[str, Any] = dataclass_field(default_factory=dict)
    disabled: bool = False

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> Device:
        return cls(
            id=str(record.get("_id", record.get("id", ""))),
            name=str(record.get("name", "")),
            icon=str(record.get("icon", "")),
            conf=dict(record.get("conf") or {}),
            features=[Feature.from_record(f) for f in record.get("features") or ()],
            perms=dict(record.get("perms") or {}),
            disabled=bool(record.get("disable", False)),
        )


# ---------------------------------------------------------------- descriptors


@dataclass(frozen=True)
class Scale:
    """Linear map between a host range and a wire range."""

    in_min: float
    in_max: float
    out_min: float
    out_max: float

    def encode(self, value: float) -> float:
        return (value - self.in_min) / (self.in_max - self.in_min) * (self.out_max - self.out_min) + self.out_min

    def decode(self, value: float) -> float:
        return (value - self.out_min) / (self.out_max - self.out_min) * (self.in_max - self.in_min) + self.in_min


@dataclass(frozen=True)
class MatchRules:
    model: tuple[str, ...] = ()
    identifier_prefix: tuple[str, ...] = ()
    name_contains: tuple[str, ...] = ()


@dataclass(frozen=True)
class TransportSpec:
    type: str
    subscribe: tuple[str, ...] = ()
    base_url: str | None = None
    poll_path: str | None = None
    info_path: str | None = None
    response_format: str = "json"
    select_path: str | None = None
    select_key: str | None = None
    select_conf: str | None = None
    interval_key: str = "requestInterval"
    interval_default_ms: int = 30000
    interval_min_ms: int = 1000
    interval_max_ms: int = 120000
    timeout_s: float = 10.0
    auth: str | None = None


@dataclass(frozen=True)
class LivenessSpec:
    probe_topic: str
    probe_payload: str = "status"
    probe_s: float = 180.0
    offline_s: float = 300.0
    probe_on_init: bool = False


@dataclass(frozen=True)
class PairingSpec:
    mode: str
    done_key: str = "searching"
    done_value: Any = False
    listen: tuple[str, ...] = ()
    announce_prefix: str | None = None
    claim_topic: str | None = None
    registered_topic: str | None = None
    request_topic: str | None = None
    request_payload: str = "1"
    metadata: Mapping[str, str] = dataclass_field(default_factory=dict)
    status_field: str | None = None


@dataclass(frozen=True)
class InboundRule:
    kind: str
    topic: str
    exact: bool = False
    field: str | None = None
    tag: str | None = None
    parse: str = "text"
    accept: tuple[str, ...] = ()
    scale: Scale | None = None
    divisor: float | None = None
    round: int | None = None
    threshold: float | None = None
    transient: bool = True
    values: Mapping[str, Any] = dataclass_field(default_factory=dict)
    optional: str | None = None
    dominate_key: str | None = None
    metadata: Mapping[str, str] = dataclass_field(default_factory=dict)


@dataclass(frozen=True)
class FadeSpec:
    field: str
    conf_key: str | None = None
    channel_key: str | None = None
    default: float = 0
    skip_key: str | None = None
    boolean: bool = True


@dataclass(frozen=True)
class FollowSpec:
    tag: str
    when: str = "always"
    value: Any = None


@dataclass(frozen=True)
class OutboundRule:
    when: tuple[str, ...]
    topic: str
    encode: str
    field: str | None = None
    on_value: Any = True
    off_value: Any = False
    scale: Scale | None = None
    round: int | None = None
    fade: FadeSpec | None = None
    extra: Mapping[str, Any] = dataclass_field(default_factory=dict)
    always_forward: bool = False
    follow: FollowSpec | None = None

    def matches(self, feature: Feature) -> bool:
        for tag in self.when:
            if tag.endswith(":"):
                if feature.sub_id(tag[:-1]) is None:
                    return False
            elif tag not in feature.types:
                return False
        return True


@dataclass(frozen=True)
class SettingSpec:
    conf_key: str
    topic: str
    clamp: tuple[float, float] | None = None


@dataclass(frozen=True)
class Publish:
    topic: str
    payload: str


@dataclass(frozen=True)
class DeviceClass:
    id: str
    name: str
    transport: TransportSpec
    icon: str | None = None
    match: MatchRules = dataclass_field(default_factory=MatchRules)
    features: tuple[FeatureTemplate, ...] = ()
    optional_features: Mapping[str, FeatureTemplate] = dataclass_field(default_factory=dict)
    required: tuple[str, ...] = ()
    conf_defaults: Mapping[str, Any] = dataclass_field(default_factory=dict)
    pairing: PairingSpec | None = None
    liveness: LivenessSpec | None = None
    inbound: tuple[InboundRule, ...] = ()
    outbound: tuple[OutboundRule, ...] = ()
    settings: tuple[SettingSpec, ...] = ()
    on_online: tuple[Publish, ...] = ()
    restart_delay_s: float = 1.5
    restart_publish: Publish | None = None


# ------------------------------------------------------------ host messages


@dataclass(frozen=True)
class InitEvent:
    device: Device
    values: Mapping[str, Any] = dataclass_field(default_factory=dict)
    status: str | None = None


@dataclass(frozen=True)
class TransportMessage:
    topic: str
    payload: Any


@dataclass(frozen=True)
class StateUpdate:
    feature: Mapping[str, Any]
    status: str | None = None


Event = Union[InitEvent, TransportMessage, StateUpdate]


def event_from_message(message: Any) -> Event | None:
    """Convert a host message dict into an event; ``None`` for unknown kinds."""
    if not isinstance(message, Mapping):
        return None
    kind = message.get("type")
    if kind == "init" and isinstance(message.get("device"), Mapping):
        values = message.get("values") or {}
        if not isinstance(values, Mapping):
            values = {}
        feature_values = values.get("feature") or {}
        return InitEvent(
            device=Device.from_record(message["device"]),
            values=dict(feature_values) if isinstance(feature_values, Mapping) else {},
            status=values.get("status"),
        )
    if kind == "mqtt" and isinstance(message.get("topic"), str):
        return TransportMessage(topic=message["topic"], payload=message.get("message"))
    if kind == "redis" and isinstance(message.get("message"), Mapping):
        data = message["message"]
        feature_values = data.get("feature")
        if not isinstance(feature_values, Mapping):
            feature_values = {}
        return StateUpdate(feature=dict(feature_values), status=data.get("status"))
    return None


@dataclass(frozen=True)
class SetData:
    feature: Mapping[str, Any] = dataclass_field(default_factory=dict)
    status: str | None = None
    store: bool | None = None

    def to_message(self) -> dict[str, Any]:
        options: dict[str, Any] = {"feature": dict(self.feature)}
        if self.status is not None:
            options["status"] = self.status
        message: dict[str, Any] = {"type": "setData", "options": options}
        if self.store is not None:
            message["storeInDB"] = self.store
        return message


@dataclass(frozen=True)
class EditDevice:
    update: Mapping[str, Any]
    prevent_restart: bool = False

    def to_message(self) -> dict[str, Any]:
        message: dict[str, Any] = {"type": "editDevice", "update": dict(self.update)}
        if self.prevent_restart:
            message["preventRestart"] = True
        return message


@dataclass(frozen=True)
class PublishMessage:
    topic: str
    message: str

    def to_message(self) -> dict[str, Any]:
        return {"type": "publishMessage", "topic": self.topic, "message": self.message}


@dataclass(frozen=True)
class RestartDriver:
    def to_message(self) -> dict[str, Any]:
        return {"type": "restartDeviceDriver"}


Intent = Union[SetData, EditDevice, PublishMessage, RestartDriver]


@dataclass(frozen=True)
class Command:
    """An encoded outbound command; ``target`` is a topic (MQTT) or path (HTTP)."""

    feature_id: str
    target: str
    payload: str
