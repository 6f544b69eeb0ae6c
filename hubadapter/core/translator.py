"""Bidirectional mapping between host feature values and device wire values."""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from hubadapter.core.cache import ValueCache
from hubadapter.core.codec import (
    coerce_bool,
    decode_json,
    encode_payload,
    get_path,
    hex_to_rgb,
    render,
    template_context,
    tidy_number,
    to_number,
    topic_pattern,
)
from hubadapter.core.errors import CommandValueError, PayloadError
from hubadapter.core.features import FeatureDirectory
from hubadapter.core.model import (
    ACTION,
    Command,
    Device,
    DeviceClass,
    FadeSpec,
    Feature,
    InboundRule,
    OutboundRule,
    SetData,
)

LOGGER = logging.getLogger(__name__)

_UNPARSED = object()


@dataclass
class InboundResult:
    updates: list[SetData] = field(default_factory=list)
    status: str | None = None
    metadata: dict[str, Any] | None = None
    missing: list[str] = field(default_factory=list)
    resend: list[str] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not (self.updates or self.status or self.metadata or self.missing or self.resend)


@dataclass
class OutboundResult:
    commands: list[Command] = field(default_factory=list)
    updates: list[SetData] = field(default_factory=list)
    rejected: list[str] = field(default_factory=list)


class ProtocolTranslator:
    def __init__(
        self,
        device: Device,
        device_class: DeviceClass,
        directory: FeatureDirectory,
        cache: ValueCache,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.device = device
        self.device_class = device_class
        self.directory = directory
        self.cache = cache
        self._clock = clock
        self.context = template_context(device.id, device.conf)
        self._inbound: list[tuple[InboundRule, re.Pattern[str]]] = []
        for rule in device_class.inbound:
            try:
                self._inbound.append((rule, topic_pattern(rule.topic, self.context, exact=rule.exact)))
            except CommandValueError as exc:
                LOGGER.warning("Skipping inbound rule for %s: %s", rule.topic, exc)

    # ------------------------------------------------------------- inbound

    def inbound(self, topic: str, payload: Any) -> InboundResult:
        result = InboundResult()
        document: Any = _UNPARSED
        groups: dict[bool | None, dict[str, Any]] = {}

        for rule, pattern in self._inbound:
            match = pattern.match(topic)
            if match is None:
                continue
            if rule.field is not None or rule.kind == "info":
                if document is _UNPARSED:
                    try:
                        document = decode_json(payload)
                    except PayloadError as exc:
                        LOGGER.debug("Dropping message on %s: %s", topic, exc)
                        return InboundResult()
                raw = get_path(document, rule.field)
            else:
                raw = payload.decode("utf-8", errors="replace") if isinstance(payload, bytes) else payload
            if raw is None:
                continue

            if rule.kind == "status":
                text = raw if isinstance(raw, str) else encode_payload(raw)
                result.status = str(rule.values.get(text, text)) if text != "" else "error"
            elif rule.kind == "info":
                if isinstance(raw, Mapping):
                    result.metadata = {
                        target: get_path(raw, source)
                        for target, source in rule.metadata.items()
                        if get_path(raw, source) is not None
                    }
            else:
                self._inbound_feature(rule, match, raw, result, groups)

        for store, values in groups.items():
            if values:
                result.updates.append(SetData(feature=values, store=store))
        return result

    def _inbound_feature(
        self,
        rule: InboundRule,
        match: re.Match[str],
        raw: Any,
        result: InboundResult,
        groups: dict[bool | None, dict[str, Any]],
    ) -> None:
        tag = rule.tag or ""
        if match.groups():
            tag = tag.replace("{index}", match.group(1))
        feature = self.directory.resolve(tag)
        if feature is None:
            if rule.optional and rule.optional not in result.missing:
                result.missing.append(rule.optional)
            return

        try:
            value = self.parse_value(rule, raw)
        except PayloadError as exc:
            LOGGER.debug("Ignoring value for %s: %s", feature.id, exc)
            return

        if rule.dominate_key and self._dominates(rule.dominate_key):
            cached = self.cache.get(feature.id)
            if cached is not None and not self.same_effect(feature, cached, value):
                result.resend.append(feature.id)
                return

        if not self.cache.changed(feature.id, value):
            return

        store: bool | None = None
        if rule.threshold is not None:
            store = self.cache.delta(feature.id, value) > rule.threshold
            if not store and not rule.transient:
                return
        self.cache.set(feature.id, value)
        if store is not False:
            self.cache.mark_stored(feature.id, value)
        groups.setdefault(store, {})[feature.id] = value

    def parse_value(self, rule: InboundRule, raw: Any) -> Any:
        if rule.parse == "timestamp":
            return int(self._clock() * 1000)
        if rule.parse == "bool":
            flag = coerce_bool(raw)
            if flag is None:
                raise PayloadError(f"Not a boolean: {raw!r}")
            return flag
        if rule.parse == "number":
            number = to_number(raw)
            if number is None:
                raise PayloadError(f"Not a number: {raw!r}")
            if rule.divisor:
                number = number / rule.divisor
            if rule.scale is not None:
                number = rule.scale.decode(number)
            return tidy_number(number, rule.round)
        text = raw if isinstance(raw, str) else encode_payload(raw)
        if rule.accept and text not in rule.accept:
            raise PayloadError(f"Unexpected value {text!r}")
        return rule.values.get(text, text) if rule.values else text

    def _dominates(self, conf_key: str) -> bool:
        flag = self.device.conf.get(conf_key, True)
        parsed = coerce_bool(flag)
        return True if parsed is None else parsed

    # ------------------------------------------------------------ outbound

    def rule_for(self, feature: Feature) -> OutboundRule | None:
        for rule in self.device_class.outbound:
            if rule.matches(feature):
                return rule
        return None

    def outbound(self, changes: Mapping[str, Any]) -> OutboundResult:
        result = OutboundResult()
        for feature_id, value in changes.items():
            feature = self.directory.get(feature_id)
            if feature is None or feature.category != ACTION:
                continue
            rule = self.rule_for(feature)
            if rule is None:
                LOGGER.debug("No outbound rule for feature %s (%s)", feature.id, ", ".join(feature.types))
                continue
            try:
                command = self.encode(feature, rule, value)
            except CommandValueError as exc:
                LOGGER.warning("Invalid value received for feature %s: %s", feature.id, exc)
                result.rejected.append(feature.id)
                continue
            previous = self.cache.get(feature.id)
            unchanged = previous is not None and self._encodes_to(feature, rule, previous) == command
            if unchanged and not rule.always_forward:
                continue
            self.cache.set(feature.id, value)
            self.cache.mark_stored(feature.id, value)
            result.commands.append(command)
            follow = self._follow(rule, value, unchanged)
            if follow is not None:
                result.updates.append(follow)
        return result

    def encode(self, feature: Feature, rule: OutboundRule, value: Any) -> Command:
        context = {**self.context, **feature.sub_ids(), "feature_id": feature.id}
        boolean = False
        body: dict[str, Any] | None = None

        if rule.encode == "switch":
            flag = coerce_bool(value)
            if flag is None:
                raise CommandValueError(f"{value!r} is not boolean-like")
            wire: Any = rule.on_value if flag else rule.off_value
            boolean = True
        elif rule.encode == "level" and _boolean_like(value):
            high, low = rule.on_value, rule.off_value
            if isinstance(high, bool) or isinstance(low, bool):
                high = rule.scale.out_max if rule.scale else 255
                low = rule.scale.out_min if rule.scale else 0
            wire = tidy_number(high if coerce_bool(value) else low)
            boolean = True
        elif rule.encode in ("level", "scaled", "number"):
            number = to_number(value)
            if number is None:
                raise CommandValueError(f"{value!r} is not numeric")
            if rule.scale is not None:
                number = rule.scale.encode(number)
            wire = tidy_number(number, rule.round)
        elif rule.encode == "color":
            wire = hex_to_rgb(value)
            body = dict(wire)
        elif rule.encode == "raw":
            wire = value
        else:
            raise CommandValueError(f"Unsupported encoding '{rule.encode}'")

        if body is None and rule.field:
            body = {rule.field: wire}
        if body is not None:
            body.update(rule.extra)
            if rule.fade is not None:
                body[rule.fade.field] = self._fade(rule.fade, context, boolean)
            payload = encode_payload(body)
        else:
            payload = encode_payload(wire)

        context["value"] = wire if not isinstance(wire, dict) else payload
        return Command(feature_id=feature.id, target=render(rule.topic, context), payload=payload)

    def _fade(self, fade: FadeSpec, context: Mapping[str, Any], boolean: bool) -> Any:
        conf = self.device.conf
        if boolean and not fade.boolean:
            return 0
        if fade.skip_key and coerce_bool(conf.get(fade.skip_key)):
            return 0
        if fade.channel_key:
            try:
                channel_key = render(fade.channel_key, context)
            except CommandValueError:
                channel_key = None
            if channel_key and channel_key in conf:
                return conf[channel_key]
        if fade.conf_key and conf.get(fade.conf_key) is not None:
            return conf[fade.conf_key]
        return tidy_number(fade.default)

    def _follow(self, rule: OutboundRule, value: Any, unchanged: bool) -> SetData | None:
        spec = rule.follow
        if spec is None:
            return None
        target = self.directory.resolve(spec.tag)
        if target is None:
            return None
        number = to_number(value)
        if spec.when == "zero":
            if number != 0 or unchanged:
                return None
        if spec.value is not None:
            new_value = spec.value
        elif number is not None:
            new_value = bool(number)
        else:
            new_value = bool(coerce_bool(value))
        if not self.cache.changed(target.id, new_value):
            return None
        self.cache.set(target.id, new_value)
        return SetData(feature={target.id: new_value})

    def command_for(self, feature_id: str) -> Command | None:
        """Encode the cached host value of a feature, e.g. to re-assert it."""
        feature = self.directory.get(feature_id)
        value = self.cache.get(feature_id)
        if feature is None or value is None:
            return None
        rule = self.rule_for(feature)
        if rule is None:
            return None
        try:
            return self.encode(feature, rule, value)
        except CommandValueError as exc:
            LOGGER.warning("Cannot re-send feature %s: %s", feature_id, exc)
            return None

    def same_effect(self, feature: Feature, cached: Any, value: Any) -> bool:
        """Whether two host values drive the device the same way."""
        rule = self.rule_for(feature)
        if rule is None:
            return cached == value
        command = self._encodes_to(feature, rule, value)
        return command is not None and self._encodes_to(feature, rule, cached) == command

    def _encodes_to(self, feature: Feature, rule: OutboundRule, value: Any) -> Command | None:
        try:
            return self.encode(feature, rule, value)
        except CommandValueError:
            return None

    # -------------------------------------------------------------- resync

    def resync(self) -> list[Command]:
        """Commands that restore device settings and every known action value."""
        commands: list[Command] = []
        for setting in self.device_class.settings:
            raw = self.device.conf.get(setting.conf_key)
            if raw is None:
                continue
            if setting.clamp is not None:
                number = to_number(raw)
                if number is None:
                    LOGGER.warning("Setting %s=%r is not numeric", setting.conf_key, raw)
                    continue
                low, high = setting.clamp
                raw = tidy_number(max(low, min(high, number)))
            commands.append(
                Command(
                    feature_id="",
                    target=render(setting.topic, self.context),
                    payload=encode_payload(raw),
                )
            )
        for feature_id, _ in self.cache.items():
            feature = self.directory.get(feature_id)
            if feature is None or feature.category != ACTION:
                continue
            command = self.command_for(feature_id)
            if command is not None:
                commands.append(command)
        for publish in self.device_class.on_online:
            commands.append(
                Command(
                    feature_id="",
                    target=render(publish.topic, self.context),
                    payload=publish.payload,
                )
            )
        return commands


def _boolean_like(value: Any) -> bool:
    return isinstance(value, bool) or (isinstance(value, str) and value.strip().lower() in ("true", "false"))
