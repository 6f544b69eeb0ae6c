"""Pairing of devices that are not registered yet ("searching" phase)."""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Mapping
from typing import Any

from hubadapter.core.codec import decode_json, get_path, render, template_context
from hubadapter.core.errors import PayloadError
from hubadapter.core.features import FeatureDirectory
from hubadapter.core.model import (
    Device,
    DeviceClass,
    EditDevice,
    Intent,
    PairingSpec,
    PublishMessage,
    SetData,
)

LOGGER = logging.getLogger(__name__)


class PairingState(enum.Enum):
    UNCLAIMED = "unclaimed"
    CLAIM_SENT = "claim_sent"
    FEATURES_NEGOTIATED = "features_negotiated"


def is_searching(conf: Mapping[str, Any], pairing: PairingSpec | None) -> bool:
    """A device is searching until its conf carries the pairing completion flag."""
    if pairing is None:
        return False
    if not conf:
        return True
    return conf.get(pairing.done_key) != pairing.done_value


def required_tags(device_class: DeviceClass) -> tuple[str, ...]:
    if device_class.required:
        return device_class.required
    return tuple(t.types[0] for t in device_class.features if t.types)


class PairingStateMachine:
    """Claims an unregistered device and negotiates its feature set.

    Claim mode: the device broadcasts a temporary id on a wildcard channel,
    the adapter answers with the permanent device id, and the device confirms
    on its own ``registered`` topic. Request mode: the adapter asks a bridge
    for device infos and picks the device class from the reported model.
    """

    def __init__(
        self,
        device: Device,
        device_class: DeviceClass,
        directory: FeatureDirectory,
        *,
        emit: Callable[[Intent], None],
        resolve_model: Callable[[str], DeviceClass | None] | None = None,
    ) -> None:
        if device_class.pairing is None:
            raise ValueError(f"Device class '{device_class.id}' has no pairing section")
        self.device = device
        self.device_class = device_class
        self.pairing: PairingSpec = device_class.pairing
        self.directory = directory
        self._emit = emit
        self._resolve_model = resolve_model
        self.state = PairingState.UNCLAIMED
        self.context = template_context(device.id, device.conf)
        self.negotiated_conf: dict[str, Any] = {}

    def start(self) -> None:
        self._emit(SetData(status="searching"))
        listen = [render(topic, self.context) for topic in self.pairing.listen]
        topics = self.device.conf.get("topics") or []
        if any(topic not in topics for topic in listen):
            self._emit(
                EditDevice(
                    update={
                        "conf": {
                            "topics": listen,
                            self.pairing.done_key: not self.pairing.done_value,
                        }
                    }
                )
            )
            return
        if self.pairing.mode == "request" and self.pairing.request_topic:
            self._emit(
                PublishMessage(
                    topic=render(self.pairing.request_topic, self.context),
                    message=self.pairing.request_payload,
                )
            )

    def handle(self, topic: str, payload: Any) -> DeviceClass | None:
        """Process one message; returns the device class when pairing finished in place."""
        if self.pairing.mode == "claim":
            if self.pairing.announce_prefix and topic.startswith(render(self.pairing.announce_prefix, self.context)):
                self._claim(payload)
            elif self.pairing.registered_topic and topic.startswith(
                render(self.pairing.registered_topic, self.context)
            ):
                if payload:
                    return self._register(self.device_class, {})
            return None

        if self.pairing.registered_topic and topic == render(self.pairing.registered_topic, self.context):
            return self._handle_device_infos(payload)
        return None

    def _claim(self, payload: Any) -> None:
        try:
            announcement = decode_json(payload)
        except PayloadError as exc:
            LOGGER.debug("Dropping malformed announcement: %s", exc)
            return
        temp_id = announcement.get("tempID") if isinstance(announcement, Mapping) else None
        if not temp_id or not self.pairing.claim_topic:
            return
        self._emit(
            PublishMessage(
                topic=render(self.pairing.claim_topic, {**self.context, "temp_id": temp_id}),
                message=self.device.id,
            )
        )
        if self.state is PairingState.UNCLAIMED:
            self.state = PairingState.CLAIM_SENT

    def _handle_device_infos(self, payload: Any) -> DeviceClass | None:
        try:
            infos = decode_json(payload)
        except PayloadError as exc:
            LOGGER.debug("Dropping malformed device infos: %s", exc)
            return None
        if not isinstance(infos, Mapping):
            return None

        metadata = {
            target: get_path(infos, source)
            for target, source in self.pairing.metadata.items()
            if get_path(infos, source) is not None
        }
        if metadata:
            self._emit(EditDevice(update=metadata, prevent_restart=True))

        model = infos.get("model")
        device_class = self._resolve_model(str(model)) if model and self._resolve_model else None
        negotiated = None
        if device_class is None:
            LOGGER.warning("No device class for model %r on device %s", model, self.device.id)
        else:
            negotiated = self._register(device_class, {"type": model})

        status = get_path(infos, self.pairing.status_field) if self.pairing.status_field else None
        self._emit(SetData(status=str(status or "unknown")))
        return negotiated

    def _register(self, device_class: DeviceClass, extra_conf: Mapping[str, Any]) -> DeviceClass | None:
        if self.state is PairingState.FEATURES_NEGOTIATED:
            LOGGER.debug("Device %s already negotiated, ignoring confirmation", self.device.id)
            return None

        conf: dict[str, Any] = {
            "topics": [render(topic, self.context) for topic in device_class.transport.subscribe],
            self.pairing.done_key: self.pairing.done_value,
        }
        for key, value in device_class.conf_defaults.items():
            conf.setdefault(key, self.device.conf.get(key, value))
        conf.update(extra_conf)
        self.state = PairingState.FEATURES_NEGOTIATED
        self.negotiated_conf = conf

        missing = self.directory.missing(required_tags(device_class))
        if not missing:
            self._emit(EditDevice(update={"conf": conf}, prevent_restart=True))
            return device_class

        update: dict[str, Any] = {
            "conf": conf,
            "features": [template.to_record() for template in device_class.features],
        }
        if device_class.icon:
            update["icon"] = device_class.icon
        LOGGER.info(
            "Adding %d features to device %s (missing: %s)",
            len(device_class.features),
            self.device.id,
            ", ".join(missing),
        )
        self._emit(EditDevice(update=update))
        return None
