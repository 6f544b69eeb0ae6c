"""Per-device adapter: routes host events to pairing or translation."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from hubadapter.core.cache import ValueCache
from hubadapter.core.codec import render, template_context
from hubadapter.core.discovery import PairingStateMachine, is_searching, required_tags
from hubadapter.core.features import FeatureDirectory
from hubadapter.core.liveness import LivenessMonitor, Scheduler
from hubadapter.core.model import (
    Command,
    Device,
    DeviceClass,
    EditDevice,
    Event,
    InitEvent,
    Intent,
    PublishMessage,
    RestartDriver,
    SetData,
    StateUpdate,
    TransportMessage,
    event_from_message,
)
from hubadapter.core.translator import InboundResult, ProtocolTranslator
from hubadapter.transports.base import CommandSink, IntentSink

LOGGER = logging.getLogger(__name__)


class AdapterController:
    """Owns the state of one device adapter.

    All state lives on the instance; a host restart builds a fresh
    controller from the host's device record instead of patching this one.
    """

    def __init__(
        self,
        device_class: DeviceClass,
        *,
        emit: IntentSink,
        scheduler: Scheduler,
        resolve_model: Callable[[str], DeviceClass | None] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.launch_class = device_class
        self.device_class = device_class
        self._emit = emit
        self._scheduler = scheduler
        self._resolve_model = resolve_model
        self._clock = clock
        self.command_sink: CommandSink = self._publish

        self.device: Device | None = None
        self.directory = FeatureDirectory(())
        self.cache = ValueCache()
        self.translator: ProtocolTranslator | None = None
        self.pairing: PairingStateMachine | None = None
        self.liveness: LivenessMonitor | None = None
        self.searching = False
        self.status: str | None = None
        self._pending_features: set[str] = set()

    # ------------------------------------------------------------- entry

    def handle(self, message: Any) -> None:
        """Handle one host message; errors are logged, never raised."""
        try:
            event = event_from_message(message)
        except Exception:
            LOGGER.exception("Could not decode host message")
            return
        if event is None:
            LOGGER.debug("Ignoring host message %r", message)
            return
        self.handle_event(event)

    def handle_event(self, event: Event) -> None:
        try:
            if isinstance(event, InitEvent):
                self._on_init(event)
            elif isinstance(event, TransportMessage):
                self._on_transport(event)
            elif isinstance(event, StateUpdate):
                self._on_state_update(event)
        except Exception:
            LOGGER.exception("Failed to handle %s", type(event).__name__)

    def stop(self) -> None:
        if self.liveness is not None:
            self.liveness.stop()

    # ---------------------------------------------------------- handlers

    def _on_init(self, event: InitEvent) -> None:
        self.stop()
        device = event.device
        self.device = device
        self.device_class = self._effective_class(device)
        self.directory = FeatureDirectory(device.features)
        self.cache = ValueCache()
        self.cache.seed(event.values, self.directory.ids)
        self.status = event.status
        self.translator = None
        self.pairing = None
        self._pending_features = set()
        self.searching = is_searching(device.conf, self.launch_class.pairing)

        if device.disabled:
            LOGGER.info("Device %s is disabled; adapter stays idle", device.id)
            return

        if self.searching:
            self.pairing = PairingStateMachine(
                device,
                self.launch_class,
                self.directory,
                emit=self.emit,
                resolve_model=self._resolve_model,
            )
            self.pairing.start()
        else:
            if not self._ensure_subscriptions(device) or not self._ensure_features(device):
                return
            self.translator = self._build_translator()

        spec = self.device_class.liveness
        if spec is not None:
            self.liveness = LivenessMonitor(
                self._scheduler,
                probe_s=spec.probe_s,
                offline_s=spec.offline_s,
                on_probe=self._probe,
                on_offline=self._offline,
            )
            self.liveness.arm()
            if spec.probe_on_init:
                self._probe()

    def _on_transport(self, event: TransportMessage) -> None:
        if self.device is None or self.device.disabled:
            return
        if self.liveness is not None:
            self.liveness.notify_activity()

        if self.searching:
            if self.pairing is None:
                return
            negotiated = self.pairing.handle(event.topic, event.payload)
            if negotiated is not None:
                self._finish_pairing(negotiated)
            return

        if self.translator is not None:
            self._apply_inbound(self.translator.inbound(event.topic, event.payload))

    def _on_state_update(self, event: StateUpdate) -> None:
        if self.device is None or self.device.disabled or self.translator is None:
            return
        result = self.translator.outbound(event.feature)
        for command in result.commands:
            self.dispatch(command)
        for update in result.updates:
            self.emit(update)

    # ---------------------------------------------------------- helpers

    def emit(self, intent: Intent) -> None:
        if self.device is not None and self.device.disabled:
            return
        self._emit(intent)

    def dispatch(self, command: Command) -> None:
        self.command_sink(command)

    def report_status(self, status: str) -> None:
        """Record a device status reported by a transport (e.g. a finished poll)."""
        if self.device is None:
            return
        self._set_status(status)

    def resynchronize(self) -> None:
        """Ask the host to restart this adapter from its stored device record."""
        if self.device is not None and self.device_class.restart_publish is not None:
            publish = self.device_class.restart_publish
            self.emit(
                PublishMessage(
                    topic=render(publish.topic, template_context(self.device.id, self.device.conf)),
                    message=publish.payload,
                )
            )
        self.emit(RestartDriver())

    def _effective_class(self, device: Device) -> DeviceClass:
        model = device.conf.get("type")
        if model and self._resolve_model is not None:
            resolved = self._resolve_model(str(model))
            if resolved is not None:
                return resolved
        return self.launch_class

    def _ensure_subscriptions(self, device: Device) -> bool:
        context = template_context(device.id, device.conf)
        wanted = [render(topic, context) for topic in self.device_class.transport.subscribe]
        topics = device.conf.get("topics") or []
        if all(topic in topics for topic in wanted):
            return True
        LOGGER.info("Updating subscriptions of device %s to %s", device.id, ", ".join(wanted))
        self.emit(EditDevice(update={"conf": {"topics": wanted}}))
        return False

    def _ensure_features(self, device: Device) -> bool:
        missing = self.directory.missing(required_tags(self.device_class))
        if not missing:
            return True
        LOGGER.info("Device %s lacks features %s; requesting class defaults", device.id, ", ".join(missing))
        update: dict[str, Any] = {
            "features": [template.to_record() for template in self.device_class.features],
        }
        if self.device_class.icon:
            update["icon"] = self.device_class.icon
        self.emit(EditDevice(update=update))
        return False

    def _build_translator(self) -> ProtocolTranslator:
        assert self.device is not None
        return ProtocolTranslator(
            self.device,
            self.device_class,
            self.directory,
            self.cache,
            clock=self._clock,
        )

    def _finish_pairing(self, device_class: DeviceClass) -> None:
        assert self.device is not None and self.pairing is not None
        self.device.conf.update(self.pairing.negotiated_conf)
        self.device_class = device_class
        self.searching = False
        self.translator = self._build_translator()
        LOGGER.info("Device %s paired as %s", self.device.id, device_class.id)

    def _apply_inbound(self, result: InboundResult) -> None:
        for update in result.updates:
            self.emit(update)
        if result.metadata:
            self.emit(EditDevice(update=result.metadata, prevent_restart=True))
            if self.status != "online":
                self._probe()
        if result.status is not None:
            self._set_status(result.status)
        for name in result.missing:
            self._add_optional_feature(name)
        if self.translator is not None:
            for feature_id in result.resend:
                command = self.translator.command_for(feature_id)
                if command is not None:
                    self.dispatch(command)

    def _set_status(self, status: str) -> None:
        previous = self.status
        self.status = status
        if status == "online" and previous != "online" and self.translator is not None:
            for command in self.translator.resync():
                self.dispatch(command)
        self.emit(SetData(status=status))

    def _add_optional_feature(self, name: str) -> None:
        if self.device is None or name in self._pending_features:
            return
        template = self.device_class.optional_features.get(name)
        if template is None:
            LOGGER.warning("Device class %s has no optional feature '%s'", self.device_class.id, name)
            return
        self._pending_features.add(name)
        features = [feature.to_record() for feature in self.device.features]
        features.append(template.to_record())
        LOGGER.info("Device %s reported unknown capability '%s'; adding feature", self.device.id, name)
        self.emit(EditDevice(update={"features": features}, prevent_restart=True))
        self._scheduler.call_later(self.device_class.restart_delay_s, self.resynchronize)

    def _publish(self, command: Command) -> None:
        self.emit(PublishMessage(topic=command.target, message=command.payload))

    def _probe(self) -> None:
        spec = self.device_class.liveness
        if self.device is None or spec is None:
            return
        self.emit(
            PublishMessage(
                topic=render(spec.probe_topic, template_context(self.device.id, self.device.conf)),
                message=spec.probe_payload,
            )
        )

    def _offline(self) -> None:
        self.status = "offline"
        self.emit(SetData(status="offline"))
