"""Stable public API for embedding hubadapter device adapters.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping

from hubadapter.core.controller import AdapterController
from hubadapter.core.errors import (
    AuthenticationError,
    CommandValueError,
    DescriptorLoadError,
    DescriptorValidationError,
    DeviceClassError,
    HubAdapterError,
    PayloadError,
    ReauthLimitError,
    TransportError,
    TransportRequestError,
    TransportTimeoutError,
)
from hubadapter.core.liveness import Scheduler
from hubadapter.core.model import (
    Command,
    Device,
    DeviceClass,
    EditDevice,
    Feature,
    FeatureTemplate,
    Intent,
    PublishMessage,
    RestartDriver,
    SetData,
)
from hubadapter.core.service import DriverService
from hubadapter.transports.base import IntentSink

__all__ = [
    "HubAdapterError",
    "AuthenticationError",
    "CommandValueError",
    "DescriptorLoadError",
    "DescriptorValidationError",
    "DeviceClassError",
    "PayloadError",
    "ReauthLimitError",
    "TransportError",
    "TransportRequestError",
    "TransportTimeoutError",
    "AdapterController",
    "Command",
    "Device",
    "DeviceClass",
    "EditDevice",
    "Feature",
    "FeatureTemplate",
    "Intent",
    "IntentSink",
    "PublishMessage",
    "RestartDriver",
    "Scheduler",
    "SetData",
    "Client",
]


class Client:
    """Public client for the device-class registry and adapter construction.

    A `Client` wraps descriptor loading and class lookup, and builds
    `AdapterController` instances that a host can feed messages into.
    """

    def __init__(self, *, classes: Mapping[str, DeviceClass] | None = None) -> None:
        self._service = DriverService(classes=classes)

    @property
    def load_warnings(self) -> tuple[str, ...]:
        return self._service.load_warnings

    def list_classes(self) -> list[DeviceClass]:
        return self._service.list_classes()

    def get_class(self, class_id: str) -> DeviceClass:
        return self._service.get_class(class_id)

    def resolve_class(self, device: Device, *, class_id: str | None = None) -> DeviceClass:
        return self._service.resolve_class(device, class_id)

    def create_adapter(
        self,
        emit: IntentSink,
        scheduler: Scheduler,
        class_id: str,
        *,
        clock: Callable[[], float] = time.time,
    ) -> AdapterController:
        return self._service.create_adapter(class_id, emit=emit, scheduler=scheduler, clock=clock)
