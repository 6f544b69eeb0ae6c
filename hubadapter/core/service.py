"""Service layer used by the CLI, the stdio runner and the public API."""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping

from hubadapter.core.controller import AdapterController
from hubadapter.core.descriptor_loader import load_descriptors
from hubadapter.core.device_match import best_class_for_device, class_for_model
from hubadapter.core.errors import DeviceClassError
from hubadapter.core.liveness import Scheduler
from hubadapter.core.model import Device, DeviceClass
from hubadapter.transports.base import IntentSink


class DriverService:
    def __init__(self, *, classes: Mapping[str, DeviceClass] | None = None) -> None:
        if classes is None:
            loaded = load_descriptors()
            self.classes = loaded.classes
            self.load_warnings = loaded.warnings
        else:
            self.classes = dict(classes)
            self.load_warnings = ()

    def list_classes(self) -> list[DeviceClass]:
        return sorted(self.classes.values(), key=lambda c: c.id)

    def get_class(self, class_id: str) -> DeviceClass:
        device_class = self.classes.get(class_id)
        if device_class is None:
            raise DeviceClassError(
                f"Unknown device class '{class_id}'. Use 'hubadapter list' to inspect available classes."
            )
        return device_class

    def class_for_model(self, model: str) -> DeviceClass | None:
        return class_for_model(model, self.classes)

    def resolve_class(self, device: Device | None, class_id: str | None = None) -> DeviceClass:
        """Pick the class for a device: explicit id first, then descriptor matching."""
        if class_id:
            return self.get_class(class_id)
        if device is None:
            raise DeviceClassError("No device record available to match a device class against")
        device_class = best_class_for_device(device, self.classes)
        if device_class is None:
            raise DeviceClassError(
                f"No device class matched device '{device.name}' ({device.id}). Use --class to choose one."
            )
        return device_class

    def create_adapter(
        self,
        class_id: str,
        *,
        emit: IntentSink,
        scheduler: Scheduler,
        clock: Callable[[], float] = time.time,
    ) -> AdapterController:
        return AdapterController(
            self.get_class(class_id),
            emit=emit,
            scheduler=scheduler,
            resolve_model=self.class_for_model,
            clock=clock,
        )
