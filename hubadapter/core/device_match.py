"""Device-to-class matching logic."""

from __future__ import annotations

from collections.abc import Mapping

from hubadapter.core.model import Device, DeviceClass


def _model_match(device: Device, device_class: DeviceClass) -> bool:
    model = device.conf.get("type")
    if model is None:
        return False
    return str(model) in device_class.match.model


def _identifier_prefix_match(device: Device, device_class: DeviceClass) -> bool:
    identifier = str(device.conf.get("identifier") or "").strip()
    if not identifier:
        return False
    return any(identifier.startswith(prefix) for prefix in device_class.match.identifier_prefix)


def _name_contains_match(device: Device, device_class: DeviceClass) -> bool:
    lower_name = device.name.lower()
    return any(token.lower() in lower_name for token in device_class.match.name_contains)


def match_score(device: Device, device_class: DeviceClass) -> int:
    if _model_match(device, device_class):
        return 4
    id_match = _identifier_prefix_match(device, device_class)
    name_match = _name_contains_match(device, device_class)
    if id_match and name_match:
        return 3
    if id_match:
        return 2
    if name_match:
        return 1
    return 0


def best_class_for_device(device: Device, classes: Mapping[str, DeviceClass]) -> DeviceClass | None:
    best: DeviceClass | None = None
    best_score = 0
    for device_class in classes.values():
        score = match_score(device, device_class)
        if score > best_score:
            best = device_class
            best_score = score
    return best


def class_for_model(model: str, classes: Mapping[str, DeviceClass]) -> DeviceClass | None:
    for device_class in classes.values():
        if model in device_class.match.model:
            return device_class
    return None
