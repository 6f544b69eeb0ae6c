"""Wire value helpers: payload parsing, templates, numeric and color encoding."""

from __future__ import annotations

import json
import math
import re
import xml.etree.ElementTree as ElementTree
from collections.abc import Mapping
from typing import Any

from hubadapter.core.errors import CommandValueError, PayloadError

_HEX_COLOR_RE = re.compile(r"^[0-9a-fA-F]{3}$|^[0-9a-fA-F]{6}$")
_TRUE_WORDS = {"true", "on", "1"}
_FALSE_WORDS = {"false", "off", "0"}
_INDEX = "{index}"


def render(template: str, context: Mapping[str, Any]) -> str:
    try:
        return template.format_map(context)
    except (KeyError, IndexError, ValueError) as exc:
        raise CommandValueError(f"Cannot render '{template}': missing {exc}") from exc


def template_context(device_id: str, conf: Mapping[str, Any]) -> dict[str, Any]:
    context: dict[str, Any] = {
        key: value
        for key, value in conf.items()
        if isinstance(value, (str, int, float)) and not isinstance(value, bool)
    }
    context["device_id"] = device_id
    return context


def topic_pattern(template: str, context: Mapping[str, Any], *, exact: bool) -> re.Pattern[str]:
    """Compile a topic template; ``{index}`` segments capture digits."""
    pieces = [re.escape(render(piece, context)) for piece in template.split(_INDEX)]
    pattern = r"(\d+)".join(pieces)
    return re.compile(f"^{pattern}$" if exact else f"^{pattern}")


def decode_json(payload: Any) -> Any:
    if isinstance(payload, (Mapping, list)):
        return payload
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8", errors="replace")
    if not isinstance(payload, str):
        raise PayloadError(f"Unsupported payload type {type(payload).__name__}")
    try:
        return json.loads(payload)
    except ValueError as exc:
        raise PayloadError(f"Invalid JSON payload: {exc}") from exc


def decode_xml(text: str) -> dict[str, Any]:
    """Convert an XML document to nested dicts, merging attributes into elements."""
    try:
        root = ElementTree.fromstring(text)
    except ElementTree.ParseError as exc:
        raise PayloadError(f"Invalid XML payload: {exc}") from exc
    return {root.tag: _element_value(root)}


def _element_value(element: ElementTree.Element) -> Any:
    children = list(element)
    if not children and not element.attrib:
        return (element.text or "").strip()
    value: dict[str, Any] = dict(element.attrib)
    for child in children:
        child_value = _element_value(child)
        if child.tag in value:
            existing = value[child.tag]
            if isinstance(existing, list):
                existing.append(child_value)
            else:
                value[child.tag] = [existing, child_value]
        else:
            value[child.tag] = child_value
    text = (element.text or "").strip()
    if text and not children:
        value["_"] = text
    return value


def get_path(document: Any, path: str | None) -> Any:
    if not path:
        return document
    current = document
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return None
        current = current[part]
    return current


def coerce_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_WORDS:
            return True
        if lowered in _FALSE_WORDS:
            return False
    return None


def to_number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def tidy_number(value: float, digits: int | None = None) -> int | float:
    """Round to ``digits`` and collapse integral floats to int."""
    if digits is not None:
        value = round(value + 0.0, digits)
    if float(value).is_integer():
        return int(value)
    return value


def hex_to_rgb(value: Any) -> dict[str, int]:
    if not isinstance(value, str):
        raise CommandValueError(f"Color value must be a hex string, got {value!r}")
    digits = value.strip().lstrip("#")
    if not _HEX_COLOR_RE.match(digits):
        raise CommandValueError(f"Invalid hex color string {value!r}")
    if len(digits) == 3:
        digits = "".join(ch * 2 for ch in digits)
    return {
        "r": int(digits[0:2], 16),
        "g": int(digits[2:4], 16),
        "b": int(digits[4:6], 16),
    }


def encode_payload(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"))
