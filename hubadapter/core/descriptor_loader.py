"""Descriptor loading and validation for YAML-based device classes."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from hubadapter.core.errors import DescriptorLoadError, DescriptorValidationError
from hubadapter.core.model import (
    DeviceClass,
    FadeSpec,
    FeatureTemplate,
    FollowSpec,
    InboundRule,
    LivenessSpec,
    MatchRules,
    OutboundRule,
    PairingSpec,
    Publish,
    Scale,
    SettingSpec,
    TransportSpec,
)

LOGGER = logging.getLogger(__name__)
_SUFFIXES = (".yml", ".yaml")


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise DescriptorValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class LoadedDescriptors:
    classes: dict[str, DeviceClass]
    warnings: tuple[str, ...]


def _load_schema_validator() -> Any:
    schema_text = resources.files("hubadapter.schemas").joinpath("descriptor.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _descriptor_dirs() -> tuple[Path, Path]:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    xdg_data = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local/share"))
    return xdg_config / "hubadapter/descriptors", xdg_data / "hubadapter/descriptors"


def read_yaml(path: Path | Traversable) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise DescriptorLoadError(f"Could not read descriptor file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise DescriptorValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise DescriptorValidationError(f"Descriptor file {path} must contain a mapping at root")
    return loaded


def _validate(doc: Mapping[str, Any], source: Any) -> None:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise DescriptorValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc


def _scale(spec: Mapping[str, Any] | None, *, context: str) -> Scale | None:
    if spec is None:
        return None
    (in_min, in_max), (out_min, out_max) = spec["host"], spec["wire"]
    if in_min == in_max or out_min == out_max:
        raise DescriptorValidationError(f"{context}.scale must span a non-empty range")
    return Scale(in_min=in_min, in_max=in_max, out_min=out_min, out_max=out_max)


def _publish(spec: Mapping[str, Any] | None) -> Publish | None:
    if spec is None:
        return None
    return Publish(topic=spec["topic"], payload=spec["payload"])


def _template(spec: Mapping[str, Any]) -> FeatureTemplate:
    return FeatureTemplate(
        name=spec["name"],
        category=spec["category"],
        types=tuple(spec["types"]),
        verifyvalue=spec.get("verifyvalue", ""),
        unit=spec.get("unit"),
        icon=spec.get("icon"),
    )


def _transport(spec: Mapping[str, Any]) -> TransportSpec:
    transport = TransportSpec(
        type=spec["type"],
        subscribe=tuple(spec.get("subscribe", ())),
        base_url=spec.get("base_url"),
        poll_path=spec.get("poll_path"),
        info_path=spec.get("info_path"),
        response_format=spec.get("response_format", "json"),
        select_path=spec.get("select_path"),
        select_key=spec.get("select_key"),
        select_conf=spec.get("select_conf"),
        interval_key=spec.get("interval_key", "requestInterval"),
        interval_default_ms=int(spec.get("interval_default_ms", 30000)),
        interval_min_ms=int(spec.get("interval_min_ms", 1000)),
        interval_max_ms=int(spec.get("interval_max_ms", 120000)),
        timeout_s=float(spec.get("timeout_s", 10.0)),
        auth=spec.get("auth"),
    )
    if transport.interval_min_ms > transport.interval_max_ms:
        raise DescriptorValidationError("transport.interval_min_ms must not exceed interval_max_ms")
    return transport


def _pairing(spec: Mapping[str, Any] | None) -> PairingSpec | None:
    if spec is None:
        return None
    return PairingSpec(
        mode=spec["mode"],
        done_key=spec.get("done_key", "searching"),
        done_value=spec.get("done_value", False),
        listen=tuple(spec.get("listen", ())),
        announce_prefix=spec.get("announce_prefix"),
        claim_topic=spec.get("claim_topic"),
        registered_topic=spec.get("registered_topic"),
        request_topic=spec.get("request_topic"),
        request_payload=spec.get("request_payload", "1"),
        metadata=dict(spec.get("metadata", {})),
        status_field=spec.get("status_field"),
    )


def _liveness(spec: Mapping[str, Any] | None) -> LivenessSpec | None:
    if spec is None:
        return None
    return LivenessSpec(
        probe_topic=spec["probe_topic"],
        probe_payload=spec.get("probe_payload", "status"),
        probe_s=float(spec.get("probe_s", 180)),
        offline_s=float(spec.get("offline_s", 300)),
        probe_on_init=bool(spec.get("probe_on_init", False)),
    )


def _inbound(spec: Mapping[str, Any], *, context: str) -> InboundRule:
    return InboundRule(
        kind=spec["kind"],
        topic=spec["topic"],
        exact=bool(spec.get("exact", False)),
        field=spec.get("field"),
        tag=spec.get("tag"),
        parse=spec.get("parse", "text"),
        accept=tuple(spec.get("accept", ())),
        scale=_scale(spec.get("scale"), context=context),
        divisor=spec.get("divisor"),
        round=spec.get("round"),
        threshold=spec.get("threshold"),
        transient=bool(spec.get("transient", True)),
        values=dict(spec.get("values", {})),
        optional=spec.get("optional"),
        dominate_key=spec.get("dominate_key"),
        metadata=dict(spec.get("metadata", {})),
    )


def _outbound(spec: Mapping[str, Any], *, context: str) -> OutboundRule:
    fade = spec.get("fade")
    follow = spec.get("follow")
    return OutboundRule(
        when=tuple(spec["when"]),
        topic=spec["topic"],
        encode=spec["encode"],
        field=spec.get("field"),
        on_value=spec.get("on_value", True),
        off_value=spec.get("off_value", False),
        scale=_scale(spec.get("scale"), context=context),
        round=spec.get("round"),
        fade=FadeSpec(
            field=fade["field"],
            conf_key=fade.get("conf_key"),
            channel_key=fade.get("channel_key"),
            default=fade.get("default", 0),
            skip_key=fade.get("skip_key"),
            boolean=bool(fade.get("boolean", True)),
        )
        if fade is not None
        else None,
        extra=dict(spec.get("extra", {})),
        always_forward=bool(spec.get("always_forward", False)),
        follow=FollowSpec(tag=follow["tag"], when=follow.get("when", "always"), value=follow.get("value"))
        if follow is not None
        else None,
    )


def build_device_class(doc: Mapping[str, Any], source: Any) -> DeviceClass:
    """Validate a fully merged descriptor and turn it into a :class:`DeviceClass`."""
    _validate(doc, source)
    if "transport" not in doc:
        raise DescriptorValidationError(f"Descriptor {source} has no transport section")

    class_id = doc["id"]
    settings = tuple(
        SettingSpec(
            conf_key=item["conf_key"],
            topic=item["topic"],
            clamp=(item["clamp"][0], item["clamp"][1]) if "clamp" in item else None,
        )
        for item in doc.get("settings", ())
    )
    for setting in settings:
        if setting.clamp is not None and setting.clamp[0] > setting.clamp[1]:
            raise DescriptorValidationError(f"{class_id}.settings.{setting.conf_key} clamp is inverted")

    match = doc.get("match", {})
    return DeviceClass(
        id=class_id,
        name=doc["name"],
        transport=_transport(doc["transport"]),
        icon=doc.get("icon"),
        match=MatchRules(
            model=tuple(match.get("model", ())),
            identifier_prefix=tuple(match.get("identifier_prefix", ())),
            name_contains=tuple(match.get("name_contains", ())),
        ),
        features=tuple(_template(item) for item in doc.get("features", ())),
        optional_features={name: _template(item) for name, item in doc.get("optional_features", {}).items()},
        required=tuple(doc.get("required", ())),
        conf_defaults=dict(doc.get("conf_defaults", {})),
        pairing=_pairing(doc.get("pairing")),
        liveness=_liveness(doc.get("liveness")),
        inbound=tuple(
            _inbound(item, context=f"{class_id}.inbound[{i}]") for i, item in enumerate(doc.get("inbound", ()))
        ),
        outbound=tuple(
            _outbound(item, context=f"{class_id}.outbound[{i}]") for i, item in enumerate(doc.get("outbound", ()))
        ),
        settings=settings,
        on_online=tuple(_publish(item) for item in doc.get("on_online", ())),
        restart_delay_s=float(doc.get("restart_delay_s", 1.5)),
        restart_publish=_publish(doc.get("restart_publish")),
    )


def merge_extends(
    doc: Mapping[str, Any],
    docs: Mapping[str, Mapping[str, Any]],
    *,
    _seen: tuple[str, ...] = (),
) -> dict[str, Any]:
    """Resolve ``extends`` with a shallow key merge; the child's keys win."""
    parent_id = doc.get("extends")
    if parent_id is None:
        return dict(doc)
    if parent_id in _seen or parent_id == doc.get("id"):
        raise DescriptorValidationError(f"Descriptor '{doc.get('id')}' has a cyclic extends chain")
    parent = docs.get(parent_id)
    if parent is None:
        raise DescriptorValidationError(f"Descriptor '{doc.get('id')}' extends unknown descriptor '{parent_id}'")
    merged = merge_extends(parent, docs, _seen=(*_seen, str(doc.get("id"))))
    merged.update({key: value for key, value in doc.items() if key != "extends"})
    return merged


def _iter_packaged_descriptor_paths() -> list[Traversable]:
    root = resources.files("hubadapter.descriptors")
    return [item for item in root.iterdir() if item.name.endswith(_SUFFIXES)]


def _iter_user_descriptor_paths() -> list[Path]:
    paths: list[Path] = []
    for directory in _descriptor_dirs():
        if not directory.exists() or not directory.is_dir():
            continue
        paths.extend(sorted(p for p in directory.iterdir() if p.suffix in set(_SUFFIXES)))
    return paths


def load_descriptors() -> LoadedDescriptors:
    docs: dict[str, dict[str, Any]] = {}
    sources: dict[str, Any] = {}
    warnings: list[str] = []

    for path in sorted(_iter_packaged_descriptor_paths(), key=lambda p: p.name):
        doc = read_yaml(path)
        _validate(doc, path)
        docs[doc["id"]] = doc
        sources[doc["id"]] = path

    for path in _iter_user_descriptor_paths():
        doc = read_yaml(path)
        _validate(doc, path)
        if doc["id"] in docs:
            warning = f"User descriptor '{doc['id']}' overrides packaged descriptor"
            LOGGER.warning(warning)
            warnings.append(warning)
        docs[doc["id"]] = doc
        sources[doc["id"]] = path

    classes: dict[str, DeviceClass] = {}
    for class_id, doc in docs.items():
        classes[class_id] = build_device_class(merge_extends(doc, docs), sources[class_id])
    return LoadedDescriptors(classes=classes, warnings=tuple(warnings))


def validate_descriptor_file(path: Path, known: Mapping[str, Mapping[str, Any]] | None = None) -> DeviceClass:
    """Validate one descriptor file; ``known`` supplies raw documents for ``extends``."""
    doc = read_yaml(path)
    _validate(doc, path)
    return build_device_class(merge_extends(doc, known or {}), path)


def packaged_documents() -> dict[str, dict[str, Any]]:
    docs: dict[str, dict[str, Any]] = {}
    for path in _iter_packaged_descriptor_paths():
        doc = read_yaml(path)
        docs[doc["id"]] = doc
    return docs
