from hubadapter.core.device_match import best_class_for_device, class_for_model, match_score
from hubadapter.core.model import Device, DeviceClass, MatchRules, TransportSpec


def _class(class_id: str, *, names: tuple[str, ...] = (), prefixes: tuple[str, ...] = ()) -> DeviceClass:
    return DeviceClass(
        id=class_id,
        name=class_id,
        transport=TransportSpec(type="http", base_url="{url}", poll_path="/"),
        match=MatchRules(name_contains=names, identifier_prefix=prefixes),
    )


def _device(name: str, **conf) -> Device:
    return Device(id="d1", name=name, icon="", conf=dict(conf), features=[])


def test_match_score_prefers_combined_match() -> None:
    device = _device("FRITZ!DECT 200 Kitchen", identifier="08761 0000434")
    device_class = _class("plug", names=("FRITZ!DECT",), prefixes=("08761",))
    assert match_score(device, device_class) == 3


def test_best_class_prefers_identifier_only_over_name_only() -> None:
    device = _device("Generic plug", identifier="08761 0000434")
    name_class = _class("name", names=("Generic",), prefixes=("09995",))
    id_class = _class("id", names=("Other",), prefixes=("08761",))

    picked = best_class_for_device(device, {"name": name_class, "id": id_class})
    assert picked is not None
    assert picked.id == "id"


def test_reported_model_beats_other_rules(classes) -> None:
    device = _device("Shutter plug", type="E2204")
    assert best_class_for_device(device, classes).id == "z2m_e2204"
    assert class_for_model("LED1835C6", classes).id == "z2m_led1835c6"
    assert class_for_model("unknown", classes) is None


def test_packaged_classes_match_by_name_and_identifier(classes) -> None:
    assert best_class_for_device(_device("myStrom Switch Office"), classes).id == "mystrom_switch"
    assert best_class_for_device(_device("Radiator", identifier="09995 0123456"), classes).id == "fritz_radiator"


def test_no_match_returns_none() -> None:
    device = _device("Unknown")
    assert best_class_for_device(device, {"p1": _class("p1", names=("OnePlus",))}) is None
