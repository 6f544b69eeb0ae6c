from hubadapter.core.features import FeatureDirectory
from hubadapter.core.model import Feature


def _feature(fid: str, name: str, *types: str) -> Feature:
    return Feature(id=fid, name=name, category="action", types=types)


def test_resolve_prefers_type_tag_over_id_and_name() -> None:
    directory = FeatureDirectory(
        [
            _feature("switch", "Relay", "relay"),
            _feature("f2", "switch", "other"),
            _feature("f3", "Lamp", "switch"),
        ]
    )
    assert directory.resolve("switch").id == "f3"


def test_resolve_falls_back_to_id_then_name() -> None:
    directory = FeatureDirectory([_feature("abc", "Brightness", "8bit"), _feature("def", "abc", "percent")])
    assert directory.resolve("abc").id == "abc"
    assert directory.resolve("Brightness").id == "abc"
    assert directory.resolve("nothing") is None


def test_first_feature_in_declaration_order_wins() -> None:
    directory = FeatureDirectory([_feature("a", "A", "pwm", "pin:1"), _feature("b", "B", "pwm", "pin:2")])
    assert directory.resolve("pwm").id == "a"
    assert directory.with_sub_id("pin", "2").id == "b"
    assert directory.with_sub_id("pin", "9") is None


def test_missing_tags() -> None:
    directory = FeatureDirectory([_feature("a", "A", "switch")])
    assert directory.missing(["switch", "brightness"]) == ["brightness"]
    assert directory.has_tag("switch")
    assert directory.ids == ("a",)
    assert len(directory) == 1
    assert [f.id for f in directory] == ["a"]
