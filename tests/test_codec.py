import pytest

from hubadapter.core.codec import (
    coerce_bool,
    decode_json,
    decode_xml,
    get_path,
    hex_to_rgb,
    render,
    tidy_number,
    topic_pattern,
)
from hubadapter.core.errors import CommandValueError, PayloadError


def test_hex_to_rgb_accepts_short_and_long_forms() -> None:
    assert hex_to_rgb("#0f8") == {"r": 0, "g": 255, "b": 136}
    assert hex_to_rgb("FF8000") == {"r": 255, "g": 128, "b": 0}


@pytest.mark.parametrize("value", ["#12", "#ggg", "", 255])
def test_hex_to_rgb_rejects_invalid_strings(value) -> None:
    with pytest.raises(CommandValueError):
        hex_to_rgb(value)


def test_topic_pattern_captures_index_segment() -> None:
    pattern = topic_pattern("/device/{device_id}/switch/{index}", {"device_id": "d1"}, exact=True)
    match = pattern.match("/device/d1/switch/12")
    assert match is not None and match.group(1) == "12"
    assert pattern.match("/device/d1/switch/x") is None
    assert pattern.match("/device/d2/switch/1") is None


def test_prefix_pattern_matches_subtopics_unless_exact() -> None:
    context = {"friendly_name": "bulb"}
    assert topic_pattern("zigbee2mqtt/{friendly_name}", context, exact=False).match("zigbee2mqtt/bulb/set")
    assert not topic_pattern("zigbee2mqtt/{friendly_name}", context, exact=True).match("zigbee2mqtt/bulb/set")


def test_render_reports_missing_placeholders() -> None:
    with pytest.raises(CommandValueError, match="friendly_name"):
        render("zigbee2mqtt/{friendly_name}", {"device_id": "d1"})


def test_decode_json_passes_documents_through_and_rejects_garbage() -> None:
    assert decode_json({"a": 1}) == {"a": 1}
    assert decode_json(b'{"a": 1}') == {"a": 1}
    with pytest.raises(PayloadError):
        decode_json("{broken")


def test_decode_xml_merges_attributes_and_repeats() -> None:
    document = decode_xml(
        '<devicelist version="1">'
        '<device identifier="1"><present>1</present><temperature><celsius>215</celsius></temperature></device>'
        '<device identifier="2"><present>0</present></device>'
        "</devicelist>"
    )
    devices = document["devicelist"]["device"]
    assert document["devicelist"]["version"] == "1"
    assert [d["identifier"] for d in devices] == ["1", "2"]
    assert get_path(devices[0], "temperature.celsius") == "215"
    assert get_path(devices[1], "temperature.celsius") is None


def test_coerce_bool_and_tidy_number() -> None:
    assert coerce_bool("ON") is True
    assert coerce_bool("off") is False
    assert coerce_bool(1) is True
    assert coerce_bool("maybe") is None
    assert tidy_number(454.0) == 454
    assert tidy_number(21.456, 1) == 21.5
