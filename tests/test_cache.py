import math

from hubadapter.core.cache import ValueCache


def test_unknown_and_null_slots_always_count_as_changed() -> None:
    cache = ValueCache()
    cache.seed({"a": None}, ["a", "b"])
    assert cache.changed("a", 1)
    assert cache.changed("b", 1)
    assert cache.changed("never-seen", 1)
    assert "a" not in cache


def test_equal_values_of_the_same_kind_are_unchanged() -> None:
    cache = ValueCache()
    cache.seed({"a": 20, "b": True})
    assert not cache.changed("a", 20.0)
    assert cache.changed("a", 21)
    assert not cache.changed("b", True)
    # a boolean and the number 1 compare equal in Python but are different values here
    assert cache.changed("b", 1)


def test_delta_is_measured_against_last_stored_value() -> None:
    cache = ValueCache()
    assert cache.delta("t", 20.0) == math.inf

    cache.seed({"t": 20.0})
    cache.set("t", 20.05)
    assert math.isclose(cache.delta("t", 20.08), 0.08)

    cache.mark_stored("t", 20.08)
    assert math.isclose(cache.delta("t", 20.2), 0.12)


def test_items_skip_empty_slots() -> None:
    cache = ValueCache()
    cache.seed({"a": 1}, ["a", "b"])
    assert cache.items() == [("a", 1)]
    assert cache.get("b", "fallback") == "fallback"
