import math

from gst_recorder.bus_messages import (
    BusMessage,
    MessageKind,
    find_rms,
    first_channel_db,
    level_rms,
)


def _level(payload, name="level"):
    return BusMessage(
        kind=MessageKind.ELEMENT,
        source_name="level_mic",
        structure_name=name,
        payload=payload,
    )


def test_rms_at_top_level():
    msg = _level({"rms": [-20.0, -21.5], "peak": [-3.0, -4.0]})
    assert level_rms(msg) == [-20.0, -21.5]


def test_rms_nested():
    payload = {"endtime": 1, "values": {"inner": {"rms": [-33.0]}}}
    assert find_rms(payload) == [-33.0]


def test_rms_inside_list_of_mappings():
    assert find_rms({"channels": [{"peak": 1}, {"rms": [-12.0]}]}) == [-12.0]


def test_other_numeric_arrays_are_not_rms():
    assert find_rms({"peak": [-3.0], "decay": [-4.0]}) is None


def test_bare_sequence_at_top_level():
    assert find_rms([-10, -11]) == [-10.0, -11.0]
    assert find_rms([]) is None
    assert find_rms("rms") is None


def test_search_depth_is_bounded():
    payload = {"rms": [-1.0]}
    for _ in range(6):
        payload = {"nested": payload}
    assert find_rms(payload) is None
    assert find_rms(payload, max_depth=10) == [-1.0]


def test_non_level_structure_is_ignored():
    assert level_rms(_level({"rms": [-5.0]}, name="spectrum")) is None
    assert level_rms(_level(None)) is None


def test_first_channel_db():
    assert first_channel_db([-20.0, -30.0]) == -20.0
    assert first_channel_db([]) is None
    assert first_channel_db(None) is None
    assert first_channel_db([math.nan]) is None
    assert first_channel_db([-math.inf]) == -math.inf
