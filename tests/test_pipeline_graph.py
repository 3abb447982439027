import math

import pytest

from gst_recorder.pipeline_graph import (
    PipelineSpec,
    build_pipeline_description,
    clamp_mix_level,
    escape_location,
    level_interval_ns,
    source_element,
)
from gst_recorder.processing_chain import resolve_chain


def _spec(**overrides) -> PipelineSpec:
    values = dict(
        mic_source=source_element("alsa_input.usb-mic"),
        mic_chain=resolve_chain("none", False),
        out_path="/tmp/out.ogg",
    )
    values.update(overrides)
    return PipelineSpec(**values)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (0.5, 0.5),
        (5, 2.0),
        (0, 1.0),
        (0.001, 1.0),
        (-3, 1.0),
        (0.01, 0.01),
        (2, 2.0),
        ("abc", 1.0),
        (None, 1.0),
        (math.nan, 1.0),
        (math.inf, 1.0),
        ("0.25", 0.25),
    ],
)
def test_clamp_mix_level(raw, expected):
    assert clamp_mix_level(raw) == expected


def test_level_interval_has_floor():
    assert level_interval_ns(5) == 10_000_000
    assert level_interval_ns(10) == 10_000_000
    assert level_interval_ns(100) == 100_000_000
    assert level_interval_ns(12.7) == 12_700_000
    assert level_interval_ns("bogus") == 100_000_000


def test_escape_location():
    assert escape_location('/tmp/a "b".ogg') == '/tmp/a \\"b\\".ogg'
    assert escape_location("C:\\x") == "C:\\\\x"


def test_source_element_default_has_no_device():
    assert source_element("default") == "pulsesrc"
    assert source_element("") == "pulsesrc"
    assert source_element("@DEFAULT_MONITOR@") == 'pulsesrc device="@DEFAULT_MONITOR@"'


def test_single_source_graph():
    desc = build_pipeline_description(_spec(mic_gain=0.5))

    assert desc.startswith('pulsesrc device="alsa_input.usb-mic" ! audioconvert')
    assert desc.count("level name=") == 1
    assert "level name=level_mic interval=100000000" in desc
    assert "audiomixer" not in desc
    assert "level_mon" not in desc
    assert "volume volume=0.5 ! audioconvert" in desc
    assert desc.endswith(
        "audio/x-raw,rate=48000,channels=2 ! opusenc bitrate=96000 ! oggmux ! "
        'filesink location="/tmp/out.ogg"'
    )


def test_dual_source_graph():
    desc = build_pipeline_description(
        _spec(
            monitor_source=source_element("sink.monitor"),
            monitor_gain=7,
            mic_gain=0,
            level_interval_ns=level_interval_ns(1),
        )
    )

    assert desc.count("audiomixer") == 1
    assert desc.count("level name=") == 2
    assert "level name=level_mon interval=10000000" in desc
    assert 'pulsesrc device="sink.monitor"' in desc
    assert desc.count("fakesink sync=false") == 2
    assert "volume volume=1 ! mix." in desc
    assert "volume volume=2 ! mix." in desc
    assert desc.index("tee name=tmic") < desc.index("tee name=tmon")


def test_processing_chain_is_inserted_before_volume():
    desc = build_pipeline_description(_spec(mic_chain=resolve_chain("voice", True)))
    assert "tmic. ! queue ! audioconvert ! audioresample ! audio/x-raw,format=S16LE" in desc
    assert "compression-gain-db=24 ! volume volume=1" in desc


def test_output_path_is_quoted():
    desc = build_pipeline_description(_spec(out_path='/tmp/say "hi".ogg'))
    assert desc.endswith('filesink location="/tmp/say \\"hi\\".ogg"')
