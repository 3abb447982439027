"""Shared helpers for building gst-launch pipeline descriptions."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from .processing_chain import ProcessingChain, ProcessingMode, resolve_chain

LEVEL_MIC = "level_mic"
LEVEL_MONITOR = "level_mon"

DEFAULT_LEVEL_INTERVAL_MS = 100
MIN_LEVEL_INTERVAL_MS = 10
DEFAULT_OPUS_BITRATE = 96000

MIN_MIX_LEVEL = 0.01
MAX_MIX_LEVEL = 2.0

SOURCE_ELEMENT = "pulsesrc"
DEFAULT_DEVICE = "default"
DEFAULT_MONITOR_ALIAS = "@DEFAULT_MONITOR@"

_CAPTURE_CAPS = "audio/x-raw,rate=48000,channels=1"
_OUTPUT_CAPS = "audio/x-raw,rate=48000,channels=2"


def clamp_mix_level(value: object) -> float:
    """Clamp a per-source gain into [0.01, 2.0]; bad or tiny values mean 1.0."""
    try:
        level = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 1.0
    if not math.isfinite(level) or level < MIN_MIX_LEVEL:
        return 1.0
    if level > MAX_MIX_LEVEL:
        return MAX_MIX_LEVEL
    return level


def level_interval_ns(interval_ms: object) -> int:
    """Metering interval in nanoseconds, never shorter than 10 ms."""
    try:
        ms = float(interval_ms)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        ms = DEFAULT_LEVEL_INTERVAL_MS
    if not math.isfinite(ms):
        ms = DEFAULT_LEVEL_INTERVAL_MS
    return int(math.floor(max(MIN_LEVEL_INTERVAL_MS, ms) * 1_000_000))


def escape_location(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def source_element(device: Optional[str]) -> str:
    """Return the capture element; no ``device=`` means the server default."""
    name = (device or "").strip()
    if not name or name == DEFAULT_DEVICE:
        return SOURCE_ELEMENT
    return f'{SOURCE_ELEMENT} device="{escape_location(name)}"'


def _format_gain(gain: float) -> str:
    return f"{gain:g}"


@dataclass(frozen=True)
class PipelineSpec:
    mic_source: str
    mic_chain: ProcessingChain
    out_path: str
    monitor_source: Optional[str] = None
    monitor_chain: ProcessingChain = resolve_chain(ProcessingMode.NONE, False)
    mic_gain: float = 1.0
    monitor_gain: float = 1.0
    level_interval_ns: int = DEFAULT_LEVEL_INTERVAL_MS * 1_000_000
    opus_bitrate: int = DEFAULT_OPUS_BITRATE

    @property
    def has_monitor(self) -> bool:
        return bool(self.monitor_source)


def _metered_input(source: str, tee: str, level_name: str, interval_ns: int) -> str:
    return (
        f"{source} ! audioconvert ! audioresample ! {_CAPTURE_CAPS} ! tee name={tee} "
        f"{tee}. ! queue ! level name={level_name} interval={interval_ns} ! fakesink sync=false "
    )


def _encoder_tail(spec: PipelineSpec) -> str:
    return (
        f"audioconvert ! audioresample ! {_OUTPUT_CAPS} ! "
        f"opusenc bitrate={int(spec.opus_bitrate)} ! oggmux ! "
        f'filesink location="{escape_location(spec.out_path)}"'
    )


def build_pipeline_description(spec: PipelineSpec) -> str:
    """Assemble the textual graph for ``Gst.parse_launch``.

    Each source is split by a ``tee``: one branch feeds a ``level`` element
    (posting RMS messages, output discarded), the other runs the processing
    chain and a ``volume`` stage. With a monitor source both processed
    branches meet in an ``audiomixer``; otherwise the mic branch goes straight
    to the stereo Opus/Ogg encoder.
    """
    interval_ns = max(MIN_LEVEL_INTERVAL_MS * 1_000_000, int(spec.level_interval_ns))
    mic_gain = _format_gain(clamp_mix_level(spec.mic_gain))

    if spec.has_monitor:
        mon_gain = _format_gain(clamp_mix_level(spec.monitor_gain))
        return (
            _metered_input(spec.mic_source, "tmic", LEVEL_MIC, interval_ns)
            + f"tmic. ! queue ! {spec.mic_chain.describe()} ! volume volume={mic_gain} ! mix. "
            + _metered_input(spec.monitor_source or "", "tmon", LEVEL_MONITOR, interval_ns)
            + f"tmon. ! queue ! {spec.monitor_chain.describe()} ! volume volume={mon_gain} ! mix. "
            + "audiomixer name=mix ! "
            + _encoder_tail(spec)
        )

    return (
        _metered_input(spec.mic_source, "tmic", LEVEL_MIC, interval_ns)
        + f"tmic. ! queue ! {spec.mic_chain.describe()} ! volume volume={mic_gain} ! "
        + _encoder_tail(spec)
    )


__all__ = [
    "DEFAULT_MONITOR_ALIAS",
    "LEVEL_MIC",
    "LEVEL_MONITOR",
    "PipelineSpec",
    "build_pipeline_description",
    "clamp_mix_level",
    "escape_location",
    "level_interval_ns",
    "source_element",
]
