"""Voice processing chains for the recording pipeline.

A processing mode maps to a fixed run of GStreamer elements placed between a
source's metering tap and its gain stage. Enhanced modes depend on the
``webrtcdsp`` element (gst-plugins-bad); when it is missing the chain degrades
to a pass-through so the recording itself always works.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple

REQUIRED_ELEMENT = "webrtcdsp"

PASSTHROUGH_ELEMENT = "identity"

_MONO_48K = (
    "audioconvert",
    "audioresample",
    "audio/x-raw,format=S16LE,channels=1,rate=48000",
)


class ProcessingMode(str, Enum):
    NONE = "none"
    NORMALIZE = "normalize"
    VOICE = "voice"

    @classmethod
    def parse(cls, raw: object) -> "ProcessingMode":
        """Return the mode for ``raw``; unknown values mean no processing."""
        if isinstance(raw, cls):
            return raw
        text = str(raw or "").strip().lower()
        for mode in cls:
            if mode.value == text:
                return mode
        return cls.NONE


class MissingCapabilityError(RuntimeError):
    """Raised by the strict resolver when ``webrtcdsp`` is unavailable."""


@dataclass(frozen=True)
class ProcessingChain:
    mode: ProcessingMode
    elements: Tuple[str, ...]

    @property
    def passthrough(self) -> bool:
        return self.elements == (PASSTHROUGH_ELEMENT,)

    def describe(self) -> str:
        return " ! ".join(self.elements)


def _passthrough(mode: ProcessingMode) -> ProcessingChain:
    return ProcessingChain(mode=mode, elements=(PASSTHROUGH_ELEMENT,))


_CHAINS: Dict[Tuple[ProcessingMode, bool], ProcessingChain] = {
    (ProcessingMode.NONE, True): _passthrough(ProcessingMode.NONE),
    (ProcessingMode.NONE, False): _passthrough(ProcessingMode.NONE),
    (ProcessingMode.NORMALIZE, True): ProcessingChain(
        mode=ProcessingMode.NORMALIZE,
        elements=_MONO_48K
        + (
            "webrtcdsp echo-cancel=0 gain-control=1 limiter=1 "
            "target-level-dbfs=1 compression-gain-db=24",
        ),
    ),
    (ProcessingMode.NORMALIZE, False): _passthrough(ProcessingMode.NORMALIZE),
    (ProcessingMode.VOICE, True): ProcessingChain(
        mode=ProcessingMode.VOICE,
        elements=_MONO_48K
        + (
            "webrtcdsp echo-cancel=0 noise-suppression=1 noise-suppression-level=3 "
            "high-pass-filter=1 gain-control=1 limiter=1 "
            "target-level-dbfs=1 compression-gain-db=24",
        ),
    ),
    (ProcessingMode.VOICE, False): _passthrough(ProcessingMode.VOICE),
}


def resolve_chain(mode: object, has_capability: bool) -> ProcessingChain:
    """Pick the chain for ``mode``; never raises."""
    return _CHAINS[(ProcessingMode.parse(mode), bool(has_capability))]


def require_chain(mode: object, has_capability: bool) -> ProcessingChain:
    """Strict variant: enhanced modes without the DSP element are an error."""
    parsed = ProcessingMode.parse(mode)
    if parsed is not ProcessingMode.NONE and not has_capability:
        raise MissingCapabilityError(
            f"{parsed.value} processing needs {REQUIRED_ELEMENT} (gst-plugins-bad)"
        )
    return resolve_chain(parsed, has_capability)


__all__ = [
    "MissingCapabilityError",
    "PASSTHROUGH_ELEMENT",
    "ProcessingChain",
    "ProcessingMode",
    "REQUIRED_ELEMENT",
    "require_chain",
    "resolve_chain",
]
