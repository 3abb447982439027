"""Line-delimited JSON protocol between the recorder worker and its parent.

stdout, one object per line::

    {"type":"started","actualMic":"...","actualMonitor":"...","outPath":"..."}
    {"type":"level","micDb":-23.1,"monitorDb":-41.2,"ts":1730000000000}
    {"type":"stopped","outPath":"...","ts":1730000000000}
    {"type":"error","message":"...","details":{...}}

stdin accepts the single command ``stop``; every other line is ignored.
"""
from __future__ import annotations

import argparse
import codecs
import json
import math
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, TextIO, Union

from .pipeline_graph import DEFAULT_LEVEL_INTERVAL_MS, MIN_LEVEL_INTERVAL_MS
from .processing_chain import ProcessingMode

STOP_COMMAND = "stop"
AUTO = "auto"
LIST_SOURCES_FLAG = "--list-sources"


def now_ms() -> int:
    return int(time.time() * 1000)


def _db_or_none(value: Optional[float]) -> Optional[float]:
    if value is None or not math.isfinite(value):
        return None
    return float(value)


@dataclass(frozen=True)
class StartedEvent:
    actual_mic: str
    actual_monitor: str
    out_path: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "started",
            "actualMic": self.actual_mic,
            "actualMonitor": self.actual_monitor,
            "outPath": self.out_path,
        }


@dataclass(frozen=True)
class LevelEvent:
    mic_db: Optional[float]
    monitor_db: Optional[float]
    ts: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "level",
            "micDb": _db_or_none(self.mic_db),
            "monitorDb": _db_or_none(self.monitor_db),
            "ts": self.ts,
        }


@dataclass(frozen=True)
class StoppedEvent:
    out_path: str
    ts: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "stopped", "outPath": self.out_path, "ts": self.ts}


@dataclass(frozen=True)
class ErrorEvent:
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "error", "message": self.message, "details": dict(self.details)}


RuntimeEvent = Union[StartedEvent, LevelEvent, StoppedEvent, ErrorEvent]


class EventWriter:
    """Serialise events to a text stream, one flushed JSON line each."""

    def __init__(self, stream: TextIO) -> None:
        self._stream = stream
        self.counts: Counter[str] = Counter()

    def write_payload(self, payload: Dict[str, Any]) -> None:
        line = json.dumps(payload, ensure_ascii=False, default=str)
        self._stream.write(line + "\n")
        self._stream.flush()
        self.counts[str(payload.get("type", ""))] += 1

    def __call__(self, event: RuntimeEvent) -> None:
        self.write_payload(event.to_dict())


class ProtocolArgumentError(ValueError):
    """Raised instead of argparse's usage-and-exit behaviour."""


class _WorkerArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # type: ignore[override]
        raise ProtocolArgumentError(message)


@dataclass(frozen=True)
class WorkerArgs:
    mic: str = AUTO
    monitor: str = AUTO
    out_path: str = ""
    mic_processing: ProcessingMode = ProcessingMode.NONE
    monitor_processing: ProcessingMode = ProcessingMode.NONE
    level_interval_ms: int = DEFAULT_LEVEL_INTERVAL_MS
    mic_gain: Any = 1.0
    monitor_gain: Any = 1.0
    list_sources: bool = False


def _interval_ms(raw: Optional[str], default: int) -> int:
    if raw is None or not str(raw).strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    if not math.isfinite(value):
        return default
    return max(MIN_LEVEL_INTERVAL_MS, int(value))


def build_arg_parser() -> argparse.ArgumentParser:
    parser = _WorkerArgumentParser(
        prog="gst-record-worker",
        description="Record mic (+ monitor) through GStreamer, reporting JSON lines on stdout.",
        epilog=f"{LIST_SOURCES_FLAG} prints the available sources as one JSON line and exits.",
    )
    parser.add_argument("mic", nargs="?", default=None, help="auto | default | pulse source name")
    parser.add_argument("monitor", nargs="?", default=None, help="auto | default | monitor name | '' for none")
    parser.add_argument("out_path", nargs="?", default="", help="Output .ogg path (required)")
    parser.add_argument("mic_processing", nargs="?", default="none", help="none | normalize | voice")
    parser.add_argument("monitor_processing", nargs="?", default="none", help="none | normalize | voice")
    parser.add_argument("level_interval_ms", nargs="?", default=None, help="Level message interval (ms, min 10)")
    parser.add_argument("mic_gain", nargs="?", default="1", help="Mic mix level (0.01..2)")
    parser.add_argument("monitor_gain", nargs="?", default="1", help="Monitor mix level (0.01..2)")
    return parser


def parse_worker_args(
    argv: Sequence[str],
    *,
    default_interval_ms: int = DEFAULT_LEVEL_INTERVAL_MS,
) -> WorkerArgs:
    argv = list(argv)
    list_sources = LIST_SOURCES_FLAG in argv
    # Positions are fixed; values such as "-1e3" or "-x.ogg" are not options.
    positionals = [arg for arg in argv if arg != LIST_SOURCES_FLAG]
    args, _extra = build_arg_parser().parse_known_args(["--", *positionals])

    mic = args.mic if args.mic else AUTO
    monitor = AUTO if args.monitor is None else args.monitor

    return WorkerArgs(
        mic=mic,
        monitor=monitor,
        out_path=args.out_path or "",
        mic_processing=ProcessingMode.parse(args.mic_processing),
        monitor_processing=ProcessingMode.parse(args.monitor_processing),
        level_interval_ms=_interval_ms(args.level_interval_ms, default_interval_ms),
        mic_gain=args.mic_gain,
        monitor_gain=args.monitor_gain,
        list_sources=list_sources,
    )


class CommandLineBuffer:
    """Accumulate stdin chunks and hand back complete, stripped lines."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""

    def feed(self, chunk: bytes) -> List[str]:
        self._pending += self._decoder.decode(chunk)
        lines: List[str] = []
        while True:
            idx = self._pending.find("\n")
            if idx < 0:
                break
            lines.append(self._pending[:idx].strip())
            self._pending = self._pending[idx + 1 :]
        return lines

    @property
    def pending(self) -> str:
        return self._pending


def is_stop_command(line: str) -> bool:
    return line.strip() == STOP_COMMAND


__all__ = [
    "CommandLineBuffer",
    "ErrorEvent",
    "EventWriter",
    "LevelEvent",
    "ProtocolArgumentError",
    "RuntimeEvent",
    "STOP_COMMAND",
    "StartedEvent",
    "StoppedEvent",
    "WorkerArgs",
    "build_arg_parser",
    "is_stop_command",
    "now_ms",
    "parse_worker_args",
]
