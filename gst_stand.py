#!/usr/bin/env python3
"""
gst_stand.py

A console stand for trying the recording pipeline by hand.

Features:
- Same device selection, processing chains and pipeline graph as the worker.
- Reports which optional GStreamer elements are installed.
- Live status: elapsed time, mic/monitor levels, file size, recorded position.
- Refuses enhanced processing when webrtcdsp is missing (the worker degrades instead).

Usage:
  chmod +x ./gst_stand.py
  ./gst_stand.py
  ./gst_stand.py default "" /tmp/stand.ogg
  LEVEL_INTERVAL_MS=50 PROCESSING_MIC=normalize ./gst_stand.py

Env: LEVEL_INTERVAL_MS (default 100), PROCESSING_MIC / PROCESSING_MON
(none | normalize | voice, default voice), DEBUG_LOGS=1 for debug output.

Press any key to stop.
"""
import argparse
import asyncio
import logging
import os
import sys
import termios
import time
import tty
from typing import Optional, TextIO

from gst_recorder.audio_devices import SourceInventory
from gst_recorder.config import configure_logging, recorder_settings
from gst_recorder.gst_engine import EngineUnavailableError, PipelineCreateError, load_engine
from gst_recorder.pipeline_graph import (
    LEVEL_MIC,
    LEVEL_MONITOR,
    PipelineSpec,
    build_pipeline_description,
    level_interval_ns,
    source_element,
)
from gst_recorder.processing_chain import MissingCapabilityError, require_chain
from gst_recorder.runtime import RecordingRuntime
from gst_recorder.worker_protocol import ErrorEvent, LevelEvent, RuntimeEvent

OPTIONAL_ELEMENTS = ("webrtcdsp", "audioloudnorm", "audiolimiter")
STATUS_LINES = 5
PRINT_INTERVAL = 0.1

_LOG = logging.getLogger("gst_stand")


def format_ms(ms: float) -> str:
    ms = max(0, int(ms))
    minutes = ms // 60000
    seconds = (ms % 60000) // 1000
    millis = ms % 1000
    return f"{minutes:02d}:{seconds:02d}.{millis:03d}"


def safe_stat_size(path: str) -> int:
    try:
        return os.stat(path).st_size
    except OSError:
        return 0


def _db_text(value: Optional[float]) -> str:
    return "-" if value is None else f"{value:.3f}"


class StatusScreen:
    """Collect runtime events and redraw a fixed block of status lines."""

    def __init__(self, out_path: str, stream: TextIO, *, clear: bool) -> None:
        self.out_path = out_path
        self._stream = stream
        self._clear = clear
        self._drawn = False
        self.started_at = time.monotonic()
        self.stopped_at: Optional[float] = None
        self.mic_db: Optional[float] = None
        self.monitor_db: Optional[float] = None
        self.position_ms = 0
        self.errors: list[ErrorEvent] = []

    def on_event(self, event: RuntimeEvent) -> None:
        if isinstance(event, LevelEvent):
            self.mic_db = event.mic_db
            self.monitor_db = event.monitor_db
        elif isinstance(event, ErrorEvent):
            self.errors.append(event)
            print(f"[gst_stand] {event.message}: {event.details}", file=sys.stderr, flush=True)

    def mark_stopped(self) -> None:
        if self.stopped_at is None:
            self.stopped_at = time.monotonic()

    def lines(self) -> list[str]:
        end = self.stopped_at if self.stopped_at is not None else time.monotonic()
        return [
            f"Elapsed: {format_ms((end - self.started_at) * 1000)}",
            f"Mic level: {_db_text(self.mic_db)}",
            f"Monitor level: {_db_text(self.monitor_db)}",
            f"Size: {safe_stat_size(self.out_path)}",
            f"Recorded: {format_ms(self.position_ms)}",
        ]

    def render(self, lines: Optional[list[str]] = None) -> None:
        if self._clear and self._drawn:
            self._stream.write(f"\x1b[{STATUS_LINES}F\x1b[0J")
        for line in lines if lines is not None else self.lines():
            self._stream.write(line + "\n")
        self._stream.flush()
        self._drawn = True


class KeyWatcher:
    """Put the terminal in cbreak mode and call back on the first keypress."""

    def __init__(self, fd: int):
        self.fd = fd
        self.old_settings = None
        if os.isatty(fd):
            self.old_settings = termios.tcgetattr(fd)

    def __enter__(self) -> "KeyWatcher":
        if self.old_settings is not None:
            tty.setcbreak(self.fd)
        return self

    def __exit__(self, *exc_info) -> None:
        if self.old_settings is not None:
            termios.tcsetattr(self.fd, termios.TCSADRAIN, self.old_settings)

    def watch(self, loop: asyncio.AbstractEventLoop, on_key) -> None:
        def _on_readable() -> None:
            try:
                data = os.read(self.fd, 1024)
            except OSError:
                data = b""
            loop.remove_reader(self.fd)
            if not data:
                _LOG.debug("stdin closed; stop with Ctrl-C")
                return
            on_key()

        loop.add_reader(self.fd, _on_readable)

    def unwatch(self, loop: asyncio.AbstractEventLoop) -> None:
        loop.remove_reader(self.fd)


async def _run_stand(runtime: RecordingRuntime, pipeline, screen: StatusScreen, keys: KeyWatcher) -> int:
    loop = asyncio.get_running_loop()

    def _on_key() -> None:
        screen.mark_stopped()
        runtime.request_stop()

    keys.watch(loop, _on_key)

    async def _refresh() -> None:
        while not runtime.finished:
            position = pipeline.query_position_ns()
            if position is not None:
                screen.position_ms = position // 1_000_000
            screen.render()
            await asyncio.sleep(PRINT_INTERVAL)

    refresher = asyncio.create_task(_refresh())
    try:
        return await runtime.run()
    finally:
        screen.mark_stopped()
        refresher.cancel()
        keys.unwatch(loop)


def main() -> int:
    settings = recorder_settings()
    debug_logs = os.environ.get("DEBUG_LOGS") == "1"
    default_out = f"/tmp/assistant-stand-{int(time.time() * 1000)}.ogg"

    parser = argparse.ArgumentParser(description="Interactive GStreamer recording stand.")
    parser.add_argument("mic", nargs="?", default="default", help="Pulse source name (default: system default)")
    parser.add_argument("monitor", nargs="?", default="", help="Monitor source (default: best available monitor)")
    parser.add_argument("out", nargs="?", default=default_out, help="Output .ogg path")
    parser.add_argument("--interval-ms", type=int, default=int(os.environ.get("LEVEL_INTERVAL_MS", settings.level_interval_ms)), help="Level message interval in ms")
    parser.add_argument("--processing-mic", default=os.environ.get("PROCESSING_MIC", "voice"), help="none | normalize | voice")
    parser.add_argument("--processing-mon", default=os.environ.get("PROCESSING_MON", "voice"), help="none | normalize | voice")
    args = parser.parse_args()

    configure_logging(dev_mode=debug_logs or settings.dev_mode)

    try:
        engine = load_engine()
    except EngineUnavailableError as exc:
        print(f"[gst_stand] {exc}", file=sys.stderr, flush=True)
        return 1

    deps = {name: engine.element_exists(name) for name in OPTIONAL_ELEMENTS}
    print(
        "gst_stand deps: " + " ".join(f"{name}={str(ok).lower()}" for name, ok in deps.items()),
        flush=True,
    )

    inventory = SourceInventory(timeout=settings.pactl_timeout_sec)
    monitor = args.monitor or inventory.pick_monitor()

    try:
        mic_chain = require_chain(args.processing_mic, deps["webrtcdsp"])
        mon_chain = require_chain(args.processing_mon, deps["webrtcdsp"])
    except MissingCapabilityError as exc:
        print(f"[gst_stand] {exc}", file=sys.stderr, flush=True)
        return 1

    description = build_pipeline_description(
        PipelineSpec(
            mic_source=source_element(args.mic),
            mic_chain=mic_chain,
            monitor_source=source_element(monitor) if monitor else None,
            monitor_chain=mon_chain,
            level_interval_ns=level_interval_ns(args.interval_ms),
            out_path=args.out,
            opus_bitrate=settings.opus_bitrate,
        )
    )
    _LOG.debug("pipeline: %s", description)
    try:
        pipeline = engine.create_pipeline(description)
    except PipelineCreateError as exc:
        print(f"[gst_stand] failed to create pipeline: {exc}", file=sys.stderr, flush=True)
        return 1
    pipeline.enable_level_messages((LEVEL_MIC, LEVEL_MONITOR))

    print(
        f"GStreamer stand: mic={args.mic} monitor={monitor or '<none>'} out={args.out} "
        f"processingMic={mic_chain.mode.value} processingMon={mon_chain.mode.value}",
        flush=True,
    )
    print("Press any key to stop\n", flush=True)

    screen = StatusScreen(args.out, sys.stdout, clear=sys.stdout.isatty() and not debug_logs)
    screen.render(["Elapsed: -", "Mic level: -", "Monitor level: -", "Size: -", "Recorded: -"])

    runtime = RecordingRuntime(
        pipeline,
        screen.on_event,
        out_path=args.out,
        actual_mic=args.mic,
        actual_monitor=monitor,
        poll_timeout=settings.poll_timeout,
        stop_timeout=settings.stop_timeout,
    )
    with KeyWatcher(sys.stdin.fileno()) as keys:
        try:
            asyncio.run(_run_stand(runtime, pipeline, screen, keys))
        except KeyboardInterrupt:
            pipeline.force_stop()

    screen.render()
    print(f"\nFile: {args.out}", flush=True)
    return 1 if screen.errors else 0


if __name__ == "__main__":
    try:
        sys.stdout.reconfigure(line_buffering=True)
    except (AttributeError, ValueError):
        pass
    sys.exit(main())
