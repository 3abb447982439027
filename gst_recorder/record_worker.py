#!/usr/bin/env python3
"""
Recorder worker process (launched by the host application, never imported by it).

Protocol stdout (JSONL):
- {"type":"started","actualMic":"...","actualMonitor":"...","outPath":"..."}
- {"type":"level","micDb":-23.1,"monitorDb":-41.2,"ts":1730000000000}
- {"type":"stopped","outPath":"...","ts":...}
- {"type":"error","message":"...","details":{...}}

Control: stdin (UTF-8 lines)
- "stop\\n" -> graceful stop (EOS, forced after a deadline)

Exit code 1 only for failures before recording starts; pipeline errors are
reported on stdout and still end with "stopped" and exit code 0.
"""
from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from typing import Callable, Optional, Sequence, TextIO

from .audio_devices import SourceInventory
from .config import RecorderSettings, configure_logging, recorder_settings
from .gst_engine import EngineUnavailableError, GstEngine, PipelineCreateError, load_engine
from .pipeline_graph import (
    DEFAULT_DEVICE,
    DEFAULT_MONITOR_ALIAS,
    LEVEL_MIC,
    LEVEL_MONITOR,
    PipelineSpec,
    build_pipeline_description,
    level_interval_ns,
    source_element,
)
from .processing_chain import REQUIRED_ELEMENT, ProcessingMode, resolve_chain
from .runtime import RecordingRuntime
from .worker_protocol import (
    AUTO,
    CommandLineBuffer,
    ErrorEvent,
    EventWriter,
    ProtocolArgumentError,
    is_stop_command,
    parse_worker_args,
)

_LOG = logging.getLogger("record_worker")

STDIN_CHUNK_BYTES = 4096


def resolve_mic(selector: str, inventory: SourceInventory) -> str:
    if selector in ("", AUTO):
        return inventory.pick_mic() or DEFAULT_DEVICE
    return selector


def resolve_monitor(selector: str, inventory: SourceInventory) -> str:
    """Concrete monitor name, or "" when the monitor is disabled or absent."""
    if selector == AUTO:
        return inventory.pick_monitor()
    if selector == DEFAULT_DEVICE:
        return DEFAULT_MONITOR_ALIAS
    return selector


def _install_stdin_reader(
    loop: asyncio.AbstractEventLoop,
    fd: int,
    on_stop: Callable[[], None],
) -> bool:
    buffer = CommandLineBuffer()

    def _on_readable() -> None:
        try:
            chunk = os.read(fd, STDIN_CHUNK_BYTES)
        except BlockingIOError:
            return
        except OSError as exc:
            _LOG.warning("stdin read failed: %r", exc)
            loop.remove_reader(fd)
            return
        if not chunk:
            _LOG.debug("stdin closed; stop now only via signal")
            loop.remove_reader(fd)
            return
        for line in buffer.feed(chunk):
            if is_stop_command(line):
                on_stop()
            elif line:
                _LOG.debug("ignoring stdin line %r", line)

    try:
        loop.add_reader(fd, _on_readable)
    except (OSError, ValueError, NotImplementedError) as exc:
        _LOG.warning("cannot watch stdin for commands: %r", exc)
        return False
    return True


async def drive_runtime(
    runtime: RecordingRuntime,
    *,
    stdin_fd: Optional[int] = None,
    handle_signals: bool = True,
) -> int:
    """Run ``runtime`` with stdin commands and SIGINT/SIGTERM mapped to stop."""
    loop = asyncio.get_running_loop()
    watching_stdin = False
    if stdin_fd is not None:
        watching_stdin = _install_stdin_reader(loop, stdin_fd, runtime.request_stop)

    signals: list[int] = []
    if handle_signals:
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, runtime.request_stop)
            except (NotImplementedError, RuntimeError, ValueError):
                continue
            signals.append(sig)

    try:
        return await runtime.run()
    finally:
        if watching_stdin and stdin_fd is not None:
            loop.remove_reader(stdin_fd)
        for sig in signals:
            loop.remove_signal_handler(sig)


def _run(
    argv: Sequence[str],
    emit: EventWriter,
    settings: RecorderSettings,
    engine_loader: Callable[[], GstEngine],
    inventory: Optional[SourceInventory],
    stdin_fd: Optional[int],
    handle_signals: bool,
) -> int:
    try:
        args = parse_worker_args(argv, default_interval_ms=settings.level_interval_ms)
    except ProtocolArgumentError as exc:
        emit(ErrorEvent("Invalid worker arguments", {"error": str(exc)}))
        return 1

    if inventory is None:
        inventory = SourceInventory(timeout=settings.pactl_timeout_sec)

    if args.list_sources:
        emit.write_payload({"type": "sources", **inventory.list_sources().as_dict()})
        return 0

    try:
        engine = engine_loader()
    except EngineUnavailableError as exc:
        emit(ErrorEvent("GStreamer bindings not found", {"error": str(exc)}))
        return 1

    if not args.out_path:
        emit(ErrorEvent("outPath is required"))
        return 1

    actual_mic = resolve_mic(args.mic, inventory)
    actual_monitor = resolve_monitor(args.monitor, inventory)

    has_dsp = engine.element_exists(REQUIRED_ELEMENT)
    wants_dsp = any(
        mode is not ProcessingMode.NONE
        for mode in (args.mic_processing, args.monitor_processing)
    )
    if wants_dsp and not has_dsp:
        _LOG.debug("%s not available; recording without voice processing", REQUIRED_ELEMENT)

    spec = PipelineSpec(
        mic_source=source_element(actual_mic),
        mic_chain=resolve_chain(args.mic_processing, has_dsp),
        monitor_source=source_element(actual_monitor) if actual_monitor else None,
        monitor_chain=resolve_chain(args.monitor_processing, has_dsp),
        mic_gain=args.mic_gain,
        monitor_gain=args.monitor_gain,
        level_interval_ns=level_interval_ns(args.level_interval_ms),
        out_path=args.out_path,
        opus_bitrate=settings.opus_bitrate,
    )
    description = build_pipeline_description(spec)
    _LOG.debug("pipeline: %s", description)

    try:
        pipeline = engine.create_pipeline(description)
    except PipelineCreateError as exc:
        emit(
            ErrorEvent(
                "Failed to create GStreamer pipeline",
                {"error": str(exc), "desc": description},
            )
        )
        return 1
    pipeline.enable_level_messages((LEVEL_MIC, LEVEL_MONITOR))

    _LOG.info(
        "recording mic=%s monitor=%s out=%s",
        actual_mic,
        actual_monitor or "<none>",
        args.out_path,
    )
    runtime = RecordingRuntime(
        pipeline,
        emit,
        out_path=args.out_path,
        actual_mic=actual_mic,
        actual_monitor=actual_monitor,
        poll_timeout=settings.poll_timeout,
        stop_timeout=settings.stop_timeout,
    )
    return asyncio.run(
        drive_runtime(runtime, stdin_fd=stdin_fd, handle_signals=handle_signals)
    )


def run_worker(
    argv: Sequence[str],
    *,
    stdout: Optional[TextIO] = None,
    stdin_fd: Optional[int] = None,
    engine_loader: Callable[[], GstEngine] = load_engine,
    inventory: Optional[SourceInventory] = None,
    settings: Optional[RecorderSettings] = None,
    handle_signals: bool = True,
) -> int:
    emit = EventWriter(stdout if stdout is not None else sys.stdout)
    try:
        if settings is None:
            settings = recorder_settings()
        return _run(argv, emit, settings, engine_loader, inventory, stdin_fd, handle_signals)
    except Exception as exc:
        _LOG.exception("worker exception")
        try:
            emit(ErrorEvent("Worker exception", {"error": str(exc)}))
        except OSError:
            # Parent closed our stdout; stderr already has the traceback.
            pass
        return 1


def _stdin_fileno() -> Optional[int]:
    if sys.stdin is None:
        return None
    try:
        return sys.stdin.fileno()
    except (OSError, ValueError):
        return None


def main(argv: Optional[Sequence[str]] = None) -> int:
    try:
        sys.stdout.reconfigure(line_buffering=True, encoding="utf-8")
    except (AttributeError, ValueError):
        pass
    configure_logging()
    return run_worker(
        list(sys.argv[1:] if argv is None else argv),
        stdin_fd=_stdin_fileno(),
    )


if __name__ == "__main__":
    sys.exit(main())
