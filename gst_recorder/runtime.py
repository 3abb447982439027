"""Run-time control of a recording pipeline.

RecordingRuntime owns the pipeline for one recording: it starts playback,
drains the bus with a bounded poll, turns ``level`` messages into telemetry
and drives the two-phase stop (EOS first, forced NULL state after a deadline).

Everything here runs on a single asyncio loop. The bus poll is the only
suspension point; stop requests from stdin, signals or a keypress arrive as
loop callbacks between polls, so state needs no locking. Moving the bus poll
onto another thread would break that assumption.
"""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Callable, Optional, Protocol

from .bus_messages import BusMessage, MessageKind, first_channel_db, level_rms
from .pipeline_graph import LEVEL_MIC, LEVEL_MONITOR
from .worker_protocol import (
    ErrorEvent,
    LevelEvent,
    RuntimeEvent,
    StartedEvent,
    StoppedEvent,
    now_ms,
)

DEFAULT_POLL_TIMEOUT = 0.1
DEFAULT_STOP_TIMEOUT = 2.0

_LOG = logging.getLogger("runtime")

EventSink = Callable[[RuntimeEvent], None]


class Pipeline(Protocol):
    def play(self) -> None: ...

    def pop_message(self, timeout: float) -> Optional[BusMessage]: ...

    def send_eos(self) -> None: ...

    def stop(self) -> None: ...

    def force_stop(self) -> None: ...


class RunState(str, Enum):
    IDLE = "idle"
    STARTED = "started"
    DRAINING = "draining"
    STOPPING = "stopping"
    STOPPED = "stopped"
    FAILED = "failed"


class RecordingRuntime:
    def __init__(
        self,
        pipeline: Pipeline,
        sink: EventSink,
        *,
        out_path: str,
        actual_mic: str,
        actual_monitor: str,
        poll_timeout: float = DEFAULT_POLL_TIMEOUT,
        stop_timeout: float = DEFAULT_STOP_TIMEOUT,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._pipeline = pipeline
        self._sink = sink
        self.out_path = out_path
        self.actual_mic = actual_mic
        self.actual_monitor = actual_monitor
        self._poll_timeout = poll_timeout
        self._stop_timeout = stop_timeout
        self._clock = clock

        self.state = RunState.IDLE
        self.last_mic_db: Optional[float] = None
        self.last_monitor_db: Optional[float] = None
        self.forced = False

        self._stop_requested = False
        self._done = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._deadline: Optional[asyncio.TimerHandle] = None

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    @property
    def finished(self) -> bool:
        return self._done

    async def run(self) -> int:
        self._loop = asyncio.get_running_loop()
        self._sink(StartedEvent(self.actual_mic, self.actual_monitor, self.out_path))
        self.state = RunState.STARTED
        try:
            self._pipeline.play()
            self.state = RunState.DRAINING
            if self._stop_requested:
                self._begin_graceful_stop()
            while not self._done:
                message = self._pipeline.pop_message(self._poll_timeout)
                if message is not None:
                    self._handle_message(message)
                await asyncio.sleep(0)
        except BaseException:
            self.state = RunState.FAILED
            self._cancel_deadline()
            raise
        return 0

    def request_stop(self) -> None:
        """Begin a graceful stop; repeated calls are ignored."""
        if self._stop_requested or self._done:
            return
        self._stop_requested = True
        _LOG.info("stop requested")
        if self.state is RunState.DRAINING:
            self._begin_graceful_stop()

    def _begin_graceful_stop(self) -> None:
        self.state = RunState.STOPPING
        try:
            self._pipeline.send_eos()
        except Exception as exc:  # noqa: BLE001 - the deadline still forces the stop
            _LOG.warning("failed to send EOS: %r", exc)
        assert self._loop is not None
        self._deadline = self._loop.call_later(self._stop_timeout, self._on_deadline)

    def _on_deadline(self) -> None:
        self._deadline = None
        if self._done:
            return
        _LOG.warning("no EOS within %.1fs; forcing pipeline stop", self._stop_timeout)
        self.forced = True
        try:
            self._pipeline.force_stop()
        except Exception as exc:  # noqa: BLE001 - stopping regardless
            _LOG.warning("forced stop raised: %r", exc)
        self._finish()

    def _cancel_deadline(self) -> None:
        if self._deadline is not None:
            self._deadline.cancel()
            self._deadline = None

    def _natural_end(self, reason: str) -> None:
        self._stop_requested = True
        if self.state is RunState.DRAINING:
            self.state = RunState.STOPPING
        _LOG.info("pipeline ended (%s)", reason)
        self._finish()

    def _finish(self) -> None:
        if self._done:
            return
        self._done = True
        self._cancel_deadline()
        if not self.forced:
            try:
                self._pipeline.stop()
            except Exception as exc:  # noqa: BLE001 - diagnostics only
                _LOG.warning("pipeline stop raised: %r", exc)
        self.state = RunState.STOPPED
        self._sink(StoppedEvent(self.out_path, ts=self._clock()))

    def _handle_message(self, message: BusMessage) -> None:
        if message.kind is MessageKind.ERROR:
            _LOG.error("pipeline error: %s", message.error.get("message", ""))
            self._sink(ErrorEvent("GStreamer error", details=dict(message.error)))
            self._natural_end("error")
            return
        if message.kind is MessageKind.EOS:
            self._natural_end("eos")
            return
        if message.kind is MessageKind.ELEMENT:
            self._handle_level(message)

    def _handle_level(self, message: BusMessage) -> None:
        rms = level_rms(message)
        if rms is None:
            return
        if message.source_name not in (LEVEL_MIC, LEVEL_MONITOR):
            return
        db = first_channel_db(rms)
        if db is not None:
            if message.source_name == LEVEL_MIC:
                self.last_mic_db = db
            else:
                self.last_monitor_db = db
        self._sink(LevelEvent(self.last_mic_db, self.last_monitor_db, ts=self._clock()))


__all__ = ["EventSink", "Pipeline", "RecordingRuntime", "RunState"]
