#!/usr/bin/env python3
"""
GStreamer adapter used by the recorder worker.

- Loads the PyGObject bindings on demand (a missing install is reported, not raised through)
- Parses gst-launch descriptions into a pipeline
- Pops bus messages with a bounded wait and decodes them into BusMessage
- Sends EOS for a graceful stop; stop()/force_stop() drop the pipeline to NULL

The rest of the package only sees GstEngine/GstPipeline, so tests swap in
fakes with the same methods.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Optional

from .bus_messages import BusMessage, MessageKind

_LOG = logging.getLogger("gst_engine")


class EngineError(RuntimeError):
    """Base error for media engine failures."""


class EngineUnavailableError(EngineError):
    """Raised when the GStreamer Python bindings cannot be loaded."""


class PipelineCreateError(EngineError):
    """Raised when a pipeline description cannot be instantiated."""


def _plain(value: Any, depth: int = 0) -> Any:
    """Convert GLib containers into lists/dicts the protocol can serialise."""
    if depth > 6:
        return None
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    values = getattr(value, "values", None)  # GObject.ValueArray
    if values is not None and not callable(values):
        return [_plain(v, depth + 1) for v in values]
    if isinstance(value, (list, tuple)):
        return [_plain(v, depth + 1) for v in value]
    if hasattr(value, "n_fields") and hasattr(value, "nth_field_name"):
        return _structure_to_dict(value, depth + 1)
    return str(value)


def _structure_to_dict(structure: Any, depth: int = 0) -> Dict[str, Any]:
    payload: Dict[str, Any] = {}
    for idx in range(structure.n_fields()):
        name = structure.nth_field_name(idx)
        try:
            payload[name] = _plain(structure.get_value(name), depth)
        except TypeError:
            # PyGObject cannot marshal some GTypes; they carry nothing we read.
            continue
    return payload


class GstPipeline:
    def __init__(self, gst: Any, pipeline: Any) -> None:
        self._gst = gst
        self._pipeline = pipeline
        self._bus = pipeline.get_bus()
        self._wanted = (
            gst.MessageType.ERROR
            | gst.MessageType.EOS
            | gst.MessageType.ELEMENT
            | gst.MessageType.STATE_CHANGED
            | gst.MessageType.ASYNC_DONE
        )

    def enable_level_messages(self, names: Iterable[str]) -> None:
        for name in names:
            element = self._pipeline.get_by_name(name)
            if element is not None:
                element.set_property("post-messages", True)

    def play(self) -> None:
        ret = self._pipeline.set_state(self._gst.State.PLAYING)
        if ret == self._gst.StateChangeReturn.FAILURE:
            raise EngineError("pipeline refused to enter PLAYING")
        _LOG.debug("pipeline set to PLAYING (%s)", ret.value_nick)

    def pop_message(self, timeout: float) -> Optional[BusMessage]:
        timeout_ns = max(0, int(timeout * self._gst.SECOND))
        msg = self._bus.timed_pop_filtered(timeout_ns, self._wanted)
        if msg is None:
            return None
        return self._decode(msg)

    def _decode(self, msg: Any) -> BusMessage:
        gst = self._gst
        source_name = msg.src.get_name() if msg.src is not None else None
        if msg.type == gst.MessageType.ERROR:
            err, debug = msg.parse_error()
            return BusMessage(
                kind=MessageKind.ERROR,
                source_name=source_name,
                error={
                    "message": err.message,
                    "domain": str(err.domain),
                    "code": err.code,
                    "debug": debug or "",
                    "source": source_name or "",
                },
            )
        if msg.type == gst.MessageType.EOS:
            return BusMessage(kind=MessageKind.EOS, source_name=source_name)
        if msg.type == gst.MessageType.ASYNC_DONE:
            return BusMessage(kind=MessageKind.ASYNC_DONE, source_name=source_name)
        if msg.type == gst.MessageType.STATE_CHANGED:
            old, new, _pending = msg.parse_state_changed()
            return BusMessage(
                kind=MessageKind.STATE_CHANGED,
                source_name=source_name,
                payload={"old": old.value_nick, "new": new.value_nick},
            )
        structure = msg.get_structure()
        if msg.type == gst.MessageType.ELEMENT and structure is not None:
            return BusMessage(
                kind=MessageKind.ELEMENT,
                source_name=source_name,
                structure_name=structure.get_name(),
                payload=_structure_to_dict(structure),
            )
        return BusMessage(kind=MessageKind.OTHER, source_name=source_name)

    def send_eos(self) -> None:
        if not self._pipeline.send_event(self._gst.Event.new_eos()):
            _LOG.warning("EOS event was not handled by the pipeline")

    def stop(self) -> None:
        self._pipeline.set_state(self._gst.State.NULL)
        _LOG.debug("pipeline set to NULL")

    def force_stop(self) -> None:
        ret = self._pipeline.set_state(self._gst.State.NULL)
        _LOG.info("pipeline forced to NULL (%s)", ret.value_nick)

    def query_position_ns(self) -> Optional[int]:
        ok, position = self._pipeline.query_position(self._gst.Format.TIME)
        if not ok or position < 0:
            return None
        return int(position)


class GstEngine:
    def __init__(self, gst: Any) -> None:
        self._gst = gst

    @property
    def version(self) -> str:
        return self._gst.version_string()

    def element_exists(self, name: str) -> bool:
        return self._gst.ElementFactory.find(name) is not None

    def create_pipeline(self, description: str) -> GstPipeline:
        try:
            pipeline = self._gst.parse_launch(description)
        except Exception as exc:  # GLib.Error from the parser
            raise PipelineCreateError(str(exc)) from exc
        if pipeline is None:
            raise PipelineCreateError("parse_launch returned no pipeline")
        return GstPipeline(self._gst, pipeline)


def load_engine() -> GstEngine:
    """Import and initialise GStreamer through PyGObject."""
    try:
        import gi

        gi.require_version("Gst", "1.0")
        from gi.repository import Gst
    except (ImportError, ValueError) as exc:
        raise EngineUnavailableError(f"GStreamer bindings unavailable: {exc}") from exc

    Gst.init(None)
    engine = GstEngine(Gst)
    _LOG.debug("loaded %s", engine.version)
    return engine


__all__ = [
    "EngineError",
    "EngineUnavailableError",
    "GstEngine",
    "GstPipeline",
    "PipelineCreateError",
    "load_engine",
]
