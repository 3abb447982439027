"""Engine-independent view of pipeline bus messages."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence

LEVEL_STRUCTURE = "level"
RMS_FIELD = "rms"
MAX_SEARCH_DEPTH = 4


class MessageKind(str, Enum):
    ERROR = "error"
    EOS = "eos"
    ELEMENT = "element"
    STATE_CHANGED = "state-changed"
    ASYNC_DONE = "async-done"
    OTHER = "other"


@dataclass(frozen=True)
class BusMessage:
    kind: MessageKind
    source_name: Optional[str] = None
    structure_name: Optional[str] = None
    payload: Optional[Mapping[str, Any]] = None
    error: Dict[str, Any] = field(default_factory=dict)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _numeric_list(value: Any) -> Optional[List[float]]:
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        return None
    if not value or not _is_number(value[0]):
        return None
    return [float(v) for v in value if _is_number(v)]


def find_rms(value: Any, max_depth: int = MAX_SEARCH_DEPTH, _depth: int = 0) -> Optional[List[float]]:
    """Search ``value`` for the first RMS array.

    Accepts a bare numeric sequence at the top level, otherwise only fields
    named ``rms`` inside mappings (or lists of mappings) nested at most
    ``max_depth`` levels deep. Unexpected shapes are treated as not found.
    """
    if value is None or _depth > max_depth:
        return None
    if _depth == 0:
        direct = _numeric_list(value)
        if direct is not None:
            return direct
    if isinstance(value, Mapping):
        rms = _numeric_list(value.get(RMS_FIELD))
        if rms:
            return rms
        children: Sequence[Any] = list(value.values())
    elif isinstance(value, (list, tuple)):
        children = value
    else:
        return None
    for nested in children:
        if isinstance(nested, (Mapping, list, tuple)):
            found = find_rms(nested, max_depth, _depth + 1)
            if found:
                return found
    return None


def level_rms(message: BusMessage) -> Optional[List[float]]:
    """RMS values (dB per channel) from a ``level`` element message."""
    if message.structure_name != LEVEL_STRUCTURE or message.payload is None:
        return None
    rms = find_rms(message.payload)
    if not rms:
        return None
    return rms


def first_channel_db(rms: Optional[Sequence[float]]) -> Optional[float]:
    """First channel level; NaN and missing values are dropped, -inf kept."""
    if not rms:
        return None
    try:
        value = float(rms[0])
    except (TypeError, ValueError):
        return None
    if math.isnan(value):
        return None
    return value


__all__ = [
    "BusMessage",
    "MessageKind",
    "find_rms",
    "first_channel_db",
    "level_rms",
]
