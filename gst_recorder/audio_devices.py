"""Enumerate PulseAudio/PipeWire capture sources and pick recording defaults."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence

MONITOR_SUFFIX = ".monitor"
DEFAULT_QUERY_TIMEOUT = 4.0
LIST_SOURCES_COMMAND = ("pactl", "list", "short", "sources")

_LOG = logging.getLogger("audio_devices")

Runner = Callable[[Sequence[str], float], str]


@dataclass(frozen=True)
class AudioSource:
    name: str
    state: str
    index: str = ""
    driver: str = ""

    @property
    def is_monitor(self) -> bool:
        return self.name.endswith(MONITOR_SUFFIX)


@dataclass(frozen=True)
class SourceListing:
    mic_sources: List[str]
    monitor_sources: List[str]

    def as_dict(self) -> dict[str, list[str]]:
        return {
            "micSources": list(self.mic_sources),
            "monitorSources": list(self.monitor_sources),
        }


def _run_listing(command: Iterable[str], timeout: float) -> str:
    try:
        result = subprocess.run(
            list(command),
            check=False,
            capture_output=True,
            text=True,
            errors="replace",
            timeout=timeout,
        )
    except FileNotFoundError:
        return ""
    except subprocess.SubprocessError as exc:
        _LOG.debug("source query failed: %r", exc)
        return ""

    if result.returncode != 0:
        _LOG.debug("source query exited with %s", result.returncode)
        return ""
    return result.stdout or ""


def parse_source_rows(output: str) -> List[AudioSource]:
    """Parse `pactl list short sources` output into sources.

    Columns are index, name, driver, sample spec and state; only the name
    (second column) and the state (last column) are relied upon.
    """
    sources: List[AudioSource] = []
    if not output:
        return sources

    for line in output.splitlines():
        parts = line.split()
        if len(parts) < 2:
            continue
        name = parts[1].strip()
        if not name:
            continue
        sources.append(
            AudioSource(
                name=name,
                state=parts[-1].strip().upper(),
                index=parts[0],
                driver=parts[2] if len(parts) > 3 else "",
            )
        )
    return sources


def query_sources(
    timeout: float = DEFAULT_QUERY_TIMEOUT,
    runner: Optional[Runner] = None,
) -> List[AudioSource]:
    """Return the current sources; any failure yields an empty list."""
    run = runner or _run_listing
    try:
        output = run(LIST_SOURCES_COMMAND, timeout)
    except (OSError, ValueError) as exc:
        _LOG.debug("source query raised %r", exc)
        return []
    return parse_source_rows(output)


def pick_source(sources: Sequence[AudioSource]) -> str:
    """First RUNNING source, else first IDLE, else first listed, else ""."""
    for wanted in ("RUNNING", "IDLE"):
        for source in sources:
            if source.state == wanted:
                return source.name
    if sources:
        return sources[0].name
    return ""


def split_sources(sources: Iterable[AudioSource]) -> tuple[List[AudioSource], List[AudioSource]]:
    mics: List[AudioSource] = []
    monitors: List[AudioSource] = []
    for source in sources:
        if source.is_monitor:
            monitors.append(source)
        else:
            mics.append(source)
    return mics, monitors


class SourceInventory:
    """Query wrapper shared by the worker and the interactive stand.

    Each call enumerates afresh; nothing is cached between selections.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_QUERY_TIMEOUT,
        runner: Optional[Runner] = None,
    ) -> None:
        self.timeout = timeout
        self._runner = runner

    def sources(self) -> List[AudioSource]:
        return query_sources(self.timeout, self._runner)

    def list_sources(self) -> SourceListing:
        mics, monitors = split_sources(self.sources())
        return SourceListing(
            mic_sources=[s.name for s in mics],
            monitor_sources=[s.name for s in monitors],
        )

    def pick_mic(self) -> str:
        mics, _ = split_sources(self.sources())
        return pick_source(mics)

    def pick_monitor(self) -> str:
        _, monitors = split_sources(self.sources())
        return pick_source(monitors)


def list_sources(timeout: float = DEFAULT_QUERY_TIMEOUT, runner: Optional[Runner] = None) -> SourceListing:
    return SourceInventory(timeout, runner).list_sources()


def pick_mic(timeout: float = DEFAULT_QUERY_TIMEOUT, runner: Optional[Runner] = None) -> str:
    return SourceInventory(timeout, runner).pick_mic()


def pick_monitor(timeout: float = DEFAULT_QUERY_TIMEOUT, runner: Optional[Runner] = None) -> str:
    return SourceInventory(timeout, runner).pick_monitor()


__all__ = [
    "AudioSource",
    "MONITOR_SUFFIX",
    "SourceInventory",
    "SourceListing",
    "list_sources",
    "parse_source_rows",
    "pick_mic",
    "pick_monitor",
    "pick_source",
    "query_sources",
]
