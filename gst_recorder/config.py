#!/usr/bin/env python3
"""
Unified configuration loader for the recorder worker.

Search order (every file found is merged; earlier entries override later ones,
the first one found is reported as the active path):
  1) GST_RECORDER_CONFIG (env, absolute or relative to CWD)
  2) /etc/gst-recorder/config.yaml
  3) <project_root>/config.yaml (derived from this file's location)
  4) <script_dir>/config.yaml (directory of the running script)
  5) ./config.yaml (current working directory)

Environment variables override file values when present.
"""
from __future__ import annotations

import copy
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

import yaml

_DEFAULTS: Dict[str, Any] = {
    "recorder": {
        "level_interval_ms": 100,
        "bus_poll_ms": 100,
        "stop_timeout_ms": 2000,
        "opus_bitrate": 96000,
    },
    "devices": {
        "pactl_timeout_sec": 4.0,
    },
    "logging": {
        "dev_mode": False  # if True or ENV DEV=1, enable verbose debug
    },
}

_cfg_cache: Dict[str, Any] | None = None
_search_paths: list[Path] = []
_active_config_path: Path | None = None

_LOG = logging.getLogger("config")


@dataclass(frozen=True)
class RecorderSettings:
    level_interval_ms: int
    bus_poll_ms: int
    stop_timeout_ms: int
    opus_bitrate: int
    pactl_timeout_sec: float
    dev_mode: bool

    @property
    def poll_timeout(self) -> float:
        return self.bus_poll_ms / 1000.0

    @property
    def stop_timeout(self) -> float:
        return self.stop_timeout_ms / 1000.0


def _load_yaml_if_exists(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        _LOG.warning("ignoring unreadable config %s: %s", path, exc)
        return {}
    if isinstance(data, dict):
        return data
    _LOG.warning("ignoring config %s: top level is not a mapping", path)
    return {}


def _candidate_search_paths(project_root: Path, script_dir: Path) -> list[Path]:
    search: list[Path] = []
    env_cfg = os.getenv("GST_RECORDER_CONFIG")
    if env_cfg:
        try:
            search.append(Path(env_cfg).expanduser().resolve())
        except OSError:
            search.append(Path(env_cfg).expanduser())
    search.extend(
        [
            Path("/etc/gst-recorder/config.yaml"),
            project_root / "config.yaml",
            script_dir / "config.yaml",
            Path.cwd() / "config.yaml",
        ]
    )
    seen: set[Path] = set()
    ordered: list[Path] = []
    for candidate in search:
        try:
            resolved = candidate.resolve()
        except OSError:
            resolved = candidate
        if resolved in seen:
            continue
        seen.add(resolved)
        ordered.append(resolved)
    return ordered


def _deep_merge(base: Dict[str, Any], extra: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(base)
    for k, v in extra.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _apply_env_overrides(cfg: Dict[str, Any]) -> None:
    # DEV mode
    if os.getenv("DEV") == "1":
        cfg.setdefault("logging", {})["dev_mode"] = True

    env_map = {
        "RECORDER_BUS_POLL_MS": ("recorder", "bus_poll_ms", int),
        "RECORDER_STOP_TIMEOUT_MS": ("recorder", "stop_timeout_ms", int),
        "RECORDER_OPUS_BITRATE": ("recorder", "opus_bitrate", int),
        "PACTL_TIMEOUT_SEC": ("devices", "pactl_timeout_sec", float),
    }
    for env_key, (section, key, cast) in env_map.items():
        if env_key in os.environ:
            try:
                cfg.setdefault(section, {})[key] = cast(os.environ[env_key])
            except ValueError:
                _LOG.warning("ignoring %s=%r (not a number)", env_key, os.environ[env_key])


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def recorder_settings(cfg: Dict[str, Any] | None = None) -> RecorderSettings:
    """Return typed, clamped worker settings from a loaded config mapping."""
    if cfg is None:
        cfg = get_cfg()
    recorder = cfg.get("recorder", {}) or {}
    devices = cfg.get("devices", {}) or {}
    defaults = _DEFAULTS["recorder"]

    level_ms = max(10, _as_int(recorder.get("level_interval_ms"), defaults["level_interval_ms"]))
    poll_ms = _as_int(recorder.get("bus_poll_ms"), defaults["bus_poll_ms"])
    poll_ms = max(10, min(1000, poll_ms))
    stop_ms = max(100, _as_int(recorder.get("stop_timeout_ms"), defaults["stop_timeout_ms"]))
    bitrate = _as_int(recorder.get("opus_bitrate"), defaults["opus_bitrate"])
    if bitrate <= 0:
        bitrate = defaults["opus_bitrate"]
    pactl_timeout = _as_float(
        devices.get("pactl_timeout_sec"), _DEFAULTS["devices"]["pactl_timeout_sec"]
    )
    if pactl_timeout <= 0:
        pactl_timeout = _DEFAULTS["devices"]["pactl_timeout_sec"]

    return RecorderSettings(
        level_interval_ms=level_ms,
        bus_poll_ms=poll_ms,
        stop_timeout_ms=stop_ms,
        opus_bitrate=bitrate,
        pactl_timeout_sec=pactl_timeout,
        dev_mode=bool((cfg.get("logging", {}) or {}).get("dev_mode", False)),
    )


def get_cfg() -> Dict[str, Any]:
    global _cfg_cache, _search_paths, _active_config_path
    if _cfg_cache is not None:
        return _cfg_cache

    cfg = copy.deepcopy(_DEFAULTS)

    # Derive project root relative to this file (gst_recorder/ -> project root)
    project_root = Path(__file__).resolve().parent.parent

    # Derive script directory (useful for tools run as ./tool.py)
    try:
        script_dir = Path(sys.argv[0]).resolve().parent
    except (IndexError, OSError):
        script_dir = Path.cwd()

    search = _candidate_search_paths(project_root, script_dir)
    _search_paths = list(search)

    active: Path | None = None
    for candidate in search:
        try:
            if candidate.exists():
                active = candidate
                break
        except OSError:
            pass

    for candidate in reversed(search):
        cfg = _deep_merge(cfg, _load_yaml_if_exists(candidate))

    _active_config_path = active

    _apply_env_overrides(cfg)
    _cfg_cache = cfg
    return cfg


def reload_cfg() -> Dict[str, Any]:
    global _cfg_cache
    _cfg_cache = None
    return get_cfg()


def active_config_path() -> Path | None:
    if _cfg_cache is None:
        get_cfg()
    return _active_config_path


def search_paths() -> list[Path]:
    if not _search_paths:
        get_cfg()
    return list(_search_paths)


def configure_logging(dev_mode: bool | None = None) -> None:
    """Route diagnostics to stderr; stdout is reserved for the event protocol."""
    if dev_mode is None:
        dev_mode = recorder_settings().dev_mode
    logging.basicConfig(
        level=logging.DEBUG if dev_mode else logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        stream=sys.stderr,
    )


__all__ = [
    "RecorderSettings",
    "active_config_path",
    "configure_logging",
    "get_cfg",
    "recorder_settings",
    "reload_cfg",
    "search_paths",
]
