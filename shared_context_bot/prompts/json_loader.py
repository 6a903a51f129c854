"""JSON overrides for built-in prompt texts and persona settings.

Each loader call names a file and a dict of defaults. The file's object is merged
over the defaults key by key (nested dicts recursively, anything else replaced).
A missing, unreadable or non-object file yields the defaults unchanged. Results are
cached until the file's mtime changes, so edits apply without a restart.
"""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger("shared_context_bot.prompts")

_ENCODINGS = ("utf-8-sig", "utf-8", "cp1251")


@dataclass(slots=True)
class _CachedOverrides:
    mtime_ns: int | None
    defaults_fingerprint: str
    merged: dict[str, Any]


_CACHE: dict[Path, _CachedOverrides] = {}


def prompt_data_dir() -> Path:
    return Path(__file__).with_name("data")


def _mtime_ns(path: Path) -> int | None:
    try:
        return path.stat().st_mtime_ns
    except OSError:
        return None


def _fingerprint(defaults: dict[str, Any]) -> str:
    return json.dumps(defaults, sort_keys=True, default=str)


def _decode(path: Path) -> str:
    raw = path.read_bytes()
    for encoding in _ENCODINGS[:-1]:
        try:
            return raw.decode(encoding)
        except UnicodeDecodeError:
            continue
    return raw.decode(_ENCODINGS[-1], errors="replace")


def _read_object(path: Path) -> dict[str, Any] | None:
    if _mtime_ns(path) is None:
        logger.debug("No override file at %s, using built-in defaults", path)
        return None
    try:
        payload = json.loads(_decode(path))
    except (OSError, ValueError) as exc:
        logger.warning("Ignoring unreadable override file %s: %s", path, exc)
        return None
    if not isinstance(payload, dict):
        logger.warning("Ignoring override file %s: top level must be a JSON object", path)
        return None
    return payload


def merge_overrides(defaults: Any, overrides: Any) -> Any:
    if not (isinstance(defaults, dict) and isinstance(overrides, dict)):
        return copy.deepcopy(overrides)
    merged = copy.deepcopy(defaults)
    for key, value in overrides.items():
        merged[key] = merge_overrides(merged[key], value) if key in merged else copy.deepcopy(value)
    return merged


def load_json_overrides(path: Path, defaults: dict[str, Any]) -> dict[str, Any]:
    """Return ``defaults`` with the JSON object at ``path`` merged over it."""
    key = path.resolve()
    mtime_ns = _mtime_ns(path)
    fingerprint = _fingerprint(defaults)

    cached = _CACHE.get(key)
    if cached is not None and cached.mtime_ns == mtime_ns and cached.defaults_fingerprint == fingerprint:
        return copy.deepcopy(cached.merged)

    overrides = _read_object(path)
    merged = merge_overrides(defaults, overrides) if overrides is not None else copy.deepcopy(defaults)
    _CACHE[key] = _CachedOverrides(mtime_ns=mtime_ns, defaults_fingerprint=fingerprint, merged=merged)
    return copy.deepcopy(merged)


def load_prompt_json(filename: str, defaults: dict[str, Any]) -> dict[str, Any]:
    return load_json_overrides(prompt_data_dir() / filename, defaults)
