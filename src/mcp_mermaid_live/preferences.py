"""
Key-value preference storage for export defaults.

The core reads it once at startup and writes it only on explicit save.
"""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from pydantic import ValidationError

from .models.export import ExportConfig

log = logging.getLogger("mcp.mermaid.preferences")

SCALE_KEY = "export.scale"
TRANSPARENT_KEY = "export.transparent"

# choices offered by the export menu
SCALES = (1, 2, 3, 4)


class PreferenceStore(Protocol):
    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any) -> None: ...


class MemoryPreferenceStore:
    def __init__(self, values: Optional[Dict[str, Any]] = None):
        self._values: Dict[str, Any] = dict(values or {})

    def get(self, key: str) -> Optional[Any]:
        return self._values.get(key)

    def set(self, key: str, value: Any) -> None:
        self._values[key] = value


class JsonFilePreferenceStore:
    """Flat JSON object on disk; a missing or corrupt file reads as empty."""

    def __init__(self, path: str | os.PathLike):
        self.path = Path(path).expanduser()

    def _read(self) -> Dict[str, Any]:
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as e:
            log.warning("prefs.read_failed", extra={"path": str(self.path), "error": str(e)})
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str) -> Optional[Any]:
        return self._read().get(key)

    def set(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True)
        os.replace(tmp, self.path)
        log.debug("prefs.saved", extra={"path": str(self.path), "key": key})


def load_export_config(store: Optional[PreferenceStore]) -> ExportConfig:
    """Stored export defaults; absent or invalid values fall back to scale 3, opaque."""
    if store is None:
        return ExportConfig()
    values: Dict[str, Any] = {}
    scale = store.get(SCALE_KEY)
    transparent = store.get(TRANSPARENT_KEY)
    if scale is not None and not isinstance(scale, bool):
        values["scale"] = scale
    if isinstance(transparent, bool):
        values["transparent_background"] = transparent
    elif transparent is not None:
        log.warning("prefs.invalid_value", extra={"key": TRANSPARENT_KEY, "value": repr(transparent)})
    try:
        return ExportConfig(**values)
    except ValidationError as e:
        log.warning("prefs.invalid_value", extra={"key": SCALE_KEY, "value": repr(scale), "error": str(e)})
        values.pop("scale", None)
        return ExportConfig(**values)


def save_export_config(store: PreferenceStore, config: ExportConfig) -> None:
    store.set(SCALE_KEY, config.scale)
    store.set(TRANSPARENT_KEY, config.transparent_background)
    log.info("prefs.export_saved", extra={"scale": config.scale, "transparent": config.transparent_background})
