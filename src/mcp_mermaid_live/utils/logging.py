from __future__ import annotations

import json
import logging
import logging.config
import os
import sys
from pathlib import Path
from typing import Any

import yaml

# ---------- small helpers ----------

def preview(s: str | bytes | Any, n: int = 300) -> str:
    try:
        if isinstance(s, bytes):
            s = s.decode("utf-8", "replace")
        s = str(s)
    except Exception:
        return "<unprintable>"
    s = s.strip()
    return s if len(s) <= n else (s[: n - 20] + "... <truncated>")

def _truthy(v: str | None) -> bool:
    return str(v or "").strip().lower() in {"1", "true", "yes", "y", "on"}

def want_verbose_inputs() -> bool:
    return _truthy(os.getenv("LOG_VERBOSE_INPUTS"))

def source_fields(source: str) -> dict[str, Any]:
    """Log fields describing a diagram source; full text only when verbose."""
    fields: dict[str, Any] = {"source_len": len(source), "source_lines": source.count("\n") + 1}
    if want_verbose_inputs():
        fields["source"] = source
    else:
        fields["source_preview"] = preview(source, 120)
    return fields

# ---------- logging setup ----------

_STD_ATTRS = {
    "name","msg","args","levelname","levelno","pathname","filename","module","exc_info",
    "exc_text","stack_info","lineno","funcName","created","msecs","relativeCreated",
    "thread","threadName","processName","process","message","asctime","taskName",
}

class ExtraJSONFormatter(logging.Formatter):
    """
    Format: "YYYY-mm-dd HH:MM:SS.mmm | LEVEL | logger | message | {json of extras}"
    """
    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()

        base_dt = self.formatTime(record, datefmt="%Y-%m-%d %H:%M:%S")
        ts = f"{base_dt}.{int(record.msecs):03d}"

        extras = {k: v for k, v in record.__dict__.items() if k not in _STD_ATTRS}

        base = f"{ts} | {record.levelname} | {record.name} | {record.message}"
        if record.exc_info:
            base = f"{base}\n{self.formatException(record.exc_info)}"
        if extras:
            try:
                j = json.dumps(extras, ensure_ascii=False, default=str)
            except Exception:
                j = '{"_format_error":"<unserializable extras>"}'
            return f"{base} | {j}"
        return base

def _load_yaml_config(path: Path, level: str) -> bool:
    with path.open("r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f) or {}
    cfg.setdefault("version", 1)
    cfg.setdefault("root", {}).setdefault("level", level)
    logging.config.dictConfig(cfg)
    return True

def setup_logging() -> None:
    """
    Install ExtraJSONFormatter on stdout, or load the dictConfig YAML named by
    LOG_CONFIG. LOG_LEVEL overrides the root level in both cases.
    """
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    lvl = getattr(logging, level, logging.INFO)
    if not isinstance(lvl, int):
        lvl = logging.INFO

    root = logging.getLogger()
    if getattr(root, "_mermaid_live_configured", False):
        return

    cfg_path = os.getenv("LOG_CONFIG")
    if cfg_path and Path(cfg_path).is_file():
        _load_yaml_config(Path(cfg_path), logging.getLevelName(lvl))
    else:
        handler = logging.StreamHandler(stream=sys.stdout)
        handler.setFormatter(ExtraJSONFormatter())
        root.handlers.clear()
        root.addHandler(handler)
        root.setLevel(lvl)
    root._mermaid_live_configured = True  # type: ignore[attr-defined]
