from __future__ import annotations

import os
import shlex
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return default

def _default_cli() -> List[str]:
    mmdc = shutil.which("mmdc")
    if mmdc:
        return [mmdc]
    return ["npx", "-y", "@mermaid-js/mermaid-cli"]

@dataclass
class Settings:
    # Render pipeline
    debounce_ms: float = 400.0
    render_timeout: float = 30.0
    mermaid_cli: List[str] = field(default_factory=lambda: ["mmdc"])

    # Export
    export_fill: str = "#ffffff"
    export_dir: Optional[str] = None

    # Preferences
    prefs_path: str = str(Path.home() / ".mcp-mermaid-live" / "preferences.json")

    @property
    def debounce_seconds(self) -> float:
        return max(self.debounce_ms, 0.0) / 1000.0

    @classmethod
    def from_env(cls) -> "Settings":
        cli_raw = (os.getenv("MERMAID_CLI") or "").strip()
        cli = shlex.split(cli_raw) if cli_raw else _default_cli()

        prefs = (os.getenv("MERMAID_PREFS_PATH") or "").strip()
        export_dir = (os.getenv("MERMAID_EXPORT_DIR") or "").strip() or None

        return cls(
            debounce_ms=_float_env("MERMAID_DEBOUNCE_MS", 400.0),
            render_timeout=_float_env("MERMAID_RENDER_TIMEOUT", 30.0),
            mermaid_cli=cli,
            export_fill=(os.getenv("MERMAID_EXPORT_FILL") or "#ffffff").strip(),
            export_dir=export_dir,
            prefs_path=prefs or str(Path.home() / ".mcp-mermaid-live" / "preferences.json"),
        )
