"""The presentation boundary: one editable diagram and its export settings."""
from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import List, Optional

from .engine.autofix import FixResult, Issue, analyze, fix
from .engine.exporter import ExportPipeline, Rasterizer
from .engine.renderer import Listener, RenderEngine, RenderPipeline, Subscription
from .engine.styles import StyleFixResult, StyleIssue, analyze_contrast, apply_high_contrast, fix_contrast, reset_visibility
from .models.export import ExportArtifact, ExportConfig, ExportResult
from .models.render import RenderState
from .preferences import PreferenceStore, load_export_config, save_export_config
from .settings import Settings

log = logging.getLogger("mcp.mermaid.session")


def export_filename(now_ms: Optional[int] = None) -> str:
    ms = int(time.time() * 1000) if now_ms is None else now_ms
    return f"mermaid-diagram-{ms}.png"


def write_artifact(artifact: ExportArtifact, directory: str, now_ms: Optional[int] = None) -> Path:
    target = Path(directory).expanduser()
    target.mkdir(parents=True, exist_ok=True)
    path = target / export_filename(now_ms)
    path.write_bytes(artifact.png)
    return path


class DiagramSession:
    def __init__(
        self,
        engine: RenderEngine,
        rasterizer: Rasterizer,
        *,
        settings: Optional[Settings] = None,
        store: Optional[PreferenceStore] = None,
    ):
        self.settings = settings or Settings()
        self.store = store
        self.render = RenderPipeline(engine, debounce=self.settings.debounce_seconds)
        self.exporter = ExportPipeline(self.render, rasterizer, fill=self.settings.export_fill)
        self.export_defaults: ExportConfig = load_export_config(store)
        log.info(
            "session.ready",
            extra={
                "debounce_ms": self.settings.debounce_ms,
                "export_scale": self.export_defaults.scale,
                "export_transparent": self.export_defaults.transparent_background,
            },
        )

    def submit(self, source: str) -> int:
        return self.render.submit(source)

    def current_state(self) -> RenderState:
        return self.render.current_state()

    def subscribe(self, listener: Listener) -> Subscription:
        return self.render.subscribe(listener)

    def fix(self, source: str, *, apply: bool = False) -> FixResult:
        """Auto-fix ``source``; with ``apply`` the result is submitted and the old diagnostic dropped."""
        result = fix(source)
        if apply and result.has_changes:
            self.render.clear_diagnostic()
            self.render.submit(result.code)
        return result

    def analyze(self, source: str) -> List[Issue]:
        return analyze(source)

    def style_issues(self, source: str) -> List[StyleIssue]:
        return analyze_contrast(source)

    def restyle(self, source: str, action: str, *, smart: bool = True, apply: bool = False) -> StyleFixResult:
        """
        Run one style transform: "fix" (contrast), "high_contrast" or "reset".
        With ``apply`` a changed result becomes the live source, as with fix().
        """
        if action == "fix":
            result = fix_contrast(source, smart=smart)
        elif action == "high_contrast":
            result = apply_high_contrast(source)
        elif action == "reset":
            result = reset_visibility(source)
        else:
            raise ValueError(f"unknown style action: {action}")
        if apply and result.has_changes:
            self.render.clear_diagnostic()
            self.render.submit(result.code)
        return result

    def export_config(self, scale: Optional[float] = None, transparent: Optional[bool] = None) -> ExportConfig:
        base = self.export_defaults
        return ExportConfig(
            scale=base.scale if scale is None else scale,
            transparent_background=base.transparent_background if transparent is None else transparent,
        )

    async def export_image(self, config: Optional[ExportConfig] = None, *, remember: bool = False) -> ExportResult:
        config = config or self.export_defaults
        if remember and self.store is not None:
            save_export_config(self.store, config)
            self.export_defaults = config
        return await self.exporter.export_image(config)

    async def settle(self) -> RenderState:
        return await self.render.settle()

    async def close(self) -> None:
        await self.render.close()
