from __future__ import annotations

import base64
import logging
import time
from dataclasses import asdict
from typing import Any, Dict, Optional

from mcp.server.fastmcp import FastMCP
from pydantic import ValidationError

from ..engine.mmdc import MermaidCliEngine
from ..engine.raster import CairoRasterizer
from ..engine.sanity import sanitize_mermaid
from ..engine.styles import detect_special_shapes
from ..errors import InvalidRequestError, error_envelope
from ..models.io_contracts import (
    AnalyzeResponse,
    ExportRequest,
    ExportResponse,
    FixRequest,
    FixResponse,
    StylesRequest,
    StylesResponse,
    SubmitRequest,
    SubmitResponse,
)
from ..preferences import JsonFilePreferenceStore
from ..session import DiagramSession, write_artifact
from ..settings import Settings
from ..utils.logging import source_fields

log = logging.getLogger("mcp.mermaid.tools.live")


def build_session(settings: Settings) -> DiagramSession:
    return DiagramSession(
        MermaidCliEngine(settings.mermaid_cli, timeout=settings.render_timeout),
        CairoRasterizer(),
        settings=settings,
        store=JsonFilePreferenceStore(settings.prefs_path),
    )


def register_mermaid_live(mcp: FastMCP, session: Optional[DiagramSession] = None) -> DiagramSession:
    settings = session.settings if session is not None else Settings.from_env()
    if session is None:
        session = build_session(settings)
    log.info("tool.register", extra={
        "tools": ["diagram.mermaid.submit", "diagram.mermaid.state", "diagram.mermaid.fix",
                  "diagram.mermaid.analyze", "diagram.mermaid.styles", "diagram.mermaid.export"],
        "mermaid_cli": settings.mermaid_cli,
        "debounce_ms": settings.debounce_ms,
        "export_dir": settings.export_dir,
    })

    @mcp.tool(name="diagram.mermaid.submit", title="Submit Mermaid Source")
    async def diagram_mermaid_submit(source: str) -> Dict[str, Any]:
        """
        Replace the live diagram source. Rendering starts after the debounce
        window; call diagram.mermaid.state to read the result.
        """
        try:
            req = SubmitRequest(source=sanitize_mermaid(source))
            generation = session.submit(req.source)
        except Exception as e:
            log.exception("tool.submit.failed")
            return error_envelope(e)
        state = session.current_state()
        log.info("tool.submit", extra={"generation": generation, **source_fields(req.source)})
        return SubmitResponse(generation=generation, phase=state.phase.value).model_dump()

    @mcp.tool(name="diagram.mermaid.state", title="Get Render State")
    async def diagram_mermaid_state(wait: bool = False, include_svg: bool = False) -> Dict[str, Any]:
        """
        Current render state: phase, diagnostic and output size.
          - wait: block until pending renders have settled
          - include_svg: include the rendered SVG markup
        """
        state = await session.settle() if wait else session.current_state()
        return state.to_dict(include_svg=include_svg)

    @mcp.tool(name="diagram.mermaid.fix", title="Auto-Fix Mermaid Source")
    async def diagram_mermaid_fix(source: str, apply: bool = False) -> Dict[str, Any]:
        """Repair common syntax mistakes. With apply=true the fixed code becomes the live source."""
        try:
            req = FixRequest(source=source, apply=apply)
            result = session.fix(req.source, apply=req.apply)
        except Exception as e:
            log.exception("tool.fix.failed")
            return error_envelope(e)
        generation = session.current_state().generation if (req.apply and result.has_changes) else None
        log.info("tool.fix", extra={
            "has_changes": result.has_changes,
            "rules": sorted({f.rule for f in result.fixes}),
            "applied": generation is not None,
        })
        return FixResponse(**result.to_dict(), generation=generation).model_dump()

    @mcp.tool(name="diagram.mermaid.analyze", title="Analyze Mermaid Source")
    async def diagram_mermaid_analyze(source: str) -> Dict[str, Any]:
        """List what auto-fix would change, line by line, without changing anything."""
        issues = session.analyze(source)
        out = [{**asdict(i), "kind": i.kind.value} for i in issues]
        return AnalyzeResponse(issue_count=len(out), issues=out).model_dump()

    @mcp.tool(name="diagram.mermaid.styles", title="Check and Fix Diagram Styles")
    async def diagram_mermaid_styles(
        source: str,
        action: str = "analyze",
        strategy: str = "smart",
        apply: bool = False,
    ) -> Dict[str, Any]:
        """
        Text/fill contrast of classDef and style statements, and visibility repairs.
          - action: analyze | fix | high_contrast | reset
          - strategy: smart (keep hues, adjust text or fill) | simple (black or white text)
          - apply: make the changed code the live source
        """
        try:
            req = StylesRequest(source=source, action=action, strategy=strategy, apply=apply)
            issues = session.style_issues(req.source)
            result = None
            if req.action != "analyze":
                result = session.restyle(req.source, req.action, smart=req.strategy == "smart", apply=req.apply)
        except Exception as e:
            log.exception("tool.styles.failed")
            return error_envelope(e)

        resp = StylesResponse(
            action=req.action,
            issues=[i.to_dict() for i in issues],
            special_shapes=detect_special_shapes(req.source),
        )
        if result is not None:
            resp.code = result.code
            resp.has_changes = result.has_changes
            resp.fixes = result.to_dict()["fixes"]
            if req.apply and result.has_changes:
                resp.generation = session.current_state().generation
        log.info("tool.styles", extra={
            "action": req.action,
            "issue_count": sum(1 for i in issues if i.needs_fix),
            "has_changes": resp.has_changes,
            "applied": resp.generation is not None,
        })
        return resp.model_dump()

    @mcp.tool(name="diagram.mermaid.export", title="Export Diagram as PNG")
    async def diagram_mermaid_export(
        scale: Optional[float] = None,
        transparent: Optional[bool] = None,
        output_dir: Optional[str] = None,
        remember: bool = False,
    ) -> Dict[str, Any]:
        """
        Rasterize the current diagram to PNG.
          - scale: pixel multiplier of the intrinsic size (default: stored preference, 3)
          - transparent: transparent background instead of the export fill
          - output_dir: write mermaid-diagram-<ms>.png there instead of returning base64
          - remember: store scale/transparent as the new defaults
        """
        t0 = time.time()
        try:
            req = ExportRequest(scale=scale, transparent=transparent, output_dir=output_dir, remember=remember)
        except ValidationError as e:
            return error_envelope(InvalidRequestError("invalid export parameters", data={"errors": [err["msg"] for err in e.errors()]}))

        config = session.export_config(req.scale, req.transparent)
        result = await session.export_image(config, remember=req.remember)
        if not result.ok:
            err = result.error
            log.info("tool.export.failed", extra={"kind": err.kind.value, "message": err.message})
            payload: Dict[str, Any] = {"code": err.kind.value, "message": err.message}
            if err.cause is not None:
                payload["data"] = {"cause": str(err.cause), "cause_type": type(err.cause).__name__}
            return {"error": payload}

        artifact = result.artifact
        resp = ExportResponse(
            mime_type=artifact.mime_type,
            width=artifact.width,
            height=artifact.height,
            scale=config.scale,
            transparent=config.transparent_background,
            size_bytes=len(artifact.png),
        )
        target_dir = req.output_dir or settings.export_dir
        try:
            if target_dir:
                resp.path = str(write_artifact(artifact, target_dir))
            else:
                resp.png_base64 = base64.b64encode(artifact.png).decode("ascii")
        except OSError as e:
            log.exception("tool.export.write_failed", extra={"output_dir": target_dir})
            return error_envelope(e, "Could not write the exported image")

        log.info("tool.export", extra={
            "took_ms": int((time.time() - t0) * 1000),
            "width": artifact.width,
            "height": artifact.height,
            "path": resp.path,
        })
        return resp.model_dump(exclude_none=True)

    return session
