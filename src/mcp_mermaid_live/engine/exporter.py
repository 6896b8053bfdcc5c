from __future__ import annotations

import asyncio
import io
import logging
import math
import re
import xml.etree.ElementTree as ET
from typing import Optional, Protocol, Tuple

from PIL import Image, ImageColor

from mcp_mermaid_live.models.export import (
    ExportArtifact,
    ExportConfig,
    ExportErrorKind,
    ExportResult,
)
from mcp_mermaid_live.models.render import RenderPhase

from .renderer import RenderPipeline

log = logging.getLogger("mcp.mermaid.engine.exporter")

SVG_NS = "http://www.w3.org/2000/svg"
ET.register_namespace("", SVG_NS)
ET.register_namespace("xlink", "http://www.w3.org/1999/xlink")

_MAX_WIDTH_RE = re.compile(r"max-width\s*:\s*[^;]+;?\s*")


class Rasterizer(Protocol):
    async def rasterize(self, svg: str, width: int, height: int) -> bytes:
        """PNG bytes of exactly width x height pixels on a transparent background."""
        ...


def pixel_size(width: float, height: float, scale: float) -> Tuple[int, int]:
    """round(intrinsic x scale), halves rounded up."""
    return int(math.floor(width * scale + 0.5)), int(math.floor(height * scale + 0.5))


def _fmt(v: float) -> str:
    return f"{v:.3f}".rstrip("0").rstrip(".")


def size_svg(svg: str, width_px: int, height_px: int, intrinsic: Tuple[float, float]) -> str:
    """Pin the root element to the target pixel size; the viewBox keeps drawing units."""
    root = ET.fromstring(svg)
    if root.get("viewBox") is None:
        root.set("viewBox", f"0 0 {_fmt(intrinsic[0])} {_fmt(intrinsic[1])}")
    root.set("width", str(width_px))
    root.set("height", str(height_px))
    style = root.get("style")
    if style:
        style = _MAX_WIDTH_RE.sub("", style).strip()
        if style:
            root.set("style", style)
        else:
            del root.attrib["style"]
    root.set("preserveAspectRatio", "none")
    return ET.tostring(root, encoding="unicode")


def parse_fill(fill: str) -> Tuple[int, int, int, int]:
    r, g, b = ImageColor.getrgb(fill)[:3]
    return r, g, b, 255


def composite(png: bytes, width_px: int, height_px: int, background: Tuple[int, int, int, int]) -> bytes:
    """Lay the rasterized diagram over ``background`` and re-encode as PNG."""
    with Image.open(io.BytesIO(png)) as im:
        layer = im.convert("RGBA")
    if layer.size != (width_px, height_px):
        layer = layer.resize((width_px, height_px), Image.Resampling.LANCZOS)
    canvas = Image.new("RGBA", (width_px, height_px), background)
    canvas.alpha_composite(layer)
    out = io.BytesIO()
    canvas.save(out, format="PNG")
    return out.getvalue()


class ExportPipeline:
    """
    Rasterizes the render pipeline's current output.

    One export at a time; a call made while another is in flight is rejected
    without touching the first. Failures come back as ExportResult errors.
    """

    def __init__(self, render: RenderPipeline, rasterizer: Rasterizer, *, fill: str = "#ffffff"):
        self._render = render
        self._rasterizer = rasterizer
        self._fill = parse_fill(fill)
        self._in_flight = False

    @property
    def busy(self) -> bool:
        return self._in_flight

    async def export_image(self, config: Optional[ExportConfig] = None) -> ExportResult:
        config = config or ExportConfig()
        if self._in_flight:
            log.info("export.rejected", extra={"reason": ExportErrorKind.ALREADY_IN_PROGRESS.value})
            return ExportResult.failure(ExportErrorKind.ALREADY_IN_PROGRESS, "An export is already running.")

        state = self._render.current_state()
        if not state.exportable:
            reason = "Rendering is still in progress." if state.phase is RenderPhase.PENDING \
                else "There is no rendered diagram for the current source."
            log.info(
                "export.rejected",
                extra={"reason": ExportErrorKind.NOT_READY.value, "phase": state.phase.value, "generation": state.generation},
            )
            return ExportResult.failure(ExportErrorKind.NOT_READY, reason)

        output = state.output
        if output is None:
            return ExportResult.failure(ExportErrorKind.NOT_READY, "There is no rendered diagram for the current source.")

        self._in_flight = True
        try:
            width_px, height_px = pixel_size(output.width, output.height, config.scale)
            if width_px < 1 or height_px < 1:
                raise ValueError(f"Zero-sized raster: {width_px}x{height_px}")
            log.info(
                "export.start",
                extra={
                    "generation": output.generation,
                    "scale": config.scale,
                    "transparent": config.transparent_background,
                    "width_px": width_px,
                    "height_px": height_px,
                },
            )
            sized = size_svg(output.svg, width_px, height_px, (output.width, output.height))
            png = await self._rasterizer.rasterize(sized, width_px, height_px)
            background = (0, 0, 0, 0) if config.transparent_background else self._fill
            data = await asyncio.to_thread(composite, png, width_px, height_px, background)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.warning(
                "export.failed",
                extra={"generation": output.generation, "error": str(e), "error_type": type(e).__name__},
            )
            return ExportResult.failure(ExportErrorKind.RASTERIZATION_FAILED, f"Rasterization failed: {e}", cause=e)
        finally:
            self._in_flight = False

        log.info("export.ok", extra={"generation": output.generation, "bytes": len(data)})
        return ExportResult.success(ExportArtifact(png=data, width=width_px, height=height_px))
