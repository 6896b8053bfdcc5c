from __future__ import annotations

import asyncio
import logging

from mcp_mermaid_live.errors import RasterizationError

log = logging.getLogger("mcp.mermaid.engine.raster")


def _svg_to_png(svg: str, width: int, height: int) -> bytes:
    # cairosvg loads libcairo at import time; keep that off the server import path
    import cairosvg

    return cairosvg.svg2png(
        bytestring=svg.encode("utf-8"),
        output_width=width,
        output_height=height,
    )


class CairoRasterizer:
    """Rasterizes SVG with CairoSVG in a worker thread."""

    async def rasterize(self, svg: str, width: int, height: int) -> bytes:
        try:
            png = await asyncio.to_thread(_svg_to_png, svg, width, height)
        except Exception as e:
            raise RasterizationError(f"cairosvg failed: {e}", data={"width": width, "height": height}) from e
        if not png:
            raise RasterizationError("cairosvg returned no data", data={"width": width, "height": height})
        log.debug("raster.ok", extra={"width": width, "height": height, "bytes": len(png)})
        return png
