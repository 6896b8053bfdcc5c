"""Mermaid rendering through mermaid-cli (mmdc) in an asyncio subprocess."""
from __future__ import annotations

import asyncio
import json
import logging
import re
import tempfile
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from mcp_mermaid_live.errors import EngineUnavailableError, RenderEngineError
from mcp_mermaid_live.models.render import VectorOutput
from mcp_mermaid_live.utils.logging import preview

log = logging.getLogger("mcp.mermaid.engine.mmdc")

# cairosvg cannot draw <foreignObject>, so labels must be plain SVG text
MERMAID_CONFIG = {"htmlLabels": False, "flowchart": {"htmlLabels": False}}

_NUM_RE = re.compile(r"[-+]?\d*\.?\d+(?:[eE][-+]?\d+)?")
_NOISE_RE = re.compile(r"^(?:Generating single mermaid chart|\s+at\s|\(node:\d+\)|npm (?:WARN|notice))")
_LINE_RE = re.compile(r"\bline\s+(\d+)", re.IGNORECASE)


def _length(value: Optional[str]) -> Optional[float]:
    if not value or value.strip().endswith("%"):
        return None
    m = _NUM_RE.search(value)
    return float(m.group(0)) if m else None


def svg_dimensions(svg: str) -> Tuple[float, float]:
    """Intrinsic size of an SVG document: viewBox first, then width/height."""
    root = ET.fromstring(svg)
    view_box = root.get("viewBox")
    if view_box:
        parts = [float(p) for p in _NUM_RE.findall(view_box)]
        if len(parts) == 4 and parts[2] > 0 and parts[3] > 0:
            return parts[2], parts[3]
    width = _length(root.get("width"))
    height = _length(root.get("height"))
    if width and height:
        return width, height
    raise RenderEngineError("Rendered SVG has no usable size")


def clean_stderr(stderr: str) -> str:
    """Keep the engine's message; drop stack frames and CLI chatter."""
    kept: List[str] = []
    for line in stderr.splitlines():
        if _NOISE_RE.match(line):
            continue
        if not line.strip() and not kept:
            continue
        kept.append(line.rstrip())
    text = "\n".join(kept).strip()
    if text.startswith("Error: "):
        text = text[len("Error: "):]
    return text or "mermaid-cli failed without an error message"


class MermaidCliEngine:
    def __init__(self, cli: Sequence[str], *, timeout: float = 30.0):
        if not cli:
            raise ValueError("mermaid cli command is empty")
        self.cli = list(cli)
        self.timeout = timeout

    async def render(self, source: str) -> VectorOutput:
        with tempfile.TemporaryDirectory(prefix="mermaid-live-") as tmp_dir:
            workdir = Path(tmp_dir)
            input_path = workdir / "input.mmd"
            output_path = workdir / "output.svg"
            config_path = workdir / "config.json"
            input_path.write_text(source, encoding="utf-8")
            config_path.write_text(json.dumps(MERMAID_CONFIG), encoding="utf-8")

            cmd = self.cli + [
                "-i", str(input_path),
                "-o", str(output_path),
                "-b", "transparent",
                "-c", str(config_path),
                "-q",
            ]
            log.debug("mmdc.exec", extra={"cmd": cmd[: len(self.cli)], "source_len": len(source)})

            try:
                proc = await asyncio.create_subprocess_exec(
                    *cmd,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except FileNotFoundError as e:
                raise EngineUnavailableError(
                    f"mermaid-cli not found ({self.cli[0]}); install @mermaid-js/mermaid-cli or set MERMAID_CLI"
                ) from e

            try:
                _, err = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
            except asyncio.TimeoutError:
                proc.kill()
                await proc.wait()
                raise RenderEngineError(f"mermaid-cli timed out after {self.timeout:g}s")

            stderr = err.decode("utf-8", "replace")
            if proc.returncode != 0 or not output_path.exists():
                message = clean_stderr(stderr)
                m = _LINE_RE.search(message)
                log.info(
                    "mmdc.failed",
                    extra={"returncode": proc.returncode, "stderr_preview": preview(message, 200)},
                )
                raise RenderEngineError(
                    message,
                    line=int(m.group(1)) if m else None,
                    stderr=stderr,
                )

            svg = output_path.read_text(encoding="utf-8")

        width, height = svg_dimensions(svg)
        return VectorOutput(svg=svg, width=width, height=height)
