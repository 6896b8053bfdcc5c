from __future__ import annotations

import asyncio
import io
from typing import Dict, List, Optional, Tuple

import pytest
from PIL import Image

from mcp_mermaid_live.models.render import VectorOutput


def make_svg(width: float, height: float) -> str:
    return (
        f'<svg xmlns="http://www.w3.org/2000/svg" width="{width:g}" height="{height:g}" '
        f'viewBox="0 0 {width:g} {height:g}" style="max-width: {width:g}px;">'
        f'<rect x="{width / 4:g}" y="{height / 4:g}" width="{width / 2:g}" height="{height / 2:g}" fill="#ff0000"/>'
        "</svg>"
    )


class FakeEngine:
    """
    Records every call. A source can be held on an Event, made to fail with a
    given exception, or given its own size.
    """

    def __init__(self, width: float = 400.0, height: float = 300.0):
        self.size = (width, height)
        self.calls: List[str] = []
        self.gates: Dict[str, asyncio.Event] = {}
        self.failures: Dict[str, Exception] = {}
        self.sizes: Dict[str, Tuple[float, float]] = {}

    def hold(self, source: str) -> asyncio.Event:
        gate = asyncio.Event()
        self.gates[source] = gate
        return gate

    async def render(self, source: str) -> VectorOutput:
        self.calls.append(source)
        gate = self.gates.get(source)
        if gate is not None:
            await gate.wait()
        if source in self.failures:
            raise self.failures[source]
        w, h = self.sizes.get(source, self.size)
        return VectorOutput(svg=make_svg(w, h), width=w, height=h)


class FakeRasterizer:
    """Draws an opaque red square in the middle of a transparent canvas."""

    def __init__(self):
        self.calls: List[Tuple[int, int]] = []
        self.svgs: List[str] = []
        self.fail: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None

    async def rasterize(self, svg: str, width: int, height: int) -> bytes:
        self.calls.append((width, height))
        self.svgs.append(svg)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail is not None:
            raise self.fail
        im = Image.new("RGBA", (width, height), (0, 0, 0, 0))
        im.paste((255, 0, 0, 255), (width // 4, height // 4, width - width // 4, height - height // 4))
        buf = io.BytesIO()
        im.save(buf, format="PNG")
        return buf.getvalue()


async def wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.001)


def open_png(data: bytes) -> Image.Image:
    im = Image.open(io.BytesIO(data))
    im.load()
    return im


@pytest.fixture()
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture()
def rasterizer() -> FakeRasterizer:
    return FakeRasterizer()
