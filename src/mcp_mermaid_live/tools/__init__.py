from __future__ import annotations

from typing import Optional

from mcp.server.fastmcp import FastMCP

from ..session import DiagramSession
from .mermaid_live import register_mermaid_live

def register(mcp: FastMCP, session: Optional[DiagramSession] = None) -> DiagramSession:
    return register_mermaid_live(mcp, session)
