from __future__ import annotations
import logging
from mcp.server.fastmcp import FastMCP
from .tools import register as register_tools

logger = logging.getLogger("mcp.mermaid.server")

mcp = FastMCP("mermaid-live")

# one live diagram per server process
session = register_tools(mcp)
