"""Live Mermaid rendering, auto-fix and PNG export over MCP."""

__version__ = "0.1.0"
