from __future__ import annotations
import logging
import os
import sys

from .utils.logging import setup_logging

TRANSPORTS = ("stdio", "sse", "streamable-http")

USAGE = """\
mcp-mermaid-live: live Mermaid rendering, error diagnosis, auto-fix and PNG export over MCP.

Environment:
  MCP_TRANSPORT           stdio | sse | streamable-http (default streamable-http)
  MCP_HOST, MCP_PORT      bind address for the HTTP transports (default 0.0.0.0:8002)
  MERMAID_CLI             mermaid-cli command line (default: mmdc, else npx)
  MERMAID_DEBOUNCE_MS     quiet period before a submitted source is rendered (default 400)
  MERMAID_EXPORT_DIR      write exported PNGs here instead of returning base64
  MERMAID_PREFS_PATH      JSON file holding the remembered export settings
"""


def main() -> None:
    """
    Run the server with the SDK runner.

      MCP_TRANSPORT=stdio           python -m mcp_mermaid_live
      MCP_TRANSPORT=streamable-http python -m mcp_mermaid_live
    """
    setup_logging()
    log = logging.getLogger("mcp.mermaid.main")

    if any(a in ("-h", "--help") for a in sys.argv[1:]):
        sys.stderr.write(USAGE)
        sys.stderr.flush()
        return

    transport = os.getenv("MCP_TRANSPORT", "streamable-http").strip().lower()
    if transport not in TRANSPORTS:
        log.error("server.bad_transport", extra={"transport": transport, "allowed": list(TRANSPORTS)})
        sys.exit(2)

    # importing the server builds the session (reads MERMAID_* settings)
    from .server import mcp, session

    path = None
    if transport != "stdio":
        mcp.settings.host = os.getenv("MCP_HOST", "0.0.0.0")
        mcp.settings.port = int(os.getenv("MCP_PORT", "8002"))
        if transport == "streamable-http":
            path = mcp.settings.streamable_http_path = os.getenv("MCP_MOUNT_PATH", "/mcp")
            if os.getenv("MCP_STATELESS_JSON", "").lower() in {"1", "true", "yes"}:
                mcp.settings.stateless_http = True
                mcp.settings.json_response = True
        else:
            path = mcp.settings.sse_path = os.getenv("MCP_SSE_PATH", "/sse")

    log.info(
        "server.start",
        extra={
            "transport": transport,
            "host": mcp.settings.host,
            "port": mcp.settings.port,
            "path": path,
            "mermaid_cli": session.settings.mermaid_cli,
        },
    )
    mcp.run(transport=transport)

if __name__ == "__main__":
    main()
