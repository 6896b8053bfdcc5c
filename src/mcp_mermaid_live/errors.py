"""Exception hierarchy for the mermaid-live server and its collaborators."""

from __future__ import annotations

from typing import Any, Dict, Optional


class MermaidLiveError(Exception):
    """Base exception for mermaid-live errors."""

    code = "E_INTERNAL"

    def __init__(self, message: str, data: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.data = data or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the error payload returned by tools."""
        out: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data:
            out["data"] = self.data
        return out


class RenderEngineError(MermaidLiveError):
    """The rendering engine rejected the diagram source.

    ``line`` and ``column`` are 1-based when the engine reported them.
    """

    code = "E_RENDER"

    def __init__(
        self,
        message: str,
        *,
        line: Optional[int] = None,
        column: Optional[int] = None,
        stderr: Optional[str] = None,
    ):
        super().__init__(message, data={k: v for k, v in {"line": line, "column": column}.items() if v is not None})
        self.line = line
        self.column = column
        self.stderr = stderr


class EngineUnavailableError(RenderEngineError):
    """The mermaid CLI could not be started."""

    code = "E_ENGINE_UNAVAILABLE"


class RasterizationError(MermaidLiveError):
    """The rasterizer could not produce a pixel buffer."""

    code = "E_RASTER"


class InvalidRequestError(MermaidLiveError):
    """Error for tool parameter validation failures."""

    code = "E_INVALID_REQUEST"


def error_envelope(exc: BaseException, default_message: str = "Internal server error") -> Dict[str, Any]:
    """Convert any exception to the ``{"error": {...}}`` tool envelope.

    Args:
        exc: Exception to convert
        default_message: Message used for unexpected exception types

    Returns:
        Error envelope dictionary
    """
    if isinstance(exc, MermaidLiveError):
        return {"error": exc.to_dict()}
    if isinstance(exc, (ValueError, TypeError)):
        return {"error": InvalidRequestError(str(exc)).to_dict()}
    return {"error": MermaidLiveError(default_message, data={"original_error": str(exc)}).to_dict()}
