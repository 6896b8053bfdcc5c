from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class DiagnosticKind(str, Enum):
    UNKNOWN_DIAGRAM_TYPE = "unknown_diagram_type"
    UNTERMINATED_DELIMITER = "unterminated_delimiter"
    ARROW_SYNTAX = "arrow_syntax"
    INVALID_TRAILING_SYNTAX = "invalid_trailing_syntax"
    UNQUOTED_SPECIAL_CHARS = "unquoted_special_chars"
    UNCLOSED_SUBGRAPH = "unclosed_subgraph"
    LINK_STYLE_COLOR = "link_style_color"
    UNDECLARED_REFERENCE = "undeclared_reference"
    UNRECOGNIZED = "unrecognized"


class Diagnostic(BaseModel):
    """Structured description of one failed render."""

    model_config = ConfigDict(frozen=True)

    kind: DiagnosticKind
    raw_message: str
    line: Optional[int] = Field(default=None, ge=1)
    column: Optional[int] = Field(default=None, ge=1)
    title: str
    human_message: str
    suggestion: Optional[str] = None
    auto_fixable: bool = False
    fix_rules: List[str] = Field(default_factory=list)
    excerpt: Optional[str] = None

    @property
    def recognized(self) -> bool:
        return self.kind is not DiagnosticKind.UNRECOGNIZED
