from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field

class SubmitRequest(BaseModel):
    source: str

class SubmitResponse(BaseModel):
    generation: int
    phase: str

class FixRequest(BaseModel):
    source: str
    apply: bool = False   # submit the fixed code and clear the diagnostic

class FixResponse(BaseModel):
    code: str
    has_changes: bool
    fixes: List[Dict[str, Any]] = Field(default_factory=list)
    generation: Optional[int] = None  # set when the fix was applied

class AnalyzeResponse(BaseModel):
    issue_count: int
    issues: List[Dict[str, Any]] = Field(default_factory=list)

class ExportRequest(BaseModel):
    scale: Optional[float] = Field(default=None, gt=0, allow_inf_nan=False)
    transparent: Optional[bool] = None
    output_dir: Optional[str] = None
    remember: bool = False        # persist scale/transparent as the new defaults

class ExportResponse(BaseModel):
    mime_type: str = "image/png"
    width: int
    height: int
    scale: float
    transparent: bool
    size_bytes: int
    path: Optional[str] = None         # when written to disk
    png_base64: Optional[str] = None   # when returned inline

class StylesRequest(BaseModel):
    source: str
    action: Literal["analyze", "fix", "high_contrast", "reset"] = "analyze"
    strategy: Literal["smart", "simple"] = "smart"
    apply: bool = False

class StylesResponse(BaseModel):
    action: str
    issues: List[Dict[str, Any]] = Field(default_factory=list)
    special_shapes: List[str] = Field(default_factory=list)
    code: Optional[str] = None          # transforms only
    has_changes: bool = False
    fixes: List[Dict[str, Any]] = Field(default_factory=list)
    generation: Optional[int] = None
