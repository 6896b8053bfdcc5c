from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ExportConfig(BaseModel):
    scale: float = Field(default=3.0, gt=0, allow_inf_nan=False)
    transparent_background: bool = False


class ExportErrorKind(str, Enum):
    NOT_READY = "not_ready"
    ALREADY_IN_PROGRESS = "already_in_progress"
    RASTERIZATION_FAILED = "rasterization_failed"


@dataclass(frozen=True)
class ExportError:
    kind: ExportErrorKind
    message: str
    cause: Optional[BaseException] = None


@dataclass(frozen=True)
class ExportArtifact:
    png: bytes
    width: int
    height: int
    mime_type: str = "image/png"


@dataclass(frozen=True)
class ExportResult:
    artifact: Optional[ExportArtifact] = None
    error: Optional[ExportError] = None

    @property
    def ok(self) -> bool:
        return self.artifact is not None

    @classmethod
    def success(cls, artifact: ExportArtifact) -> "ExportResult":
        return cls(artifact=artifact)

    @classmethod
    def failure(
        cls,
        kind: ExportErrorKind,
        message: str,
        cause: Optional[BaseException] = None,
    ) -> "ExportResult":
        return cls(error=ExportError(kind=kind, message=message, cause=cause))
