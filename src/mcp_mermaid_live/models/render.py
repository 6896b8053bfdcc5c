from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .diagnostic import Diagnostic


class RenderPhase(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class AttemptStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class VectorOutput:
    svg: str
    width: float
    height: float
    generation: int = 0

    def with_generation(self, generation: int) -> "VectorOutput":
        return VectorOutput(svg=self.svg, width=self.width, height=self.height, generation=generation)


@dataclass
class RenderAttempt:
    generation: int
    source: str
    status: AttemptStatus = AttemptStatus.PENDING


@dataclass(frozen=True)
class RenderState:
    generation: int
    phase: RenderPhase
    source: str = ""
    diagnostic: Optional[Diagnostic] = None
    output: Optional[VectorOutput] = None

    @property
    def exportable(self) -> bool:
        return (
            self.phase is RenderPhase.SUCCEEDED
            and self.output is not None
            and self.output.generation == self.generation
        )

    def to_dict(self, *, include_svg: bool = False) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "generation": self.generation,
            "phase": self.phase.value,
            "diagnostic": self.diagnostic.model_dump(mode="json") if self.diagnostic else None,
            "output": None,
        }
        if self.output is not None:
            out["output"] = {
                "width": self.output.width,
                "height": self.output.height,
                "generation": self.output.generation,
            }
            if include_svg:
                out["output"]["svg"] = self.output.svg
        return out
