"""
Debounced, generation-gated rendering.

submit() bumps the generation and (re)arms a single timer on the running
loop. When the timer fires, the engine is called with the source of that
generation; a completion is applied only if its generation is still current.
Superseded engine calls are left to finish and their results are dropped.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional, Protocol, Set

from mcp_mermaid_live.models.diagnostic import Diagnostic
from mcp_mermaid_live.models.render import (
    AttemptStatus,
    RenderAttempt,
    RenderPhase,
    RenderState,
    VectorOutput,
)
from mcp_mermaid_live.utils.logging import source_fields

from .classifier import classify

log = logging.getLogger("mcp.mermaid.engine.renderer")

Listener = Callable[[RenderState], None]
Classifier = Callable[[object, str], Diagnostic]


class RenderEngine(Protocol):
    async def render(self, source: str) -> VectorOutput:
        """Render source to SVG or raise RenderEngineError."""
        ...


class Subscription:
    """Handle returned by RenderPipeline.subscribe()."""

    def __init__(self, owner: "RenderPipeline", listener: Listener):
        self._owner = owner
        self._listener = listener
        self.active = True

    def cancel(self) -> None:
        if self.active:
            self._owner._remove_listener(self._listener)
            self.active = False


class RenderPipeline:
    def __init__(
        self,
        engine: RenderEngine,
        *,
        debounce: float = 0.4,
        classifier: Classifier = classify,
    ):
        self._engine = engine
        self._debounce = max(float(debounce), 0.0)
        self._classify = classifier

        self._generation = 0
        self._phase = RenderPhase.IDLE
        self._attempt: Optional[RenderAttempt] = None
        self._diagnostic: Optional[Diagnostic] = None
        self._output: Optional[VectorOutput] = None

        self._timer: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()
        self._listeners: List[Listener] = []
        self._idle = asyncio.Event()
        self._idle.set()
        self._closed = False

        self.engine_calls = 0

    # ---------- public API ----------

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def last_output(self) -> Optional[VectorOutput]:
        return self._output

    def current_state(self) -> RenderState:
        return RenderState(
            generation=self._generation,
            phase=self._phase,
            source=self._attempt.source if self._attempt else "",
            diagnostic=self._diagnostic,
            output=self._output,
        )

    def submit(self, source: str) -> int:
        """Register a new attempt and return its generation. Never blocks."""
        if self._closed:
            raise RuntimeError("RenderPipeline is closed")
        loop = asyncio.get_running_loop()

        self._generation += 1
        generation = self._generation
        self._attempt = RenderAttempt(generation=generation, source=source)
        self._cancel_timer()

        if not source.strip():
            # nothing to draw: the preview is cleared instead of rendered
            self._attempt.status = AttemptStatus.SUCCEEDED
            self._phase = RenderPhase.IDLE
            self._diagnostic = None
            self._output = None
            self._update_idle()
            log.info("render.cleared", extra={"generation": generation})
            self._notify()
            return generation

        self._phase = RenderPhase.PENDING
        self._idle.clear()
        self._timer = loop.call_later(self._debounce, self._fire, generation)
        log.info("render.submit", extra={"generation": generation, **source_fields(source)})
        self._notify()
        return generation

    def clear_diagnostic(self) -> None:
        if self._diagnostic is None:
            return
        self._diagnostic = None
        log.debug("render.diagnostic_cleared", extra={"generation": self._generation})
        self._notify()

    def subscribe(self, listener: Listener) -> Subscription:
        self._listeners.append(listener)
        return Subscription(self, listener)

    async def settle(self) -> RenderState:
        """Wait until no debounce timer or engine call is outstanding."""
        while not self._idle.is_set():
            await self._idle.wait()
        return self.current_state()

    async def close(self) -> None:
        self._closed = True
        self._cancel_timer()
        tasks = list(self._tasks)
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._listeners.clear()
        self._idle.set()

    # ---------- internals ----------

    def _remove_listener(self, listener: Listener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self, generation: int) -> None:
        self._timer = None
        if generation != self._generation or self._attempt is None:
            self._update_idle()
            return
        task = asyncio.get_running_loop().create_task(self._run(generation, self._attempt.source))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        self._update_idle()

    def _update_idle(self) -> None:
        if self._timer is None and not self._tasks:
            self._idle.set()

    async def _run(self, generation: int, source: str) -> None:
        self.engine_calls += 1
        log.info("render.start", extra={"generation": generation})
        try:
            output = await self._engine.render(source)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._complete_failure(generation, source, e)
            return
        self._complete_success(generation, output)

    def _is_current(self, generation: int, outcome: str) -> bool:
        if generation == self._generation:
            return True
        log.debug(
            "render.dropped",
            extra={"generation": generation, "current": self._generation, "outcome": outcome},
        )
        return False

    def _complete_success(self, generation: int, output: VectorOutput) -> None:
        if not self._is_current(generation, "succeeded"):
            return
        self._output = output.with_generation(generation)
        self._phase = RenderPhase.SUCCEEDED
        self._diagnostic = None
        if self._attempt is not None:
            self._attempt.status = AttemptStatus.SUCCEEDED
        log.info(
            "render.succeeded",
            extra={"generation": generation, "width": output.width, "height": output.height},
        )
        self._notify()

    def _complete_failure(self, generation: int, source: str, error: BaseException) -> None:
        if not self._is_current(generation, "failed"):
            return
        diagnostic = self._classify(error, source)
        self._phase = RenderPhase.FAILED
        self._diagnostic = diagnostic
        if self._attempt is not None:
            self._attempt.status = AttemptStatus.FAILED
        log.info(
            "render.failed",
            extra={
                "generation": generation,
                "kind": diagnostic.kind.value,
                "line": diagnostic.line,
                "auto_fixable": diagnostic.auto_fixable,
            },
        )
        self._notify()

    def _notify(self) -> None:
        state = self.current_state()
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                log.exception("render.listener_failed", extra={"generation": state.generation})
