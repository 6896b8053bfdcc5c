import asyncio

from conftest import FakeEngine, wait_until

from mcp_mermaid_live.engine.renderer import RenderPipeline
from mcp_mermaid_live.errors import RenderEngineError
from mcp_mermaid_live.models.diagnostic import DiagnosticKind
from mcp_mermaid_live.models.render import RenderPhase

DEBOUNCE = 0.02


def test_successful_render_has_no_diagnostic():
    async def scenario():
        engine = FakeEngine()
        pipeline = RenderPipeline(engine, debounce=DEBOUNCE)
        generation = pipeline.submit("flowchart LR\nA-->B")
        assert pipeline.current_state().phase is RenderPhase.PENDING
        state = await pipeline.settle()
        await pipeline.close()
        return generation, state, engine

    generation, state, engine = asyncio.run(scenario())
    assert generation == 1
    assert state.phase is RenderPhase.SUCCEEDED
    assert state.diagnostic is None
    assert state.output is not None
    assert (state.output.width, state.output.height) == (400.0, 300.0)
    assert state.output.generation == 1
    assert state.exportable
    assert engine.calls == ["flowchart LR\nA-->B"]


def test_burst_of_submits_renders_once_with_the_last_source():
    async def scenario():
        engine = FakeEngine()
        pipeline = RenderPipeline(engine, debounce=DEBOUNCE)
        generations = [pipeline.submit(f"graph TD\nS{i}-->X") for i in range(1, 6)]
        state = await pipeline.settle()
        await pipeline.close()
        return generations, state, engine, pipeline

    generations, state, engine, pipeline = asyncio.run(scenario())
    assert generations == [1, 2, 3, 4, 5]
    assert pipeline.engine_calls == 1
    assert engine.calls == ["graph TD\nS5-->X"]
    assert state.generation == 5
    assert state.source == "graph TD\nS5-->X"
    assert state.phase is RenderPhase.SUCCEEDED


def test_late_completion_of_an_older_attempt_is_dropped():
    async def scenario():
        engine = FakeEngine()
        engine.sizes["first"] = (10.0, 10.0)
        engine.sizes["second"] = (20.0, 20.0)
        gate = engine.hold("first")
        pipeline = RenderPipeline(engine, debounce=0)

        pipeline.submit("first")
        await wait_until(lambda: engine.calls == ["first"])
        pipeline.submit("second")
        await wait_until(lambda: pipeline.current_state().phase is RenderPhase.SUCCEEDED)
        after_second = pipeline.current_state()

        gate.set()
        final = await pipeline.settle()
        await pipeline.close()
        return after_second, final, pipeline

    after_second, final, pipeline = asyncio.run(scenario())
    assert after_second.output.width == 20.0
    assert final.generation == 2
    assert final.output.width == 20.0
    assert final.output.generation == 2
    assert final.source == "second"
    assert pipeline.engine_calls == 2


def test_late_failure_of_an_older_attempt_is_dropped():
    async def scenario():
        engine = FakeEngine()
        engine.failures["bad"] = RenderEngineError("Parse error on line 2")
        gate = engine.hold("bad")
        pipeline = RenderPipeline(engine, debounce=0)

        pipeline.submit("bad")
        await wait_until(lambda: engine.calls == ["bad"])
        pipeline.submit("flowchart LR\nA-->B")
        await wait_until(lambda: pipeline.current_state().phase is RenderPhase.SUCCEEDED)
        gate.set()
        final = await pipeline.settle()
        await pipeline.close()
        return final

    final = asyncio.run(scenario())
    assert final.phase is RenderPhase.SUCCEEDED
    assert final.diagnostic is None


def test_failure_keeps_the_last_good_output():
    bad = "flowchart LR\nA[Open-->B"

    async def scenario():
        engine = FakeEngine()
        engine.failures[bad] = RenderEngineError(
            "Parse error on line 2:\nExpecting 'SQE', 'PE', got 'EOF'", line=2
        )
        pipeline = RenderPipeline(engine, debounce=DEBOUNCE)
        pipeline.submit("flowchart LR\nA-->B")
        good = await pipeline.settle()
        pipeline.submit(bad)
        failed = await pipeline.settle()
        await pipeline.close()
        return good, failed

    good, failed = asyncio.run(scenario())
    assert failed.phase is RenderPhase.FAILED
    assert failed.output is good.output
    assert failed.output.generation == 1
    assert not failed.exportable
    assert failed.diagnostic.kind is DiagnosticKind.UNTERMINATED_DELIMITER
    assert failed.diagnostic.auto_fixable
    assert failed.diagnostic.line == 2


def test_unexpected_engine_exceptions_are_classified():
    async def scenario():
        engine = FakeEngine()
        engine.failures["x"] = RuntimeError("engine crashed")
        pipeline = RenderPipeline(engine, debounce=0)
        pipeline.submit("x")
        state = await pipeline.settle()
        await pipeline.close()
        return state

    state = asyncio.run(scenario())
    assert state.phase is RenderPhase.FAILED
    assert state.diagnostic.kind is DiagnosticKind.UNRECOGNIZED
    assert state.diagnostic.raw_message == "engine crashed"
    assert state.output is None


def test_clear_diagnostic_keeps_phase_and_output():
    async def scenario():
        engine = FakeEngine()
        engine.failures["broken"] = RenderEngineError("boom")
        pipeline = RenderPipeline(engine, debounce=0)
        pipeline.submit("flowchart LR\nA-->B")
        await pipeline.settle()
        pipeline.submit("broken")
        before = await pipeline.settle()
        pipeline.clear_diagnostic()
        after = pipeline.current_state()
        await pipeline.close()
        return before, after

    before, after = asyncio.run(scenario())
    assert before.diagnostic is not None
    assert after.diagnostic is None
    assert after.phase is RenderPhase.FAILED
    assert after.output is before.output


def test_blank_source_clears_without_calling_the_engine():
    async def scenario():
        engine = FakeEngine()
        pipeline = RenderPipeline(engine, debounce=0)
        pipeline.submit("flowchart LR\nA-->B")
        await pipeline.settle()
        generation = pipeline.submit("   \n")
        state = await pipeline.settle()
        await pipeline.close()
        return generation, state, pipeline

    generation, state, pipeline = asyncio.run(scenario())
    assert generation == 2
    assert state.phase is RenderPhase.IDLE
    assert state.output is None
    assert state.diagnostic is None
    assert pipeline.engine_calls == 1


def test_subscribers_see_transitions_until_cancelled():
    async def scenario():
        pipeline = RenderPipeline(FakeEngine(), debounce=0)
        seen = []

        def broken_listener(state):
            raise RuntimeError("listener bug")

        pipeline.subscribe(broken_listener)
        sub = pipeline.subscribe(lambda s: seen.append((s.generation, s.phase)))
        pipeline.submit("flowchart LR\nA-->B")
        await pipeline.settle()
        sub.cancel()
        sub.cancel()
        pipeline.submit("flowchart LR\nB-->C")
        await pipeline.settle()
        await pipeline.close()
        return seen, sub

    seen, sub = asyncio.run(scenario())
    assert seen == [(1, RenderPhase.PENDING), (1, RenderPhase.SUCCEEDED)]
    assert sub.active is False


def test_initial_state_is_idle():
    async def scenario():
        pipeline = RenderPipeline(FakeEngine())
        state = await pipeline.settle()
        await pipeline.close()
        return state

    state = asyncio.run(scenario())
    assert state.generation == 0
    assert state.phase is RenderPhase.IDLE
    assert state.output is None
    assert not state.exportable
    assert state.to_dict() == {"generation": 0, "phase": "idle", "diagnostic": None, "output": None}


def test_close_cancels_pending_work():
    async def scenario():
        engine = FakeEngine()
        pipeline = RenderPipeline(engine, debounce=10)
        pipeline.submit("flowchart LR\nA-->B")
        await pipeline.close()
        await asyncio.sleep(0)
        return engine, pipeline

    engine, pipeline = asyncio.run(scenario())
    assert engine.calls == []
    assert pipeline.engine_calls == 0
