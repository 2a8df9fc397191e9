from __future__ import annotations

import asyncio

import pytest
from conftest import FakeSampler, RecordingSink, ScriptedMatcher, make_result

from tracker_agent.core.config import Config, FreeloConfig
from tracker_agent.core.engine import EngineState, TrackingEngine
from tracker_agent.core.errors import (
    AlreadyRunningError,
    ConfigurationError,
    ItemLoadError,
    MatcherError,
    NotRunningError,
)
from tracker_agent.core.session import GENERAL_WORK_KEY
from tracker_agent.core.stabilizer import Action


def _engine(config, sink, backend, matcher=None) -> TrackingEngine:
    return TrackingEngine(
        config=config,
        event_sink=sink,
        sampler=FakeSampler(),
        matcher=matcher or ScriptedMatcher(),
        backend=backend,
    )


def test_first_confident_match_starts_item_session(config, sink, backend) -> None:
    engine = _engine(config, sink, backend)

    async def scenario():
        return await engine.apply(make_result("Code", "editing", item_id="42", confidence=0.95))

    decision = asyncio.run(scenario())

    assert decision.action is Action.START
    assert backend.calls == [("start", "42", "editing")]
    session = engine.current_session
    assert session.tracking_key == "42"
    assert session.external_session_id == "uuid-1"
    assert session.instability_counter == 0


def test_low_confidence_starts_general_work(config, sink, backend) -> None:
    engine = _engine(config, sink, backend)

    asyncio.run(engine.apply(make_result(item_id="42", confidence=0.8)))

    assert backend.calls == [("start", None, "editing")]
    assert engine.current_session.tracking_key == GENERAL_WORK_KEY


def test_identical_results_make_no_backend_calls(config, sink, backend) -> None:
    engine = _engine(config, sink, backend)
    result = make_result(item_id="42", confidence=0.95)

    async def scenario():
        for _ in range(5):
            await engine.apply(result)

    asyncio.run(scenario())

    assert backend.ops() == ["start"]
    assert engine.current_session.instability_counter == 0


def test_context_change_needs_two_ticks_to_restart(config, sink, backend) -> None:
    engine = _engine(config, sink, backend)

    async def scenario():
        await engine.apply(make_result("Code", "editing"))
        first = await engine.apply(make_result("Browser", "reading"))
        assert first.action is Action.CONTINUE
        assert engine.current_session.instability_counter == 1
        assert backend.ops() == ["start"]

        second = await engine.apply(make_result("Browser", "reading"))
        assert second.action is Action.RESTART

    asyncio.run(scenario())

    assert backend.calls == [
        ("start", None, "editing"),
        ("stop", "uuid-1"),
        ("start", None, "reading"),
    ]
    session = engine.current_session
    assert session.external_session_id == "uuid-2"
    assert session.last_application == "Browser"
    assert session.instability_counter == 0


def test_flicker_back_resets_counter(config, sink, backend) -> None:
    engine = _engine(config, sink, backend)

    async def scenario():
        await engine.apply(make_result("Code", "editing"))
        await engine.apply(make_result("Browser", "reading"))
        await engine.apply(make_result("Code", "editing"))
        await engine.apply(make_result("Browser", "reading"))

    asyncio.run(scenario())

    assert backend.ops() == ["start"]
    assert engine.current_session.instability_counter == 1


def test_new_item_is_held_then_restarted(config, sink, backend) -> None:
    engine = _engine(config, sink, backend)
    matched = make_result("Code", "editing", item_id="42", confidence=0.95)

    async def scenario():
        await engine.apply(make_result("Code", "editing"))
        held = await engine.apply(matched)
        assert held.action is Action.HOLD
        assert engine.current_session.tracking_key == GENERAL_WORK_KEY
        await engine.apply(matched)

    asyncio.run(scenario())

    assert backend.calls[-1] == ("start", "42", "editing")
    assert engine.current_session.tracking_key == "42"


def test_failed_stop_during_restart_leaves_engine_idle(config, sink, backend) -> None:
    engine = _engine(config, sink, backend)

    async def scenario():
        await engine.apply(make_result("Code", "editing"))
        backend.fail_stop = True
        await engine.apply(make_result("Browser", "reading"))
        await engine.apply(make_result("Browser", "reading"))

    asyncio.run(scenario())

    assert backend.ops() == ["start", "stop"]
    assert engine.current_session is None
    assert any("Failed to stop tracking" in msg for msg in sink.messages("error"))


def test_idle_engine_starts_again_on_next_result(config, sink, backend) -> None:
    engine = _engine(config, sink, backend)

    async def scenario():
        backend.fail_start = True
        await engine.apply(make_result())
        assert engine.current_session is None

        backend.fail_start = False
        decision = await engine.apply(make_result())
        assert decision.action is Action.START

    asyncio.run(scenario())

    assert backend.ops() == ["start", "start"]
    assert engine.current_session.external_session_id == "uuid-1"
    assert any("Failed to start tracking" in msg for msg in sink.messages("error"))


def test_threshold_falls_back_to_matcher_default(tmp_path, sink, backend) -> None:
    config = Config(config_dir=tmp_path, log_dir=tmp_path)
    matcher = ScriptedMatcher()
    matcher.default_acceptance_threshold = 0.3

    engine = _engine(config, sink, backend, matcher)

    assert engine.acceptance_threshold == 0.3


def test_start_and_stop_run_the_loop(config, sink, backend) -> None:
    matcher = ScriptedMatcher(make_result("Code", "editing", item_id="42", confidence=0.95))
    engine = _engine(config, sink, backend, matcher)

    async def scenario():
        await engine.start()
        assert engine.state is EngineState.RUNNING
        for _ in range(50):
            if engine.current_session is not None:
                break
            await asyncio.sleep(0.01)
        await engine.stop()

    asyncio.run(scenario())

    assert engine.state is EngineState.STOPPED
    assert engine.tick_count >= 1
    assert backend.calls[0] == ("list",)
    assert backend.ops() == ["start", "stop"]
    assert engine.current_session is None
    assert sink.updates[0] == ("Code", "editing", "Fix login bug")
    assert matcher.previous_labels[0] is None


def test_start_twice_raises(config, sink, backend) -> None:
    engine = _engine(config, sink, backend)

    async def scenario():
        await engine.start()
        try:
            with pytest.raises(AlreadyRunningError):
                await engine.start()
        finally:
            await engine.stop()

    asyncio.run(scenario())


def test_stop_when_stopped_raises_without_backend_call(config, sink, backend) -> None:
    engine = _engine(config, sink, backend)

    with pytest.raises(NotRunningError):
        asyncio.run(engine.stop())

    assert backend.calls == []


def test_item_load_failure_leaves_engine_stopped(config, sink, backend) -> None:
    backend.fail_list = True
    engine = _engine(config, sink, backend)

    with pytest.raises(ItemLoadError):
        asyncio.run(engine.start())

    assert not engine.is_running
    assert any("Failed to load tasks" in msg for msg in sink.messages("error"))


def test_missing_configuration_is_rejected(sink, backend) -> None:
    engine = TrackingEngine(event_sink=sink, backend=backend)

    with pytest.raises(ConfigurationError):
        asyncio.run(engine.start())

    assert not engine.is_running


def test_missing_freelo_credentials_are_rejected(tmp_path, sink) -> None:
    config = Config(config_dir=tmp_path, log_dir=tmp_path, freelo=FreeloConfig())
    engine = TrackingEngine(config=config, event_sink=sink)

    with pytest.raises(ConfigurationError):
        asyncio.run(engine.start())

    assert not engine.is_running


def test_matcher_failure_keeps_session(config, sink, backend) -> None:
    matcher = ScriptedMatcher(
        make_result("Code", "editing"),
        MatcherError("AI JSON parse error"),
    )
    engine = _engine(config, sink, backend, matcher)

    async def scenario():
        await engine._tick()
        await engine._tick()

    asyncio.run(scenario())

    assert engine.current_session is not None
    assert backend.ops() == ["start"]
    assert any("Context analysis failed" in msg for msg in sink.messages("error"))


def test_previous_application_is_passed_to_matcher(config, sink, backend) -> None:
    matcher = ScriptedMatcher(make_result("Code", "editing"))
    engine = _engine(config, sink, backend, matcher)

    async def scenario():
        await engine.apply(make_result("Code", "editing"))
        await engine._tick()

    asyncio.run(scenario())

    assert matcher.previous_labels == ["Code"]


def test_configure_applies_on_next_start(config, sink, backend) -> None:
    engine = _engine(config, sink, backend)
    updated = config.model_copy(
        update={"matching": config.matching.model_copy(update={"acceptance_threshold": 0.5})}
    )

    async def scenario():
        await engine.configure(updated)
        await engine.start()
        await engine.stop()

    asyncio.run(scenario())

    assert engine.config is updated
    assert engine.acceptance_threshold == 0.5
    assert any("Settings saved" in msg for msg in sink.messages("success"))


def test_status_reports_session(config, sink, backend) -> None:
    engine = _engine(config, sink, backend)

    asyncio.run(engine.apply(make_result(item_id="42", confidence=0.95)))
    status = engine.get_status()

    assert status["state"] == "stopped"
    assert status["session"]["tracking_key"] == "42"
    assert status["session"]["external_session_id"] == "uuid-1"


def test_submit_from_another_thread(config, sink, backend) -> None:
    engine = _engine(config, sink, backend)

    async def scenario():
        loop = asyncio.get_running_loop()
        future = await asyncio.to_thread(
            lambda: engine.submit(engine.apply(make_result()), loop)
        )
        return await asyncio.wrap_future(future)

    decision = asyncio.run(scenario())

    assert decision.action is Action.START
    assert backend.ops() == ["start"]


class GatedMatcher:
    """Blocks inside classify() until ``gate`` is set."""

    name = "gated"
    default_acceptance_threshold = 0.8

    def __init__(self, result) -> None:
        self.result = result
        self.calls = 0
        self.entered: asyncio.Event | None = None
        self.gate: asyncio.Event | None = None

    async def classify(self, artifact, items, previous_label=None):
        self.calls += 1
        self.entered.set()
        await self.gate.wait()
        return self.result


class SleepingMatcher:
    name = "sleepy"
    default_acceptance_threshold = 0.8

    async def classify(self, artifact, items, previous_label=None):
        await asyncio.sleep(10)
        return make_result()


class FlakyDisplaySink(RecordingSink):
    """Fails the first tracking update, as a broken display would."""

    def __init__(self) -> None:
        super().__init__()
        self.failed = False

    def tracking_update(self, application, activity, item, timestamp) -> None:
        if not self.failed:
            self.failed = True
            raise RuntimeError("display closed")
        super().tracking_update(application, activity, item, timestamp)


async def _wait_for(predicate, seconds: float = 5.0) -> None:
    for _ in range(int(seconds / 0.01)):
        if predicate():
            return
        await asyncio.sleep(0.01)


def test_start_is_rejected_while_stop_waits_for_tick(config, sink, backend) -> None:
    matcher = GatedMatcher(make_result("Code", "editing"))
    engine = _engine(config, sink, backend, matcher)

    async def scenario():
        matcher.entered = asyncio.Event()
        matcher.gate = asyncio.Event()
        await engine.start()
        await matcher.entered.wait()

        stopper = asyncio.create_task(engine.stop())
        while engine.is_running:
            await asyncio.sleep(0)

        with pytest.raises(AlreadyRunningError):
            await engine.start()

        matcher.gate.set()
        await asyncio.wait_for(stopper, timeout=5)

        assert matcher.calls == 1
        assert backend.ops() == ["start", "stop"]
        assert engine.current_session is None

        await engine.start()
        assert engine.is_running
        await engine.stop()

    asyncio.run(scenario())

    assert not engine.is_running


def test_stop_during_item_load_cancels_start(config, sink, backend) -> None:
    matcher = ScriptedMatcher(make_result())
    engine = _engine(config, sink, backend, matcher)

    async def scenario():
        backend.list_gate = asyncio.Event()
        starter = asyncio.create_task(engine.start())
        while not backend.calls:
            await asyncio.sleep(0)

        await engine.stop()
        backend.list_gate.set()
        await asyncio.wait_for(starter, timeout=5)

    asyncio.run(scenario())

    assert not engine.is_running
    assert matcher.previous_labels == []
    assert backend.ops() == []
    assert any("start cancelled" in msg for msg in sink.messages("warning"))
    assert not any(msg.startswith("Tracking started") for msg in sink.messages("info"))


def test_stop_clears_session_when_backend_stop_fails(config, sink, backend) -> None:
    engine = _engine(config, sink, backend, ScriptedMatcher(make_result()))

    async def scenario():
        await engine.start()
        await _wait_for(lambda: engine.current_session is not None)
        backend.fail_stop = True
        await engine.stop()

    asyncio.run(scenario())

    assert backend.ops() == ["start", "stop"]
    assert engine.current_session is None
    assert any("Failed to stop tracking" in msg for msg in sink.messages("error"))
    assert "Freelo tracking stopped" not in sink.messages("success")


def test_hung_classification_is_skipped(config, sink, backend) -> None:
    quick = config.model_copy(update={"tick_timeout_seconds": 0.05})
    engine = _engine(quick, sink, backend, SleepingMatcher())

    async def scenario():
        await engine.apply(make_result())
        await engine._tick()

    asyncio.run(scenario())

    assert any("timed out" in msg for msg in sink.messages("error"))
    assert backend.ops() == ["start"]
    session = engine.current_session
    assert session.external_session_id == "uuid-1"
    assert session.instability_counter == 0


def test_loop_keeps_ticking_after_failures(config, backend) -> None:
    sink = FlakyDisplaySink()
    matcher = ScriptedMatcher(RuntimeError("screen locked"), make_result("Code", "editing"))
    engine = _engine(config, sink, backend, matcher)

    async def scenario():
        await engine.start()
        await _wait_for(lambda: engine.current_session is not None, seconds=6)
        await engine.stop()

    asyncio.run(scenario())

    assert engine.tick_count >= 3
    errors = sink.messages("error")
    assert any("Context analysis failed: screen locked" in msg for msg in errors)
    assert any("Tick failed: display closed" in msg for msg in errors)
    assert backend.ops() == ["start", "stop"]
