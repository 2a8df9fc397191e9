from __future__ import annotations

import asyncio
from collections import deque
from datetime import datetime
from pathlib import Path

import pytest
from PIL import Image

from tracker_agent.backend.models import WorkItem
from tracker_agent.core.config import Config, FreeloConfig
from tracker_agent.core.errors import BackendError, MatcherError
from tracker_agent.matching.base import MatchResult
from tracker_agent.trackers.screen_sampler import CapturedScreen


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch, tmp_path: Path) -> None:
    for name in (
        "ANTHROPIC_API_KEY",
        "TRACKER_AGENT_CLAUDE_API_KEY",
        "TRACKER_AGENT_POLL_INTERVAL_SECONDS",
        "TRACKER_AGENT_FREELO__EMAIL",
        "TRACKER_AGENT_FREELO__API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


class FakeBackend:
    """Records every call; failures can be scripted per operation."""

    def __init__(self, items: list[WorkItem] | None = None) -> None:
        self.items = items or []
        self.calls: list[tuple] = []
        self.fail_list = False
        self.fail_start = False
        self.fail_stop = False
        self.list_gate: asyncio.Event | None = None
        self._next_id = 0

    async def list_items(self) -> list[WorkItem]:
        self.calls.append(("list",))
        if self.list_gate is not None:
            await self.list_gate.wait()
        if self.fail_list:
            raise BackendError("Freelo API error 401 on /all-tasks: unauthorized", status=401)
        return list(self.items)

    async def start_session(self, item_id: str | None, note: str) -> str:
        self.calls.append(("start", item_id, note))
        if self.fail_start:
            raise BackendError("Freelo API error 500 on /timetracking/start", status=500)
        self._next_id += 1
        return f"uuid-{self._next_id}"

    async def stop_session(self, session_id: str) -> None:
        self.calls.append(("stop", session_id))
        if self.fail_stop:
            raise BackendError("Freelo API error 500 on /timetracking/stop", status=500)

    def ops(self) -> list[str]:
        return [call[0] for call in self.calls if call[0] != "list"]


class FakeSampler:
    def __init__(self) -> None:
        self.captures = 0

    async def capture(self) -> CapturedScreen:
        self.captures += 1
        image = Image.new("RGB", (8, 8), "white")
        return CapturedScreen(
            timestamp=datetime.now(),
            image=image,
            jpeg_bytes=b"\xff\xd8\xff",
            width=8,
            height=8,
        )


class ScriptedMatcher:
    """Returns queued results in order, repeating the last one when drained."""

    name = "scripted"
    default_acceptance_threshold = 0.8

    def __init__(self, *results: MatchResult | Exception) -> None:
        self._queue = deque(results)
        self._last: MatchResult | Exception | None = None
        self.previous_labels: list[str | None] = []

    def push(self, result: MatchResult | Exception) -> None:
        self._queue.append(result)

    async def classify(self, artifact, items, previous_label=None) -> MatchResult:
        self.previous_labels.append(previous_label)
        if self._queue:
            self._last = self._queue.popleft()
        if self._last is None:
            raise MatcherError("no scripted result")
        if isinstance(self._last, Exception):
            raise self._last
        return self._last


class RecordingSink:
    def __init__(self) -> None:
        self.events: list[tuple[str, str]] = []
        self.updates: list[tuple[str, str, str | None]] = []

    def log_event(self, level, message: str) -> None:
        self.events.append((level.value, message))

    def tracking_update(self, application, activity, item, timestamp) -> None:
        self.updates.append((application, activity, item))

    def messages(self, level: str | None = None) -> list[str]:
        return [msg for lvl, msg in self.events if level is None or lvl == level]


def make_result(
    context: str = "Code",
    activity: str = "editing",
    item_id: str | None = None,
    confidence: float = 0.0,
) -> MatchResult:
    return MatchResult(
        candidate_item_id=item_id,
        confidence=confidence,
        detected_context=context,
        activity_description=activity,
    )


@pytest.fixture
def work_items() -> list[WorkItem]:
    return [
        WorkItem(id=42, name="Fix login bug", project_id=1, project_name="Webshop"),
        WorkItem(id=43, name="Write invoice export", project_id=1, project_name="Webshop"),
        WorkItem(id=77, name="Team meeting notes", project_id=2, project_name="Internal"),
    ]


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(
        config_dir=tmp_path / "config",
        log_dir=tmp_path / "logs",
        debug_dir=tmp_path / "debug",
        poll_interval_seconds=1,
        tick_timeout_seconds=5,
        freelo=FreeloConfig(email="dev@example.com", api_key="secret"),
        matching={"acceptance_threshold": 0.8},
    )


@pytest.fixture
def backend(work_items) -> FakeBackend:
    return FakeBackend(work_items)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()
