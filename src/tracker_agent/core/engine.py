"""Tracking decision engine: runs the poll loop and drives the time-tracking backend."""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
from collections.abc import Coroutine
from datetime import datetime
from enum import Enum
from typing import Any, Protocol

from tracker_agent.backend.freelo_client import FreeloClient
from tracker_agent.backend.models import ItemCache, WorkItem
from tracker_agent.core.config import Config
from tracker_agent.core.errors import (
    AlreadyRunningError,
    ConfigurationError,
    ItemLoadError,
    NotRunningError,
)
from tracker_agent.core.events import EventSink, LoggingEventSink, LogLevel
from tracker_agent.core.session import RESTART_THRESHOLD, TrackingSession
from tracker_agent.core.stabilizer import Action, Decision, evaluate
from tracker_agent.matching.base import ContextMatcher, MatchResult, build_matcher
from tracker_agent.trackers.screen_sampler import CapturedScreen, ScreenSampler

logger = logging.getLogger(__name__)


class ScreenSource(Protocol):
    async def capture(self) -> CapturedScreen: ...


class TrackingBackend(Protocol):
    async def list_items(self) -> list[WorkItem]: ...

    async def start_session(self, item_id: str | None, note: str) -> str: ...

    async def stop_session(self, session_id: str) -> None: ...


class EngineState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"


DEFAULT_TIMEOUT_SECONDS = 120.0


def describe_error(error: BaseException) -> str:
    return str(error) or type(error).__name__


def _resolve_threshold(config: Config | None, matcher: ContextMatcher | None) -> float:
    """Configured acceptance threshold, else the matcher's own default."""
    if config is not None and config.matching.acceptance_threshold is not None:
        return config.matching.acceptance_threshold
    return getattr(matcher, "default_acceptance_threshold", 0.8)


class TrackingEngine:
    """Owns the tracking session and the poll loop.

    Shared state (run flag, config, session, item cache) sits behind separate
    locks. No lock is held across a network call; the session lock is taken
    again only to commit the outcome of a backend call.

    Collaborators passed to the constructor replace the ones that would
    otherwise be built from the config on every ``start()``.
    """

    def __init__(
        self,
        config: Config | None = None,
        event_sink: EventSink | None = None,
        sampler: ScreenSource | None = None,
        matcher: ContextMatcher | None = None,
        backend: TrackingBackend | None = None,
    ):
        self._config = config
        self.events: EventSink = event_sink or LoggingEventSink()

        self._sampler_override = sampler
        self._matcher_override = matcher
        self._backend_override = backend

        self._run_lock = asyncio.Lock()
        self._config_lock = asyncio.Lock()
        self._session_lock = asyncio.Lock()
        self._items_lock = asyncio.Lock()

        self._running = False
        self._session: TrackingSession | None = None
        self._items = ItemCache()

        # Per-run collaborators; rebuilt from the config in start() unless overridden
        self._run_config: Config | None = config
        self._sampler: ScreenSource | None = sampler
        self._matcher: ContextMatcher | None = matcher
        self._backend: TrackingBackend | None = backend
        self._threshold = _resolve_threshold(config, matcher)
        self._task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._started_at: datetime | None = None
        self._tick_count = 0

    # ------------------------------------------------------------------
    # Read-only accessors
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def state(self) -> EngineState:
        return EngineState.RUNNING if self._running else EngineState.STOPPED

    @property
    def config(self) -> Config | None:
        return self._config

    @property
    def current_session(self) -> TrackingSession | None:
        """Copy of the active session, None when idle."""
        return self._session.copy() if self._session else None

    @property
    def items(self) -> list[WorkItem]:
        return self._items.items()

    @property
    def acceptance_threshold(self) -> float:
        return self._threshold

    @property
    def tick_count(self) -> int:
        return self._tick_count

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def configure(self, config: Config) -> None:
        """Replace the configuration; it takes effect on the next start()."""
        async with self._config_lock:
            self._config = config
        self.events.log_event(
            LogLevel.SUCCESS,
            f"Settings saved (interval: {config.poll_interval_seconds}s)",
        )

    async def start(self) -> None:
        """Load work items and launch the poll loop.

        Raises:
            AlreadyRunningError: If the engine is running, or a previous run
                is still shutting down.
            ConfigurationError: If no usable configuration is set.
            ItemLoadError: If the item list cannot be fetched.
        """
        async with self._run_lock:
            if self._running or self._task is not None:
                logger.warning("Tracking engine already running")
                raise AlreadyRunningError()
            self._running = True
            stop_event = asyncio.Event()
            self._stop_event = stop_event

        try:
            config = await self._prepare_run()
            await self._load_items()
        except Exception:
            async with self._run_lock:
                if self._stop_event is stop_event:
                    self._running = False
            raise

        async with self._run_lock:
            if stop_event.is_set():
                # stop() arrived while the items were loading
                self.events.log_event(LogLevel.WARNING, "Tracking start cancelled by stop")
                return

            self._loop = asyncio.get_running_loop()
            self._started_at = datetime.now()
            self._tick_count = 0
            self._task = asyncio.create_task(
                self._poll_loop(config.poll_interval_seconds, stop_event),
                name="tracker-poll-loop",
            )

        self.events.log_event(
            LogLevel.INFO,
            f"Tracking started (interval: {config.poll_interval_seconds}s, "
            f"matcher: {getattr(self._matcher, 'name', 'custom')}, "
            f"threshold: {self._threshold:.2f})",
        )

    async def stop(self) -> None:
        """Stop the poll loop and any active backend session.

        The loop notices the stop at its next tick boundary; an in-flight tick
        is allowed to finish first. Stopping the backend session is best
        effort and session state is cleared whatever the outcome. While the
        loop is winding down, start() is rejected.

        Raises:
            NotRunningError: If the engine is not running.
        """
        async with self._run_lock:
            if not self._running:
                raise NotRunningError()
            self._running = False
            task = self._task
            if self._stop_event is not None:
                self._stop_event.set()

        if task and task is not asyncio.current_task():
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error(f"Poll loop ended with error: {e}")

        async with self._session_lock:
            session, self._session = self._session, None

        if session is not None:
            if await self._stop_backend_session(session):
                self.events.log_event(LogLevel.SUCCESS, "Freelo tracking stopped")

        async with self._run_lock:
            if self._task is task:
                self._task = None
        self._started_at = None
        logger.info("Tracking engine stopped")

    def submit(
        self,
        coro: Coroutine[Any, Any, Any],
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> concurrent.futures.Future:
        """Run a command coroutine on the engine's event loop from another thread.

        Example:
            engine.submit(engine.stop()).result(timeout=30)
        """
        target = loop or self._loop
        if target is None:
            coro.close()
            raise RuntimeError("No event loop to submit to; pass the host application's loop")
        return asyncio.run_coroutine_threadsafe(coro, target)

    # ------------------------------------------------------------------
    # Start-up
    # ------------------------------------------------------------------

    async def _prepare_run(self) -> Config:
        async with self._config_lock:
            config = self._config

        if config is None:
            self.events.log_event(LogLevel.ERROR, "Configuration is not set")
            raise ConfigurationError("Configuration is not set")

        if self._backend_override is None and not config.freelo.has_credentials:
            self.events.log_event(LogLevel.ERROR, "Freelo e-mail and API key are required")
            raise ConfigurationError("Freelo e-mail and API key are required")

        self._backend = self._backend_override or FreeloClient(config.freelo)
        self._sampler = self._sampler_override or ScreenSampler(
            max_width=config.capture.max_width,
            jpeg_quality=config.capture.jpeg_quality,
            all_screens=config.capture.all_screens,
            debug_dir=config.debug_dir if config.ocr.save_debug else None,
        )
        self._matcher = self._matcher_override or build_matcher(config)
        self._threshold = _resolve_threshold(config, self._matcher)

        self._run_config = config
        return config

    @property
    def _timeout(self) -> float:
        if self._run_config is None:
            return DEFAULT_TIMEOUT_SECONDS
        return self._run_config.tick_timeout_seconds

    async def _load_items(self) -> None:
        self.events.log_event(LogLevel.INFO, "Loading Freelo tasks...")
        try:
            items = await asyncio.wait_for(self._backend.list_items(), timeout=self._timeout)
        except Exception as e:
            message = describe_error(e)
            self.events.log_event(LogLevel.ERROR, f"Failed to load tasks: {message}")
            raise ItemLoadError(f"Failed to load tasks: {message}") from e

        async with self._items_lock:
            self._items.replace(items)

        self.events.log_event(LogLevel.SUCCESS, f"Loaded {len(items)} open tasks")

    # ------------------------------------------------------------------
    # Poll loop
    # ------------------------------------------------------------------

    async def _poll_loop(self, interval: float, stop_event: asyncio.Event) -> None:
        """Fixed-rate loop; the first tick fires immediately.

        ``stop_event`` belongs to this run only, so a loop from an earlier run
        can never resume after a later start().
        """
        loop = asyncio.get_running_loop()
        next_tick = loop.time()

        while not stop_event.is_set():
            try:
                await self._tick()
            except Exception as e:
                logger.exception("Unexpected error in tracking tick")
                self.events.log_event(LogLevel.ERROR, f"Tick failed: {describe_error(e)}")

            next_tick += interval
            delay = next_tick - loop.time()
            if delay < 0:
                # Missed ticks are not replayed
                next_tick = loop.time()
                delay = 0
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

        self.events.log_event(LogLevel.INFO, "Tracking loop ended")

    async def _tick(self) -> None:
        self._tick_count += 1

        async with self._session_lock:
            previous_label = self._session.last_application if self._session else None
        async with self._items_lock:
            cache = ItemCache(self._items.items())
        items = cache.items()

        try:
            result = await asyncio.wait_for(
                self._classify(items, previous_label),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            self.events.log_event(
                LogLevel.ERROR,
                f"Capture/classification timed out after {self._timeout:.0f}s",
            )
            return
        except Exception as e:
            self.events.log_event(LogLevel.ERROR, f"Context analysis failed: {describe_error(e)}")
            return

        self.events.log_event(
            LogLevel.INFO,
            f"Activity: {result.activity_description} | Context: {result.detected_context} "
            f"| Confidence: {result.confidence * 100:.0f}%",
        )
        self.events.tracking_update(
            result.detected_context,
            result.activity_description,
            self._item_label(result, cache),
            datetime.now(),
        )

        await self.apply(result)

    async def _classify(self, items: list[WorkItem], previous_label: str | None) -> MatchResult:
        self.events.log_event(LogLevel.INFO, "Capturing screen...")
        artifact = await self._sampler.capture()
        self.events.log_event(LogLevel.INFO, "Analyzing context...")
        return await self._matcher.classify(artifact, items, previous_label)

    @staticmethod
    def _item_label(result: MatchResult, cache: ItemCache) -> str | None:
        if result.candidate_item_id is None:
            return result.candidate_name
        item = cache.get(result.candidate_item_id)
        if item:
            return item.name
        return result.candidate_name or ItemCache.UNKNOWN_LABEL

    # ------------------------------------------------------------------
    # Stabilization
    # ------------------------------------------------------------------

    async def apply(self, result: MatchResult) -> Decision:
        """Run the stabilization algorithm for one classification and act on it."""
        async with self._session_lock:
            session = self._session
            decision = evaluate(session, result, self._threshold)

            if session is not None:
                self._log_context(session, result, decision)

            if decision.action in (Action.CONTINUE, Action.HOLD):
                session.instability_counter = decision.instability_counter
                self._log_kept(session, decision)
                return decision

            if decision.action is Action.RESTART:
                self._session = None

        if decision.action is Action.RESTART:
            self.events.log_event(
                LogLevel.INFO,
                f"Context changed, restarting tracking ({session.last_application} -> "
                f"{result.detected_context})",
            )
            if not await self._stop_backend_session(session):
                # The old timer may still be running; start again on the next tick
                self.events.log_event(LogLevel.WARNING, "Tracking left idle until the next tick")
                return decision

        await self._start_backend_session(decision, result)
        return decision

    def _log_context(self, session: TrackingSession, result: MatchResult, decision: Decision) -> None:
        if decision.context_changed:
            self.events.log_event(
                LogLevel.INFO,
                f"Context changed: {session.last_application} -> {result.detected_context} "
                f"(unstable tick {decision.instability_counter}/{RESTART_THRESHOLD})",
            )
        else:
            self.events.log_event(
                LogLevel.INFO,
                f"Context unchanged: {result.detected_context} (counter reset)",
            )

    def _log_kept(self, session: TrackingSession, decision: Decision) -> None:
        if decision.context_changed:
            self.events.log_event(
                LogLevel.WARNING,
                f"Context is changing, waiting for it to settle "
                f"({decision.instability_counter}/{RESTART_THRESHOLD})",
            )
        if decision.action is Action.HOLD:
            return
        if session.is_general_work:
            self.events.log_event(LogLevel.SUCCESS, "Tracking: general work continues")
        else:
            self.events.log_event(
                LogLevel.SUCCESS, f"Tracking: task {session.tracking_key} continues"
            )

    # ------------------------------------------------------------------
    # Backend calls
    # ------------------------------------------------------------------

    async def _start_backend_session(self, decision: Decision, result: MatchResult) -> None:
        note = result.activity_description
        try:
            session_id = await asyncio.wait_for(
                self._backend.start_session(decision.item_id, note),
                timeout=self._timeout,
            )
        except Exception as e:
            self.events.log_event(LogLevel.ERROR, f"Failed to start tracking: {describe_error(e)}")
            return

        session = TrackingSession(
            tracking_key=decision.tracking_key,
            external_session_id=session_id,
            started_at=datetime.now(),
            last_application=result.detected_context,
            last_activity_description=result.activity_description,
        )
        async with self._session_lock:
            self._session = session

        if session.is_general_work:
            self.events.log_event(
                LogLevel.SUCCESS, f"Tracking started: general work (uuid: {session_id})"
            )
        else:
            self.events.log_event(
                LogLevel.SUCCESS,
                f"Tracking started: task {decision.tracking_key} (uuid: {session_id})",
            )

    async def _stop_backend_session(self, session: TrackingSession) -> bool:
        """Best-effort stop; returns False and emits an error on failure."""
        timeout = self._timeout
        try:
            await asyncio.wait_for(
                self._backend.stop_session(session.external_session_id), timeout=timeout
            )
        except Exception as e:
            self.events.log_event(LogLevel.ERROR, f"Failed to stop tracking: {describe_error(e)}")
            return False
        return True

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self) -> dict[str, Any]:
        """Snapshot of engine state for display."""
        status: dict[str, Any] = {
            "state": self.state.value,
            "uptime_seconds": (
                (datetime.now() - self._started_at).total_seconds() if self._started_at else 0.0
            ),
            "ticks": self._tick_count,
            "items": len(self._items),
            "matcher": getattr(self._matcher, "name", None),
            "acceptance_threshold": self._threshold,
        }

        session = self._session
        if session:
            status["session"] = {
                "tracking_key": session.tracking_key,
                "item": self._items.name_for(session.item_id) if session.item_id else None,
                "external_session_id": session.external_session_id,
                "started_at": session.started_at.isoformat(),
                "duration_seconds": session.duration_seconds,
                "application": session.last_application,
                "activity": session.last_activity_description,
                "instability_counter": session.instability_counter,
            }
        else:
            status["session"] = None

        return status
