"""
Manual timer state machine for a single task: idle -> running <-> paused -> idle.

A run may span several legs (start/resume to pause/stop). Active time is
banked in accumulated_time_seconds at every pause; paused gaps are never
credited. The run's origin is kept in run_started_at so the recorded
session spans the whole run.
"""
import logging
from datetime import datetime
from typing import Optional

from config import EngineSettings
from focus_engine.clock import Clock, elapsed_seconds, utc_now
from focus_engine.errors import InvalidTransition, PersistenceFailure
from focus_engine.events import (
    AwayEnded,
    EventBus,
    PersistenceFailed,
    RunEnded,
    RunPaused,
    RunResumed,
    RunStarted,
    TimerAutoPaused,
    TimerTicked,
)
from focus_engine.recorder import RecordedSession, SessionRecorder
from focus_engine.scheduler import Handle, Scheduler
from focus_engine.store import FocusStore
from models import SessionStatus, SessionType, Task, TimerStatus, TrackingMode

logger = logging.getLogger(__name__)

_TIMER_FIELDS = (
    "timer_status",
    "timer_started_at",
    "timer_paused_at",
    "run_started_at",
    "accumulated_time_seconds",
    "last_active_at",
)


def run_seconds(task: Task, now: datetime) -> int:
    """Active seconds of the task's current, not yet stopped, run."""
    if task.timer_status == TimerStatus.RUNNING:
        return task.accumulated_time_seconds + elapsed_seconds(task.timer_started_at, now)
    if task.timer_status == TimerStatus.PAUSED:
        return task.accumulated_time_seconds
    return 0


class TimerStateMachine:
    mode = TrackingMode.TIME_TRACKER

    def __init__(
        self,
        task: Task,
        store: FocusStore,
        recorder: SessionRecorder,
        scheduler: Scheduler,
        bus: Optional[EventBus] = None,
        clock: Clock = utc_now,
        settings: Optional[EngineSettings] = None,
    ):
        self.task = task
        self.store = store
        self.recorder = recorder
        self.scheduler = scheduler
        self.bus = bus or EventBus()
        self.clock = clock
        self.settings = settings or EngineSettings()

        self._tick: Optional[Handle] = None
        self._away_timer: Optional[Handle] = None
        self._hidden_since: Optional[datetime] = None

    @property
    def task_id(self) -> str:
        return self.task.id

    @property
    def status(self) -> TimerStatus:
        return self.task.timer_status

    def current_session_seconds(self) -> int:
        return run_seconds(self.task, self.clock())

    def display_seconds(self) -> int:
        return self.task.total_time_seconds + self.current_session_seconds()

    # --- Transitions ---

    def start(self) -> Task:
        self._require("start", TimerStatus.IDLE)
        now = self.clock()
        self.task.timer_status = TimerStatus.RUNNING
        self.task.timer_started_at = now
        self.task.timer_paused_at = None
        self.task.run_started_at = now
        self.task.last_active_at = now
        self._start_ticking()
        self.bus.publish(RunStarted(self.task_id, self.mode, self))
        logger.debug("Timer started for task %s", self.task_id)
        return self._persist()

    def pause(self) -> Task:
        self._require("pause", TimerStatus.RUNNING)
        now = self.clock()
        self.task.accumulated_time_seconds += elapsed_seconds(self.task.timer_started_at, now)
        self.task.timer_status = TimerStatus.PAUSED
        self.task.timer_paused_at = now
        self.task.timer_started_at = None
        self.task.last_active_at = now
        self._stop_ticking()
        self.bus.publish(RunPaused(self.task_id, self.mode, self))
        logger.debug(
            "Timer paused for task %s with %ss banked", self.task_id, self.task.accumulated_time_seconds
        )
        return self._persist()

    def resume(self) -> Task:
        self._require("resume", TimerStatus.PAUSED)
        now = self.clock()
        self.task.timer_status = TimerStatus.RUNNING
        self.task.timer_started_at = now
        self.task.timer_paused_at = None
        self.task.last_active_at = now
        self._cancel_away()
        self._start_ticking()
        self.bus.publish(RunResumed(self.task_id, self.mode, self))
        logger.debug("Timer resumed for task %s", self.task_id)
        return self._persist()

    def stop(self, status: SessionStatus = SessionStatus.COMPLETED) -> Optional[RecordedSession]:
        """End the run and record it as a manual session.

        The idle state is persisted before the session is written, so a
        PersistenceFailure while recording leaves the timer stopped both
        locally and in storage; the caller retries the write, never the
        stop, and the run cannot be recorded twice.
        """
        if self.status == TimerStatus.IDLE:
            raise InvalidTransition("stop", self.status.value, self.task_id)
        now = self.clock()
        active = run_seconds(self.task, now)
        origin = self.task.run_started_at or self.task.timer_started_at or self.task.timer_paused_at or now
        idle = max(0, elapsed_seconds(origin, now) - active)

        self._stop_ticking()
        self._cancel_away()
        self.task.timer_status = TimerStatus.IDLE
        self.task.timer_started_at = None
        self.task.timer_paused_at = None
        self.task.run_started_at = None
        self.task.accumulated_time_seconds = 0
        self.task.last_active_at = now

        try:
            self._persist()
            result = self.recorder.record(
                self.task_id,
                self.task.user_id,
                origin,
                now,
                SessionType.MANUAL,
                status,
                idle_seconds=idle,
            )
        finally:
            self.bus.publish(RunEnded(self.task_id, self.mode, self))

        if result is not None:
            self.task.total_time_seconds = result.task.total_time_seconds
        logger.debug("Timer stopped for task %s after %ss active", self.task_id, active)
        return result

    def restore(self) -> None:
        """Re-attach to a task loaded mid-run (e.g. after a reload)."""
        if self.status == TimerStatus.RUNNING and self._tick is None:
            self._start_ticking()
            self.bus.publish(RunStarted(self.task_id, self.mode, self))
        elif self.status == TimerStatus.PAUSED:
            self.bus.publish(RunStarted(self.task_id, self.mode, self))
            self.bus.publish(RunPaused(self.task_id, self.mode, self))

    def dispose(self) -> None:
        """Cancel scheduled work without changing timer state."""
        self._stop_ticking()
        self._cancel_away()

    # --- Away detection ---

    def page_hidden(self) -> None:
        if self.status != TimerStatus.RUNNING or self._hidden_since is not None:
            return
        self._hidden_since = self.clock()
        self._away_timer = self.scheduler.call_later(
            self.settings.away_threshold_seconds, self._auto_pause
        )

    def page_visible(self) -> None:
        if self._hidden_since is None:
            return
        away = elapsed_seconds(self._hidden_since, self.clock())
        self._cancel_away()
        if away >= self.settings.away_threshold_seconds:
            if self.status == TimerStatus.RUNNING:
                self._auto_pause(away)
            self.bus.publish(AwayEnded(self.task_id, away, resumed=False))
        else:
            self.bus.publish(AwayEnded(self.task_id, away, resumed=True))

    def _auto_pause(self, away: Optional[int] = None) -> None:
        self._away_timer = None
        if self.status != TimerStatus.RUNNING:
            return
        if away is None:
            away = elapsed_seconds(self._hidden_since, self.clock())
        self.pause()
        logger.info("Timer for task %s auto-paused after %ss away", self.task_id, away)
        self.bus.publish(TimerAutoPaused(self.task_id, away))

    def _cancel_away(self) -> None:
        if self._away_timer is not None:
            self._away_timer.cancel()
            self._away_timer = None
        self._hidden_since = None

    # --- Internals ---

    def _require(self, action: str, expected: TimerStatus) -> None:
        if self.status != expected:
            raise InvalidTransition(action, self.status.value, self.task_id)

    def _start_ticking(self) -> None:
        self._stop_ticking()
        self._tick = self.scheduler.every(self.settings.tick_seconds, self._on_tick)

    def _stop_ticking(self) -> None:
        if self._tick is not None:
            self._tick.cancel()
            self._tick = None

    def _on_tick(self) -> None:
        self.bus.publish(TimerTicked(self.task_id, self.display_seconds()))

    def _persist(self) -> Task:
        fields = {name: getattr(self.task, name) for name in _TIMER_FIELDS}
        try:
            return self.store.update_task(self.task_id, **fields)
        except PersistenceFailure as exc:
            self.bus.publish(PersistenceFailed(exc.operation, exc.message, self.task_id))
            raise
