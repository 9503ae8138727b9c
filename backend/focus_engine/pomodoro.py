"""
Pomodoro cycle controller: focus -> break -> focus -> ... countdowns for one task.

Completed focus intervals are recorded at their nominal length with the
flat reward. Aborted focus intervals are recorded with the time actually
spent, so no focus time is ever lost, and earn nothing.
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterator, Optional

from config import EngineSettings
from focus_engine.clock import Clock, as_utc, elapsed_seconds, utc_now
from focus_engine.errors import InvalidTransition, PersistenceFailure
from focus_engine.events import (
    BreakStarted,
    EventBus,
    PersistenceFailed,
    PomodoroCompleted,
    PomodoroInterrupted,
    PomodoroTicked,
    RunEnded,
    RunStarted,
)
from focus_engine.recorder import RecordedSession, SessionRecorder
from focus_engine.scheduler import Handle, Scheduler
from focus_engine.store import FocusStore
from models import PomodoroSession, PomodoroStatus, SessionStatus, SessionType, Task, TrackingMode

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    IDLE = "idle"
    FOCUS = "focus"
    BREAK = "break"


def close_interval(
    store: FocusStore,
    recorder: SessionRecorder,
    pomodoro: PomodoroSession,
    end_time: datetime,
    aborted: bool,
) -> Optional[RecordedSession]:
    """Record a finished focus interval and mark its pomodoro session.

    A completed interval is credited at its planned duration; an aborted
    one at the elapsed time up to end_time (capped at the planned duration).
    Storage failures are published on the recorder's bus and re-raised.
    """
    started_at = as_utc(pomodoro.started_at)
    if aborted:
        elapsed = min(elapsed_seconds(started_at, end_time), pomodoro.duration_seconds)
        result = recorder.record(
            pomodoro.task_id,
            pomodoro.user_id,
            started_at,
            started_at + timedelta(seconds=elapsed),
            SessionType.POMODORO,
            SessionStatus.INTERRUPTED,
        )
        with _reported(recorder, pomodoro):
            store.finish_pomodoro(pomodoro.id, PomodoroStatus.ABORTED, end_time)
        return result

    result = recorder.record(
        pomodoro.task_id,
        pomodoro.user_id,
        started_at,
        started_at + timedelta(seconds=pomodoro.duration_seconds),
        SessionType.POMODORO,
        SessionStatus.COMPLETED,
    )
    with _reported(recorder, pomodoro):
        store.finish_pomodoro(pomodoro.id, PomodoroStatus.COMPLETED, end_time)
        task = result.task if result is not None else store.get_task(pomodoro.task_id)
        store.update_task(
            pomodoro.task_id,
            pomodoro_count=task.pomodoro_count + 1,
            last_active_at=end_time,
        )
    return result


@contextmanager
def _reported(recorder: SessionRecorder, pomodoro: PomodoroSession) -> Iterator[None]:
    try:
        yield
    except PersistenceFailure as exc:
        recorder.bus.publish(PersistenceFailed(exc.operation, exc.message, pomodoro.task_id))
        raise


class PomodoroCycleController:
    mode = TrackingMode.POMODORO

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

        self.phase = Phase.IDLE
        self.completed_count = 0
        self.pomodoro: Optional[PomodoroSession] = None
        self._phase_started_at: Optional[datetime] = None
        self._phase_duration = 0
        self._tick: Optional[Handle] = None

    @property
    def task_id(self) -> str:
        return self.task.id

    @property
    def focus_seconds(self) -> int:
        return self.task.pomodoro_duration or self.settings.focus_seconds

    def remaining_seconds(self) -> int:
        if self.phase == Phase.IDLE:
            return 0
        return max(0, self._phase_duration - elapsed_seconds(self._phase_started_at, self.clock()))

    def current_session_seconds(self) -> int:
        if self.phase != Phase.FOCUS:
            return 0
        return min(self._phase_duration, elapsed_seconds(self._phase_started_at, self.clock()))

    # --- Controls ---

    def start(self) -> PomodoroSession:
        if self.phase != Phase.IDLE:
            raise InvalidTransition("start pomodoro", self.phase.value, self.task_id)
        pomodoro = self._begin_focus(self.clock())
        self._tick = self.scheduler.every(self.settings.tick_seconds, self._on_tick)
        self.bus.publish(RunStarted(self.task_id, self.mode, self))
        return pomodoro

    def abort(self) -> Optional[RecordedSession]:
        """Stop the cycle. A focus interval in progress is saved as incomplete."""
        if self.phase == Phase.IDLE:
            raise InvalidTransition("abort pomodoro", self.phase.value, self.task_id)
        now = self.clock()
        was_focus = self.phase == Phase.FOCUS
        elapsed = self.current_session_seconds()
        pomodoro = self.pomodoro

        self._stop_ticking()
        self.phase = Phase.IDLE
        self.pomodoro = None
        self._phase_started_at = None

        result = None
        try:
            if was_focus and pomodoro is not None:
                result = close_interval(self.store, self.recorder, pomodoro, now, aborted=True)
                self.bus.publish(PomodoroInterrupted(self.task_id, elapsed))
                logger.info("Pomodoro for task %s aborted after %ss", self.task_id, elapsed)
        finally:
            self.bus.publish(RunEnded(self.task_id, self.mode, self))
        return result

    def skip_break(self) -> PomodoroSession:
        if self.phase != Phase.BREAK:
            raise InvalidTransition("skip break", self.phase.value, self.task_id)
        return self._begin_focus(self.clock())

    def dispose(self) -> None:
        self._stop_ticking()

    # --- Internals ---

    def _begin_focus(self, at: datetime) -> PomodoroSession:
        duration = self.focus_seconds
        self.pomodoro = self.store.create_pomodoro(self.task_id, self.task.user_id, duration, at)
        self.phase = Phase.FOCUS
        self._phase_started_at = at
        self._phase_duration = duration
        logger.debug("Focus interval of %ss started for task %s", duration, self.task_id)
        return self.pomodoro

    def _begin_break(self, at: datetime) -> None:
        self.phase = Phase.BREAK
        self._phase_started_at = at
        self._phase_duration = self.settings.break_seconds
        self.bus.publish(BreakStarted(self.task_id, self._phase_duration))

    def _complete_focus(self) -> None:
        pomodoro = self.pomodoro
        end = self._phase_started_at + timedelta(seconds=self._phase_duration)
        self.completed_count += 1
        self.pomodoro = None
        # Switch phase first so the live time drops as the session lands.
        self._begin_break(end)
        try:
            close_interval(self.store, self.recorder, pomodoro, end, aborted=False)
        except PersistenceFailure as exc:
            logger.warning("Completed pomodoro for task %s not saved: %s", self.task_id, exc)
        self.bus.publish(PomodoroCompleted(self.task_id, pomodoro.duration_seconds, self.completed_count))

    def _on_tick(self) -> None:
        if self.phase == Phase.IDLE:
            return
        if self.remaining_seconds() > 0:
            self.bus.publish(PomodoroTicked(self.task_id, self.phase.value, self.remaining_seconds()))
            return
        if self.phase == Phase.FOCUS:
            self._complete_focus()
            return
        # Break over: a fresh focus interval at full length.
        end = self._phase_started_at + timedelta(seconds=self._phase_duration)
        try:
            self._begin_focus(end)
        except PersistenceFailure as exc:
            logger.warning("Could not open pomodoro for task %s: %s", self.task_id, exc)
            self.bus.publish(PersistenceFailed(exc.operation, exc.message, self.task_id))

    def _stop_ticking(self) -> None:
        if self._tick is not None:
            self._tick.cancel()
            self._tick = None
