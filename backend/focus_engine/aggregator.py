"""
Focus time aggregation: one total per task across manual runs, completed
pomodoros, incomplete pomodoros and whatever run is live right now.

The breakdown is always recomputed from persisted sessions plus the live
run; its total is the integer sum of its four parts.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Protocol

from focus_engine.clock import Clock, format_human, format_progressive, utc_now
from focus_engine.events import (
    EventBus,
    ModeSwitched,
    RunEnded,
    RunPaused,
    RunResumed,
    RunStarted,
    SessionRecorded,
    TimeUpdated,
)
from focus_engine.scheduler import Handle, Scheduler
from focus_engine.store import FocusStore
from models import SessionStatus, SessionType, TimeTrackingSession, TrackingMode

logger = logging.getLogger(__name__)


class ActiveRun(Protocol):
    mode: TrackingMode

    def current_session_seconds(self) -> int: ...


@dataclass(frozen=True)
class TimeBreakdown:
    manual_time: int = 0
    completed_pomodoro_time: int = 0
    incomplete_pomodoro_time: int = 0
    current_session_time: int = 0
    pomodoro_count: int = 0
    session_count: int = 0

    @property
    def total(self) -> int:
        return (
            self.manual_time
            + self.completed_pomodoro_time
            + self.incomplete_pomodoro_time
            + self.current_session_time
        )

    def as_dict(self) -> dict:
        return {
            "manual_time": self.manual_time,
            "completed_pomodoro_time": self.completed_pomodoro_time,
            "incomplete_pomodoro_time": self.incomplete_pomodoro_time,
            "current_session_time": self.current_session_time,
            "total": self.total,
            "pomodoro_count": self.pomodoro_count,
            "session_count": self.session_count,
            "total_display": format_progressive(self.total),
            "total_human": format_human(self.total),
        }


def summarize(sessions: Iterable[TimeTrackingSession], current_session_time: int = 0) -> TimeBreakdown:
    manual = completed = incomplete = 0
    pomodoros = count = 0
    for session in sessions:
        if session.session_type == SessionType.MANUAL:
            manual += session.duration_seconds
        elif session.session_type == SessionType.POMODORO:
            if session.status == SessionStatus.COMPLETED:
                completed += session.duration_seconds
                pomodoros += 1
            else:
                incomplete += session.duration_seconds
        else:
            continue
        count += 1
    return TimeBreakdown(
        manual_time=manual,
        completed_pomodoro_time=completed,
        incomplete_pomodoro_time=incomplete,
        current_session_time=max(0, current_session_time),
        pomodoro_count=pomodoros,
        session_count=count,
    )


class FocusTimeAggregator:
    def __init__(
        self,
        store: FocusStore,
        bus: EventBus,
        scheduler: Scheduler,
        clock: Clock = utc_now,
        tick_seconds: float = 1.0,
    ):
        self.store = store
        self.bus = bus
        self.scheduler = scheduler
        self.clock = clock
        self.tick_seconds = tick_seconds

        self._sessions: Dict[str, List[TimeTrackingSession]] = {}
        self._active: Dict[str, ActiveRun] = {}
        self._last_mode: Dict[str, TrackingMode] = {}
        self._ticks: Dict[str, Handle] = {}
        self._unsubscribe: List[Callable[[], None]] = [
            bus.subscribe(RunStarted, self._on_run_started),
            bus.subscribe(RunEnded, self._on_run_ended),
            bus.subscribe(RunPaused, self._on_run_paused),
            bus.subscribe(RunResumed, self._on_run_resumed),
            bus.subscribe(SessionRecorded, self._on_session_recorded),
        ]

    # --- Queries ---

    def get_current_session_time(self, task_id: str) -> int:
        run = self._active.get(task_id)
        return run.current_session_seconds() if run is not None else 0

    def get_time_breakdown(self, task_id: str) -> TimeBreakdown:
        return summarize(self._sessions_for(task_id), self.get_current_session_time(task_id))

    def get_total_focus_time(self, task_id: str) -> int:
        return self.get_time_breakdown(task_id).total

    def active_mode(self, task_id: str) -> Optional[TrackingMode]:
        run = self._active.get(task_id)
        return run.mode if run is not None else None

    def refresh(self, task_id: str) -> None:
        """Drop cached sessions so the next query reloads them."""
        self._sessions.pop(task_id, None)

    def close(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []
        for handle in self._ticks.values():
            handle.cancel()
        self._ticks.clear()
        self._active.clear()
        self._sessions.clear()

    # --- Internals ---

    def _sessions_for(self, task_id: str) -> List[TimeTrackingSession]:
        if task_id not in self._sessions:
            task = self.store.get_task(task_id)
            self._sessions[task_id] = self.store.list_sessions(task.user_id, task_id=task_id)
        return self._sessions[task_id]

    def _notify(self, task_id: str) -> None:
        self.bus.publish(TimeUpdated(task_id, self.get_total_focus_time(task_id)))

    def _on_run_started(self, event: RunStarted) -> None:
        self._active[event.task_id] = event.source
        previous = self._last_mode.get(event.task_id)
        self._last_mode[event.task_id] = event.mode
        if previous is not None and previous != event.mode:
            logger.debug("Task %s switched from %s to %s", event.task_id, previous.value, event.mode.value)
            self.bus.publish(ModeSwitched(event.task_id, event.mode, previous))
        self._start_tick(event.task_id)
        self._notify(event.task_id)

    def _on_run_ended(self, event: RunEnded) -> None:
        if self._active.get(event.task_id) is not event.source:
            return
        del self._active[event.task_id]
        self._stop_tick(event.task_id)
        self._notify(event.task_id)

    # A paused run stays active (its banked time still counts) but nothing ticks.
    def _on_run_paused(self, event: RunPaused) -> None:
        if self._active.get(event.task_id) is not event.source:
            return
        self._stop_tick(event.task_id)
        self._notify(event.task_id)

    def _on_run_resumed(self, event: RunResumed) -> None:
        if self._active.get(event.task_id) is not event.source:
            return
        self._start_tick(event.task_id)
        self._notify(event.task_id)

    def _start_tick(self, task_id: str) -> None:
        if task_id not in self._ticks:
            self._ticks[task_id] = self.scheduler.every(
                self.tick_seconds, lambda: self._notify(task_id)
            )

    def _stop_tick(self, task_id: str) -> None:
        handle = self._ticks.pop(task_id, None)
        if handle is not None:
            handle.cancel()

    def _on_session_recorded(self, event: SessionRecorded) -> None:
        cached = self._sessions.get(event.task_id)
        if cached is not None:
            cached.insert(0, event.session)
        self._notify(event.task_id)
