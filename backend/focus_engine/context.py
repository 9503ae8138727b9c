"""
Per-user application state for the focus engine.

A FocusContext is opened when a user's session starts and closed at
logout. It owns the event bus, the recorder, the aggregator and one set
of controllers per task, and guarantees no tick outlives it.
"""
import logging
from typing import Callable, Dict, Optional

from config import EngineSettings
from focus_engine.aggregator import FocusTimeAggregator
from focus_engine.clock import Clock, utc_now
from focus_engine.errors import InvalidTransition, TaskNotFound
from focus_engine.events import EventBus
from focus_engine.notifications import Notification, Notifier
from focus_engine.pomodoro import Phase, PomodoroCycleController
from focus_engine.recorder import SessionRecorder
from focus_engine.scheduler import Scheduler
from focus_engine.store import FocusStore
from focus_engine.tally import TallyCounter
from focus_engine.timer import TimerStateMachine
from models import Task, TimerStatus, TrackingMode

logger = logging.getLogger(__name__)


class FocusContext:
    def __init__(
        self,
        user_id: str,
        store: FocusStore,
        scheduler: Scheduler,
        settings: Optional[EngineSettings] = None,
        clock: Clock = utc_now,
        bus: Optional[EventBus] = None,
        notify: Optional[Callable[[Notification], None]] = None,
    ):
        self.user_id = user_id
        self.store = store
        self.scheduler = scheduler
        self.settings = settings or EngineSettings()
        self.clock = clock
        self.bus = bus or EventBus()
        self.recorder = SessionRecorder(store, self.settings, self.bus)
        self.aggregator = FocusTimeAggregator(
            store, self.bus, scheduler, clock, self.settings.tick_seconds
        )
        self.notifier = Notifier(self.bus, notify) if notify is not None else None

        self._timers: Dict[str, TimerStateMachine] = {}
        self._pomodoros: Dict[str, PomodoroCycleController] = {}
        self._tallies: Dict[str, TallyCounter] = {}
        self._closed = False

    def __enter__(self) -> "FocusContext":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # --- Controllers ---

    def timer(self, task_id: str) -> TimerStateMachine:
        self._check_open()
        if task_id not in self._timers:
            timer = TimerStateMachine(
                self._load_task(task_id),
                self.store,
                self.recorder,
                self.scheduler,
                self.bus,
                self.clock,
                self.settings,
            )
            self._timers[task_id] = timer
            timer.restore()
        return self._timers[task_id]

    def pomodoro(self, task_id: str) -> PomodoroCycleController:
        self._check_open()
        if task_id not in self._pomodoros:
            self._pomodoros[task_id] = PomodoroCycleController(
                self._load_task(task_id),
                self.store,
                self.recorder,
                self.scheduler,
                self.bus,
                self.clock,
                self.settings,
            )
        return self._pomodoros[task_id]

    def tally(self, task_id: str) -> TallyCounter:
        self._check_open()
        if task_id not in self._tallies:
            self._tallies[task_id] = TallyCounter(
                self._load_task(task_id), self.store, self.bus, self.clock, self.settings
            )
        return self._tallies[task_id]

    def switch_mode(self, task_id: str, mode: TrackingMode) -> None:
        """End whatever run the task has and start one under the given mode."""
        if mode == TrackingMode.TALLY:
            raise ValueError("Tally counting has no run to start")
        timer = self._timers.get(task_id)
        pomodoro = self._pomodoros.get(task_id)
        if mode == TrackingMode.TIME_TRACKER:
            if pomodoro is not None and pomodoro.phase != Phase.IDLE:
                pomodoro.abort()
            self.timer(task_id).start()
        else:
            if timer is not None and timer.status != TimerStatus.IDLE:
                timer.stop()
            self.pomodoro(task_id).start()

    # --- Host visibility ---

    def page_hidden(self) -> None:
        for timer in self._timers.values():
            timer.page_hidden()

    def page_visible(self) -> None:
        for timer in self._timers.values():
            timer.page_visible()

    # --- Lifecycle ---

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for timer in self._timers.values():
            timer.dispose()
        for pomodoro in self._pomodoros.values():
            pomodoro.dispose()
        self.aggregator.close()
        if self.notifier is not None:
            self.notifier.close()
        self.bus.clear()
        logger.debug("Focus context closed for user %s", self.user_id)

    def _check_open(self) -> None:
        if self._closed:
            raise InvalidTransition("use focus context", "closed")

    def _load_task(self, task_id: str) -> Task:
        task = self.store.get_task(task_id)
        if task.user_id != self.user_id:
            raise TaskNotFound(task_id)
        return task
