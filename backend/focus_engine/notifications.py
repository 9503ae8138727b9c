"""
User-facing notifications derived from engine events. Delivery is
non-blocking: the sink is handed a Notification and the engine moves on.
"""
from dataclasses import dataclass
from typing import Callable, List

from focus_engine.clock import format_human
from focus_engine.events import (
    EventBus,
    LeveledUp,
    ModeSwitched,
    PersistenceFailed,
    PomodoroInterrupted,
    TimerAutoPaused,
)


@dataclass(frozen=True)
class Notification:
    kind: str
    message: str
    level: str = "info"


class Notifier:
    def __init__(self, bus: EventBus, sink: Callable[[Notification], None]):
        self.sink = sink
        self._unsubscribe: List[Callable[[], None]] = [
            bus.subscribe(PomodoroInterrupted, self._incomplete_pomodoro),
            bus.subscribe(ModeSwitched, self._mode_switch),
            bus.subscribe(TimerAutoPaused, self._auto_paused),
            bus.subscribe(LeveledUp, self._level_up),
            bus.subscribe(PersistenceFailed, self._error),
        ]

    def close(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []

    def _incomplete_pomodoro(self, event: PomodoroInterrupted) -> None:
        self.sink(Notification(
            "incomplete_pomodoro",
            f"Pomodoro stopped early. {format_human(event.elapsed_seconds)} added to your focus time.",
        ))

    def _mode_switch(self, event: ModeSwitched) -> None:
        previous = event.previous.value.replace("_", " ") if event.previous else "none"
        self.sink(Notification(
            "mode_switch",
            f"Switched from {previous} to {event.mode.value.replace('_', ' ')}. Your focus time carries over.",
        ))

    def _auto_paused(self, event: TimerAutoPaused) -> None:
        self.sink(Notification(
            "auto_paused",
            f"Timer paused after {format_human(event.away_seconds)} away. Resume when you're back.",
            level="warning",
        ))

    def _level_up(self, event: LeveledUp) -> None:
        self.sink(Notification("level_up", f"Level up! You reached level {event.level}."))

    def _error(self, event: PersistenceFailed) -> None:
        self.sink(Notification(
            "sync_error",
            f"Couldn't save your progress ({event.operation}). You can keep working.",
            level="error",
        ))
