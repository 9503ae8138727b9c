"""
Typed engine events and the observer bus that delivers them.
Consumers subscribe per event type and get back an unsubscribe callable.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Type

from models import TimeTrackingSession, TrackingMode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimeUpdated:
    task_id: str
    seconds: int


@dataclass(frozen=True)
class ModeSwitched:
    task_id: str
    mode: TrackingMode
    previous: Optional[TrackingMode] = None


@dataclass(frozen=True)
class TimerTicked:
    task_id: str
    display_seconds: int


@dataclass(frozen=True)
class RunStarted:
    task_id: str
    mode: TrackingMode
    source: Any


@dataclass(frozen=True)
class RunEnded:
    task_id: str
    mode: TrackingMode
    source: Any


@dataclass(frozen=True)
class RunPaused:
    task_id: str
    mode: TrackingMode
    source: Any


@dataclass(frozen=True)
class RunResumed:
    task_id: str
    mode: TrackingMode
    source: Any


@dataclass(frozen=True)
class SessionRecorded:
    task_id: str
    session: TimeTrackingSession


@dataclass(frozen=True)
class RewardGranted:
    user_id: str
    xp: int
    coins: int


@dataclass(frozen=True)
class LeveledUp:
    user_id: str
    level: int
    previous_level: int


@dataclass(frozen=True)
class TimerAutoPaused:
    task_id: str
    away_seconds: int


@dataclass(frozen=True)
class AwayEnded:
    task_id: str
    away_seconds: int
    resumed: bool


@dataclass(frozen=True)
class PomodoroTicked:
    task_id: str
    phase: str
    remaining_seconds: int


@dataclass(frozen=True)
class PomodoroCompleted:
    task_id: str
    duration_seconds: int
    completed_count: int


@dataclass(frozen=True)
class PomodoroInterrupted:
    task_id: str
    elapsed_seconds: int


@dataclass(frozen=True)
class BreakStarted:
    task_id: str
    duration_seconds: int


@dataclass(frozen=True)
class TallyUpdated:
    task_id: str
    count: int


@dataclass(frozen=True)
class TallyGoalReached:
    task_id: str
    count: int
    goal: int


@dataclass(frozen=True)
class PersistenceFailed:
    operation: str
    message: str
    task_id: Optional[str] = None


Handler = Callable[[Any], None]


class EventBus:
    def __init__(self):
        self._handlers: Dict[Type, List[Handler]] = defaultdict(list)

    def subscribe(self, event_type: Type, handler: Handler) -> Callable[[], None]:
        self._handlers[event_type].append(handler)
        return lambda: self.unsubscribe(event_type, handler)

    def unsubscribe(self, event_type: Type, handler: Handler) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event) -> None:
        # Copy: handlers may unsubscribe while being notified.
        for handler in list(self._handlers.get(type(event), [])):
            try:
                handler(event)
            except Exception:
                logger.exception("Error in %s handler %r", type(event).__name__, handler)

    def clear(self) -> None:
        self._handlers.clear()
