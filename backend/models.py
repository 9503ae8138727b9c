import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import SQLModel, Field


def _new_id() -> str:
    return str(uuid.uuid4())


class TimerStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"


class SessionType(str, Enum):
    MANUAL = "manual"
    POMODORO = "pomodoro"
    BREAK = "break"


class SessionStatus(str, Enum):
    COMPLETED = "completed"
    ABANDONED = "abandoned"
    INTERRUPTED = "interrupted"


class PomodoroStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABORTED = "aborted"


class TrackingMode(str, Enum):
    TIME_TRACKER = "time_tracker"
    POMODORO = "pomodoro"
    TALLY = "tally"


class Profile(SQLModel, table=True):
    __tablename__ = "profiles"

    id: str = Field(primary_key=True, index=True)
    xp: int = 0
    coins: int = 0
    level: int = 1
    last_active_at: Optional[datetime] = None


class Task(SQLModel, table=True):
    __tablename__ = "tasks"

    id: str = Field(default_factory=_new_id, primary_key=True, index=True)
    user_id: str = Field(index=True)
    title: str = ""
    total_time_seconds: int = 0
    timer_status: TimerStatus = TimerStatus.IDLE
    timer_started_at: Optional[datetime] = None
    timer_paused_at: Optional[datetime] = None
    run_started_at: Optional[datetime] = None
    accumulated_time_seconds: int = 0
    last_active_at: Optional[datetime] = None
    pomodoro_count: int = 0
    pomodoro_duration: int = 1500
    tally_count: int = 0
    tally_goal: int = 0


class TimeTrackingSession(SQLModel, table=True):
    __tablename__ = "time_tracking"

    id: str = Field(default_factory=_new_id, primary_key=True, index=True)
    task_id: str = Field(index=True)
    user_id: str = Field(index=True)
    start_time: datetime = Field(index=True)
    end_time: datetime
    duration_seconds: int
    session_type: SessionType = SessionType.MANUAL
    xp_earned: int = 0
    coins_earned: int = 0
    status: SessionStatus = SessionStatus.COMPLETED


class PomodoroSession(SQLModel, table=True):
    __tablename__ = "pomodoro_sessions"

    id: str = Field(default_factory=_new_id, primary_key=True, index=True)
    task_id: str = Field(index=True)
    user_id: str = Field(index=True)
    duration_seconds: int = 1500
    status: PomodoroStatus = PomodoroStatus.IN_PROGRESS
    started_at: datetime
    completed_at: Optional[datetime] = None
