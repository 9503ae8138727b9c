"""
SQLModel-backed persistence for tasks, profiles, time tracking sessions
and pomodoro sessions. Each operation runs in its own short-lived
Session and returns detached rows the engine may mutate locally.
"""
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterator, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from focus_engine.clock import as_utc
from focus_engine.errors import PersistenceFailure, PomodoroNotFound, TaskNotFound
from models import PomodoroSession, PomodoroStatus, Profile, Task, TimeTrackingSession

logger = logging.getLogger(__name__)


def level_for_xp(xp: int, xp_per_level: int = 100) -> int:
    return xp // xp_per_level + 1


class FocusStore:
    def __init__(self, session_factory: Callable[[], Session], xp_per_level: int = 100):
        self._session_factory = session_factory
        self.xp_per_level = xp_per_level

    @contextmanager
    def _db(self, operation: str) -> Iterator[Session]:
        try:
            with self._session_factory() as db:
                yield db
        except SQLAlchemyError as exc:
            logger.error("Storage operation %s failed: %s", operation, exc)
            raise PersistenceFailure(operation, str(exc)) from exc

    # --- Tasks ---

    def get_task(self, task_id: str) -> Task:
        with self._db("get_task") as db:
            task = db.get(Task, task_id)
            if task is None:
                raise TaskNotFound(task_id)
            return task

    def update_task(self, task_id: str, **fields) -> Task:
        with self._db("update_task") as db:
            task = db.get(Task, task_id)
            if task is None:
                raise TaskNotFound(task_id)
            for name, value in fields.items():
                setattr(task, name, value)
            db.add(task)
            db.commit()
            db.refresh(task)
            return task

    # --- Time tracking sessions ---

    def create_session(self, **payload) -> TimeTrackingSession:
        with self._db("create_session") as db:
            session = TimeTrackingSession(**payload)
            db.add(session)
            db.commit()
            db.refresh(session)
            return session

    def list_sessions(
        self,
        user_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        task_id: Optional[str] = None,
    ) -> List[TimeTrackingSession]:
        """Sessions for a user, newest first."""
        statement = select(TimeTrackingSession).where(TimeTrackingSession.user_id == user_id)
        if start_date is not None:
            statement = statement.where(TimeTrackingSession.start_time >= as_utc(start_date))
        if end_date is not None:
            statement = statement.where(TimeTrackingSession.start_time <= as_utc(end_date))
        if task_id is not None:
            statement = statement.where(TimeTrackingSession.task_id == task_id)
        statement = statement.order_by(TimeTrackingSession.start_time.desc())
        with self._db("list_sessions") as db:
            return list(db.exec(statement).all())

    def delete_session(self, session_id: str, user_id: str) -> bool:
        with self._db("delete_session") as db:
            statement = select(TimeTrackingSession).where(
                TimeTrackingSession.id == session_id, TimeTrackingSession.user_id == user_id
            )
            session = db.exec(statement).one_or_none()
            if session is None:
                return False
            db.delete(session)
            db.commit()
            return True

    # --- Profiles ---

    def get_profile(self, user_id: str) -> Optional[Profile]:
        with self._db("get_profile") as db:
            return db.get(Profile, user_id)

    def update_profile(
        self,
        user_id: str,
        xp: Optional[int] = None,
        coins: Optional[int] = None,
        last_active_at: Optional[datetime] = None,
    ) -> Tuple[Profile, int]:
        """Set xp/coins and derive the level. Returns (profile, previous_level)."""
        with self._db("update_profile") as db:
            profile = db.get(Profile, user_id)
            if profile is None:
                raise PersistenceFailure("update_profile", f"profile {user_id} does not exist")
            previous_level = profile.level
            if xp is not None:
                profile.xp = xp
                profile.level = level_for_xp(xp, self.xp_per_level)
            if coins is not None:
                profile.coins = coins
            if last_active_at is not None:
                profile.last_active_at = last_active_at
            db.add(profile)
            db.commit()
            db.refresh(profile)
            return profile, previous_level

    def add_xp(self, user_id: str, amount: int) -> Tuple[Profile, int]:
        with self._db("add_xp") as db:
            profile = db.get(Profile, user_id)
            if profile is None:
                raise PersistenceFailure("add_xp", f"profile {user_id} does not exist")
            previous_level = profile.level
            profile.xp += amount
            profile.level = level_for_xp(profile.xp, self.xp_per_level)
            db.add(profile)
            db.commit()
            db.refresh(profile)
            return profile, previous_level

    # --- Pomodoro sessions ---

    def create_pomodoro(
        self, task_id: str, user_id: str, duration_seconds: int, started_at: datetime
    ) -> PomodoroSession:
        with self._db("create_pomodoro") as db:
            pomodoro = PomodoroSession(
                task_id=task_id,
                user_id=user_id,
                duration_seconds=duration_seconds,
                started_at=started_at,
            )
            db.add(pomodoro)
            db.commit()
            db.refresh(pomodoro)
            return pomodoro

    def get_pomodoro(self, pomodoro_id: str) -> PomodoroSession:
        with self._db("get_pomodoro") as db:
            pomodoro = db.get(PomodoroSession, pomodoro_id)
            if pomodoro is None:
                raise PomodoroNotFound(pomodoro_id)
            return pomodoro

    def finish_pomodoro(
        self, pomodoro_id: str, status: PomodoroStatus, completed_at: datetime
    ) -> PomodoroSession:
        with self._db("finish_pomodoro") as db:
            pomodoro = db.get(PomodoroSession, pomodoro_id)
            if pomodoro is None:
                raise PomodoroNotFound(pomodoro_id)
            pomodoro.status = status
            pomodoro.completed_at = completed_at
            db.add(pomodoro)
            db.commit()
            db.refresh(pomodoro)
            return pomodoro
