"""
Session recorder: turns a finished run or pomodoro interval into a
persisted time tracking session and applies its rewards.

The composite write is sequential: session row, then the task's
total_time_seconds, then the profile's xp/coins. A failure stops the
sequence and is raised with the steps that were already applied.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from config import EngineSettings
from focus_engine.clock import elapsed_seconds, round_half_up
from focus_engine.errors import PersistenceFailure
from focus_engine.events import (
    EventBus,
    LeveledUp,
    PersistenceFailed,
    RewardGranted,
    SessionRecorded,
)
from focus_engine.store import FocusStore
from models import SessionStatus, SessionType, Task, TimeTrackingSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Reward:
    xp: int = 0
    coins: int = 0
    level_up: bool = False
    new_level: Optional[int] = None
    previous_level: Optional[int] = None

    def as_dict(self) -> dict:
        return {
            "xp_earned": self.xp,
            "coins_earned": self.coins,
            "level_up": self.level_up,
            "new_level": self.new_level,
        }


@dataclass(frozen=True)
class RecordedSession:
    session: TimeTrackingSession
    task: Task
    reward: Reward


class SessionRecorder:
    def __init__(
        self,
        store: FocusStore,
        settings: Optional[EngineSettings] = None,
        bus: Optional[EventBus] = None,
    ):
        self.store = store
        self.settings = settings or EngineSettings()
        self.bus = bus or EventBus()

    def compute_reward(
        self, duration_seconds: int, session_type: SessionType, status: SessionStatus
    ) -> Tuple[int, int]:
        """(xp, coins) for a session of the given length, type and outcome."""
        if session_type == SessionType.MANUAL:
            minutes = round_half_up(duration_seconds / 60)
            return (
                minutes * self.settings.xp_per_minute,
                round_half_up(minutes * self.settings.coins_per_minute),
            )
        if session_type == SessionType.POMODORO and status == SessionStatus.COMPLETED:
            return self.settings.pomodoro_xp, self.settings.pomodoro_coins
        # Partial pomodoros bank time but not points; breaks earn nothing.
        return 0, 0

    def record(
        self,
        task_id: str,
        user_id: str,
        start_time: datetime,
        end_time: datetime,
        session_type: SessionType = SessionType.MANUAL,
        status: SessionStatus = SessionStatus.COMPLETED,
        idle_seconds: int = 0,
    ) -> Optional[RecordedSession]:
        """Persist a session and apply its rewards.

        duration_seconds is always recomputed from the timestamps, less the
        idle_seconds the timer spent paused inside the span. Returns None,
        without touching storage, when the result is under the floor.
        """
        duration = max(0, elapsed_seconds(start_time, end_time) - max(0, idle_seconds))
        if duration < self.settings.session_floor_seconds:
            logger.debug("Discarding %ss %s session for task %s", duration, session_type.value, task_id)
            return None

        xp, coins = self.compute_reward(duration, session_type, status)

        done: List[str] = []
        try:
            task = self.store.get_task(task_id)
            session = self.store.create_session(
                task_id=task_id,
                user_id=user_id,
                start_time=start_time,
                end_time=end_time,
                duration_seconds=duration,
                session_type=session_type,
                xp_earned=xp,
                coins_earned=coins,
                status=status,
            )
            done.append("session")

            if session_type != SessionType.BREAK:
                task = self.store.update_task(
                    task_id,
                    total_time_seconds=task.total_time_seconds + duration,
                    last_active_at=end_time,
                )
                done.append("task_total")

            reward = self._credit(user_id, xp, coins, end_time)
            if xp or coins:
                done.append("profile")
        except PersistenceFailure as exc:
            exc.completed_steps = tuple(done)
            self.bus.publish(PersistenceFailed(exc.operation, exc.message, task_id))
            raise

        logger.info(
            "Recorded %ss %s session for task %s (+%s xp, +%s coins)",
            duration, session_type.value, task_id, xp, coins,
        )
        self.bus.publish(SessionRecorded(task_id, session))
        if xp or coins:
            self.bus.publish(RewardGranted(user_id, xp, coins))
        if reward.level_up:
            self.bus.publish(LeveledUp(user_id, reward.new_level, reward.previous_level))
        return RecordedSession(session=session, task=task, reward=reward)

    def _credit(self, user_id: str, xp: int, coins: int, when: datetime) -> Reward:
        if not xp and not coins:
            return Reward()
        profile = self.store.get_profile(user_id)
        if profile is None:
            logger.warning("No profile for user %s; reward of %s xp not applied", user_id, xp)
            return Reward(xp=xp, coins=coins)
        updated, previous_level = self.store.update_profile(
            user_id,
            xp=profile.xp + xp,
            coins=profile.coins + coins,
            last_active_at=when,
        )
        level_up = updated.level > previous_level
        if level_up:
            logger.info("User %s reached level %s", user_id, updated.level)
        return Reward(
            xp=xp,
            coins=coins,
            level_up=level_up,
            new_level=updated.level,
            previous_level=previous_level,
        )
