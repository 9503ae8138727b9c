"""Tally counting: a per-task count-up with an optional goal."""
import logging
from typing import Optional

from config import EngineSettings
from focus_engine.clock import Clock, round_half_up, utc_now
from focus_engine.events import EventBus, LeveledUp, RewardGranted, TallyGoalReached, TallyUpdated
from focus_engine.store import FocusStore
from models import Task

logger = logging.getLogger(__name__)


class TallyCounter:
    def __init__(
        self,
        task: Task,
        store: FocusStore,
        bus: Optional[EventBus] = None,
        clock: Clock = utc_now,
        settings: Optional[EngineSettings] = None,
    ):
        self.task = task
        self.store = store
        self.bus = bus or EventBus()
        self.clock = clock
        self.settings = settings or EngineSettings()

    @property
    def count(self) -> int:
        return self.task.tally_count

    @property
    def goal(self) -> int:
        return self.task.tally_goal

    def progress(self) -> int:
        """Percent of the goal reached, 0-100."""
        if self.goal == 0:
            return 0
        return min(100, round_half_up(self.count / self.goal * 100))

    def increment(self) -> int:
        self.task = self.store.update_task(
            self.task.id, tally_count=self.count + 1, last_active_at=self.clock()
        )
        xp = self.settings.tally_xp
        if xp and self.store.get_profile(self.task.user_id) is None:
            logger.warning("No profile for user %s; tally xp not applied", self.task.user_id)
        elif xp:
            profile, previous_level = self.store.add_xp(self.task.user_id, xp)
            self.bus.publish(RewardGranted(self.task.user_id, xp, 0))
            if profile.level > previous_level:
                logger.info("User %s reached level %s", self.task.user_id, profile.level)
                self.bus.publish(LeveledUp(self.task.user_id, profile.level, previous_level))

        self.bus.publish(TallyUpdated(self.task.id, self.count))
        if self.goal > 0 and self.count >= self.goal:
            self.bus.publish(TallyGoalReached(self.task.id, self.count, self.goal))
        return self.count

    def decrement(self) -> int:
        if self.count == 0:
            return 0
        self.task = self.store.update_task(
            self.task.id, tally_count=self.count - 1, last_active_at=self.clock()
        )
        self.bus.publish(TallyUpdated(self.task.id, self.count))
        return self.count

    def set_goal(self, goal: int) -> None:
        if goal < 0:
            raise ValueError("Tally goal cannot be negative")
        self.task = self.store.update_task(self.task.id, tally_goal=goal)
