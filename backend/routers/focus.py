"""
Unified focus time per task (manual + pomodoro + live run) and tally counting.
"""
from fastapi import APIRouter, Depends, Header

from config import EngineSettings, get_settings
from db import get_store
from focus_engine.aggregator import summarize
from focus_engine.clock import utc_now
from focus_engine.store import FocusStore
from focus_engine.tally import TallyCounter
from focus_engine.timer import run_seconds
from routers.deps import owned_task, require_user_id

router = APIRouter(prefix="/api/tasks", tags=["focus"])


@router.get("/{task_id}/focus-time")
def get_focus_time(
    task_id: str,
    store: FocusStore = Depends(get_store),
    user_id: str | None = Header(default=None, alias="X-User-Id"),
):
    """
    Total focus time for a task and where it came from.
    current_session_time is the live manual run stored on the task, if any.
    """
    uid = require_user_id(user_id)
    task = owned_task(store, task_id, uid)
    sessions = store.list_sessions(uid, task_id=task_id)
    breakdown = summarize(sessions, run_seconds(task, utc_now()))
    return {
        "task_id": task_id,
        "timer_status": task.timer_status,
        **breakdown.as_dict(),
        "tally_count": task.tally_count,
        "tally_goal": task.tally_goal,
    }


def _tally_response(tally: TallyCounter, xp_earned: int) -> dict:
    return {
        "task_id": tally.task.id,
        "tally_count": tally.count,
        "tally_goal": tally.goal,
        "progress": tally.progress(),
        "xp_earned": xp_earned,
    }


@router.post("/{task_id}/tally")
def increment_tally(
    task_id: str,
    store: FocusStore = Depends(get_store),
    settings: EngineSettings = Depends(get_settings),
    user_id: str | None = Header(default=None, alias="X-User-Id"),
):
    uid = require_user_id(user_id)
    tally = TallyCounter(owned_task(store, task_id, uid), store, settings=settings)
    tally.increment()
    return _tally_response(tally, settings.tally_xp)


@router.post("/{task_id}/tally/decrement")
def decrement_tally(
    task_id: str,
    store: FocusStore = Depends(get_store),
    settings: EngineSettings = Depends(get_settings),
    user_id: str | None = Header(default=None, alias="X-User-Id"),
):
    uid = require_user_id(user_id)
    tally = TallyCounter(owned_task(store, task_id, uid), store, settings=settings)
    tally.decrement()
    return _tally_response(tally, 0)
