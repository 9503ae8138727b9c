"""
Pomodoro intervals: start one, then complete or abort it.
Completion pays the flat reward; an abort keeps the elapsed time only.
"""
from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel, Field

from db import get_store
from focus_engine.clock import utc_now
from focus_engine.errors import InvalidTransition, PomodoroNotFound
from focus_engine.pomodoro import close_interval
from focus_engine.recorder import Reward, SessionRecorder
from focus_engine.store import FocusStore
from models import PomodoroStatus
from routers.deps import get_recorder, owned_task, require_user_id

router = APIRouter(prefix="/api/pomodoro", tags=["pomodoro"])


class StartPomodoroRequest(BaseModel):
    task_id: str
    duration_seconds: int = Field(default=1500, gt=0)


class CompletePomodoroRequest(BaseModel):
    aborted: bool = False


@router.post("/start", status_code=201)
def start_pomodoro(
    req: StartPomodoroRequest,
    store: FocusStore = Depends(get_store),
    user_id: str | None = Header(default=None, alias="X-User-Id"),
):
    uid = require_user_id(user_id)
    owned_task(store, req.task_id, uid)
    now = utc_now()
    pomodoro = store.create_pomodoro(req.task_id, uid, req.duration_seconds, now)
    store.update_task(req.task_id, last_active_at=now)
    return {"session": pomodoro}


@router.post("/{pomodoro_id}/complete")
def complete_pomodoro(
    pomodoro_id: str,
    req: CompletePomodoroRequest,
    store: FocusStore = Depends(get_store),
    recorder: SessionRecorder = Depends(get_recorder),
    user_id: str | None = Header(default=None, alias="X-User-Id"),
):
    """Finish an interval. Aborting records only the time actually spent."""
    uid = require_user_id(user_id)
    pomodoro = store.get_pomodoro(pomodoro_id)
    if pomodoro.user_id != uid:
        raise PomodoroNotFound(pomodoro_id)
    if pomodoro.status != PomodoroStatus.IN_PROGRESS:
        raise InvalidTransition("complete pomodoro", pomodoro.status.value)

    result = close_interval(store, recorder, pomodoro, utc_now(), aborted=req.aborted)
    reward = result.reward if result is not None else Reward()
    return {
        "session": store.get_pomodoro(pomodoro_id),
        "time_session": result.session if result is not None else None,
        "rewards": reward.as_dict(),
    }
