"""
Manual timer state and time tracking sessions.
Sessions are recorded through the SessionRecorder, so the server, not
the client, decides duration and rewards.
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel, Field, model_validator

from db import get_store
from focus_engine.clock import as_utc, utc_now
from focus_engine.recorder import SessionRecorder
from focus_engine.store import FocusStore
from models import SessionStatus, SessionType, TimerStatus
from routers.deps import get_recorder, owned_task, require_user_id

router = APIRouter(prefix="/api", tags=["timer"])


class TimerStateRequest(BaseModel):
    task_id: str
    timer_status: TimerStatus
    timer_started_at: Optional[datetime] = None
    timer_paused_at: Optional[datetime] = None
    accumulated_time_seconds: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def check_timer_invariant(self):
        if self.timer_status == TimerStatus.RUNNING:
            if self.timer_started_at is None:
                raise ValueError("a running timer needs timer_started_at")
            if as_utc(self.timer_started_at) > utc_now():
                raise ValueError("timer_started_at is in the future")
        if self.timer_status == TimerStatus.IDLE and (self.timer_started_at or self.timer_paused_at):
            raise ValueError("an idle timer has no start or pause time")
        return self


class RecordSessionRequest(BaseModel):
    """duration_seconds, xp_earned and coins_earned sent by clients are ignored.
    Pomodoro sessions are only recorded through /api/pomodoro/{id}/complete."""

    task_id: str
    start_time: datetime
    end_time: datetime
    session_type: SessionType = SessionType.MANUAL
    status: SessionStatus = SessionStatus.COMPLETED

    @model_validator(mode="after")
    def check_span(self):
        if self.session_type == SessionType.POMODORO:
            raise ValueError("pomodoro sessions are recorded by completing a pomodoro")
        if as_utc(self.end_time) < as_utc(self.start_time):
            raise ValueError("end_time is before start_time")
        return self


def _timer_fields(task) -> dict:
    return {
        "id": task.id,
        "timer_status": task.timer_status,
        "total_time_seconds": task.total_time_seconds,
        "timer_started_at": task.timer_started_at,
        "timer_paused_at": task.timer_paused_at,
        "accumulated_time_seconds": task.accumulated_time_seconds,
    }


@router.get("/timer")
def get_timer(
    task_id: str,
    store: FocusStore = Depends(get_store),
    user_id: str | None = Header(default=None, alias="X-User-Id"),
):
    """Timer state of a task."""
    uid = require_user_id(user_id)
    return _timer_fields(owned_task(store, task_id, uid))


@router.post("/timer")
def save_timer(
    req: TimerStateRequest,
    store: FocusStore = Depends(get_store),
    user_id: str | None = Header(default=None, alias="X-User-Id"),
):
    """Write a task's timer state. total_time_seconds is only ever changed by recording sessions."""
    uid = require_user_id(user_id)
    task = owned_task(store, req.task_id, uid)
    fields = req.model_dump(exclude={"task_id"})
    if req.timer_status == TimerStatus.IDLE:
        fields["run_started_at"] = None
    elif task.run_started_at is None:
        fields["run_started_at"] = req.timer_started_at or req.timer_paused_at
    fields["last_active_at"] = utc_now()
    return _timer_fields(store.update_task(req.task_id, **fields))


@router.post("/timer/sessions")
def record_session(
    req: RecordSessionRequest,
    store: FocusStore = Depends(get_store),
    recorder: SessionRecorder = Depends(get_recorder),
    user_id: str | None = Header(default=None, alias="X-User-Id"),
):
    """Record a finished session. Sessions under the floor are discarded, not stored."""
    uid = require_user_id(user_id)
    owned_task(store, req.task_id, uid)
    result = recorder.record(
        req.task_id, uid, req.start_time, req.end_time, req.session_type, req.status
    )
    if result is None:
        return {"session": None, "rewards": None, "discarded": True}
    return {"session": result.session, "rewards": result.reward.as_dict(), "discarded": False}


@router.get("/timer/sessions")
def list_sessions(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    task_id: Optional[str] = None,
    store: FocusStore = Depends(get_store),
    user_id: str | None = Header(default=None, alias="X-User-Id"),
):
    """List this user's sessions, newest first."""
    uid = require_user_id(user_id)
    return store.list_sessions(uid, start_date=start_date, end_date=end_date, task_id=task_id)


@router.delete("/timer/sessions/{session_id}")
def delete_session(
    session_id: str,
    store: FocusStore = Depends(get_store),
    user_id: str | None = Header(default=None, alias="X-User-Id"),
):
    uid = require_user_id(user_id)
    if not store.delete_session(session_id, uid):
        raise HTTPException(status_code=404, detail="Session not found")
    return {"success": True}
