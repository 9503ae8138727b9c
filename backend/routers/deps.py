from fastapi import Depends, HTTPException

from config import EngineSettings, get_settings
from db import get_store
from focus_engine.errors import TaskNotFound
from focus_engine.recorder import SessionRecorder
from focus_engine.store import FocusStore
from models import Task


def require_user_id(user_id: str | None) -> str:
    if not user_id:
        raise HTTPException(status_code=400, detail="Missing X-User-Id header")
    return user_id


def owned_task(store: FocusStore, task_id: str, user_id: str) -> Task:
    """Load a task; another user's task is reported as not found."""
    task = store.get_task(task_id)
    if task.user_id != user_id:
        raise TaskNotFound(task_id)
    return task


def get_recorder(
    store: FocusStore = Depends(get_store),
    settings: EngineSettings = Depends(get_settings),
) -> SessionRecorder:
    return SessionRecorder(store, settings)
