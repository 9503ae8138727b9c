from typing import Optional, Tuple


class FocusEngineError(Exception):
    """Base class for focus time engine errors."""


class InvalidTransition(FocusEngineError):
    def __init__(self, action: str, state: str, task_id: Optional[str] = None):
        self.action = action
        self.state = state
        self.task_id = task_id
        where = f" for task {task_id}" if task_id else ""
        super().__init__(f"Cannot {action} while {state}{where}")


class TaskNotFound(FocusEngineError):
    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Task not found: {task_id}")


class PomodoroNotFound(FocusEngineError):
    def __init__(self, pomodoro_id: str):
        self.pomodoro_id = pomodoro_id
        super().__init__(f"Pomodoro session not found: {pomodoro_id}")


class PersistenceFailure(FocusEngineError):
    """A storage write or read failed.

    completed_steps lists the parts of a composite write that were applied
    before the failure, so callers can retry only what is missing.
    """

    def __init__(self, operation: str, message: str = ""):
        self.operation = operation
        self.message = message
        self.completed_steps: Tuple[str, ...] = ()
        super().__init__(f"{operation} failed: {message}" if message else f"{operation} failed")
