"""Session recording: server-side durations, rewards, levels and partial failures."""
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from conftest import T0, TASK_ID, USER_ID, add_rows
from focus_engine.errors import PersistenceFailure, TaskNotFound
from focus_engine.events import LeveledUp, PersistenceFailed, RewardGranted, SessionRecorded
from focus_engine.recorder import SessionRecorder
from focus_engine.store import FocusStore, level_for_xp
from models import SessionStatus, SessionType, Task


def _after(seconds):
    return T0 + timedelta(seconds=seconds)


def test_manual_session_earns_per_minute(task, recorder, store):
    result = recorder.record(TASK_ID, USER_ID, T0, _after(125))

    assert result.session.duration_seconds == 125
    assert (result.reward.xp, result.reward.coins) == (2, 1)
    assert (result.session.xp_earned, result.session.coins_earned) == (2, 1)
    profile = store.get_profile(USER_ID)
    assert (profile.xp, profile.coins) == (2, 1)
    assert store.get_task(TASK_ID).total_time_seconds == 125


def test_minutes_round_half_up(recorder):
    assert recorder.compute_reward(150, SessionType.MANUAL, SessionStatus.COMPLETED) == (3, 2)
    assert recorder.compute_reward(89, SessionType.MANUAL, SessionStatus.COMPLETED) == (1, 1)
    assert recorder.compute_reward(29, SessionType.MANUAL, SessionStatus.COMPLETED) == (0, 0)


def test_pomodoro_rewards_are_flat(recorder):
    assert recorder.compute_reward(1500, SessionType.POMODORO, SessionStatus.COMPLETED) == (5, 2)
    assert recorder.compute_reward(3000, SessionType.POMODORO, SessionStatus.COMPLETED) == (5, 2)
    assert recorder.compute_reward(900, SessionType.POMODORO, SessionStatus.INTERRUPTED) == (0, 0)
    assert recorder.compute_reward(300, SessionType.BREAK, SessionStatus.COMPLETED) == (0, 0)


def test_idle_seconds_are_subtracted(task, recorder):
    result = recorder.record(TASK_ID, USER_ID, T0, _after(145), idle_seconds=55)
    assert result.session.duration_seconds == 90


def test_session_under_floor_touches_nothing(task, failing_store, settings, bus, event_log):
    store = failing_store("get_task", "create_session", "update_task", "get_profile", "update_profile")
    recorder = SessionRecorder(store, settings, bus)
    log = event_log(SessionRecorded, PersistenceFailed)

    assert recorder.record(TASK_ID, USER_ID, T0, _after(9)) is None
    assert log.events == []


def test_break_earns_nothing_and_adds_no_focus_time(task, recorder, store):
    result = recorder.record(TASK_ID, USER_ID, T0, _after(300), SessionType.BREAK)

    assert result.session.session_type == SessionType.BREAK
    assert result.reward.xp == 0
    assert store.get_task(TASK_ID).total_time_seconds == 0


def test_unknown_task(profile, recorder):
    with pytest.raises(TaskNotFound):
        recorder.record("missing", USER_ID, T0, _after(60))


def test_level_up_crosses_hundred_xp(task, recorder, store, event_log):
    store.update_profile(USER_ID, xp=95)
    log = event_log(RewardGranted, LeveledUp)

    result = recorder.record(TASK_ID, USER_ID, T0, _after(600))

    assert result.reward.level_up is True
    assert result.reward.new_level == 2
    assert store.get_profile(USER_ID).level == 2
    assert log.events == [RewardGranted(USER_ID, 10, 5), LeveledUp(USER_ID, 2, 1)]


def test_no_level_up_below_threshold(task, recorder, store, event_log):
    store.update_profile(USER_ID, xp=95)
    log = event_log(LeveledUp)

    result = recorder.record(TASK_ID, USER_ID, T0, _after(240))

    assert result.reward.level_up is False
    assert store.get_profile(USER_ID).xp == 99
    assert log.events == []


def test_level_for_xp():
    assert level_for_xp(0) == 1
    assert level_for_xp(99) == 1
    assert level_for_xp(100) == 2
    assert level_for_xp(250, xp_per_level=50) == 6


def test_missing_profile_still_records_time(engine, recorder, store):
    add_rows(engine, Task(id="orphan", user_id="ghost", title="No profile"))

    result = recorder.record("orphan", "ghost", T0, _after(120))

    assert result.session.duration_seconds == 120
    assert result.reward.level_up is False
    assert store.get_task("orphan").total_time_seconds == 120


def test_profile_failure_reports_completed_steps(task, failing_store, settings, bus, event_log):
    store = failing_store("update_profile")
    recorder = SessionRecorder(store, settings, bus)
    log = event_log(SessionRecorded, PersistenceFailed)

    with pytest.raises(PersistenceFailure) as excinfo:
        recorder.record(TASK_ID, USER_ID, T0, _after(120))

    assert excinfo.value.completed_steps == ("session", "task_total")
    assert log.events == [PersistenceFailed("update_profile", "database is locked", TASK_ID)]
    assert store.get_task(TASK_ID).total_time_seconds == 120


def test_task_failure_stops_before_rewards(task, failing_store, settings, bus, store):
    failing = failing_store("update_task")
    recorder = SessionRecorder(failing, settings, bus)

    with pytest.raises(PersistenceFailure) as excinfo:
        recorder.record(TASK_ID, USER_ID, T0, _after(120))

    assert excinfo.value.completed_steps == ("session",)
    assert len(store.list_sessions(USER_ID)) == 1
    assert store.get_profile(USER_ID).xp == 0


def test_list_and_delete_sessions(task, recorder, store):
    first = recorder.record(TASK_ID, USER_ID, T0, _after(60)).session
    second = recorder.record(TASK_ID, USER_ID, _after(3600), _after(3700)).session

    assert [s.id for s in store.list_sessions(USER_ID)] == [second.id, first.id]
    assert [s.id for s in store.list_sessions(USER_ID, start_date=_after(60))] == [second.id]
    assert store.delete_session(first.id, "someone-else") is False
    assert store.delete_session(first.id, USER_ID) is True
    assert [s.id for s in store.list_sessions(USER_ID)] == [second.id]


def test_task_lookup_failure_is_reported(task, failing_store, settings, bus, event_log):
    recorder = SessionRecorder(failing_store("get_task"), settings, bus)
    log = event_log(PersistenceFailed)

    with pytest.raises(PersistenceFailure) as excinfo:
        recorder.record(TASK_ID, USER_ID, T0, _after(60))

    assert excinfo.value.completed_steps == ()
    assert log.events == [PersistenceFailed("get_task", "database is locked", TASK_ID)]


def test_database_errors_become_persistence_failures():
    def broken_session():
        raise OperationalError("SELECT 1", {}, Exception("disk I/O error"))

    with pytest.raises(PersistenceFailure) as excinfo:
        FocusStore(broken_session).get_task(TASK_ID)

    assert excinfo.value.operation == "get_task"
    assert isinstance(excinfo.value.__cause__, OperationalError)
