"""Manual timer: transitions, paused gaps, the session floor and away detection."""
from datetime import timedelta

import pytest

from conftest import T0, TASK_ID
from focus_engine.clock import as_utc
from focus_engine.errors import InvalidTransition, PersistenceFailure
from focus_engine.events import (
    AwayEnded,
    PersistenceFailed,
    RunEnded,
    RunStarted,
    TimerAutoPaused,
    TimerTicked,
)
from focus_engine.recorder import SessionRecorder
from focus_engine.timer import TimerStateMachine, run_seconds
from models import SessionStatus, SessionType, TimerStatus


@pytest.fixture
def timer(task, store, recorder, scheduler, bus, clock, settings):
    return TimerStateMachine(task, store, recorder, scheduler, bus, clock, settings)


def test_start_runs_and_persists(timer, store):
    timer.start()
    saved = store.get_task(TASK_ID)
    assert saved.timer_status == TimerStatus.RUNNING
    assert as_utc(saved.timer_started_at) == T0
    assert as_utc(saved.run_started_at) == T0


@pytest.mark.parametrize("action", ["pause", "resume", "stop"])
def test_idle_timer_rejects(timer, action):
    with pytest.raises(InvalidTransition):
        getattr(timer, action)()


def test_running_timer_rejects_start_and_resume(timer):
    timer.start()
    with pytest.raises(InvalidTransition):
        timer.start()
    with pytest.raises(InvalidTransition):
        timer.resume()


def test_paused_gap_is_not_credited(timer, scheduler, store):
    timer.start()
    scheduler.advance(30)
    timer.pause()
    scheduler.advance(100)
    assert timer.current_session_seconds() == 30
    timer.resume()
    scheduler.advance(30)

    result = timer.stop()

    assert result.session.duration_seconds == 60
    assert store.get_task(TASK_ID).total_time_seconds == 60


def test_session_spans_whole_run(timer, scheduler):
    timer.start()
    scheduler.advance(45)
    timer.pause()
    scheduler.advance(55)
    timer.resume()
    scheduler.advance(45)

    result = timer.stop()

    session = result.session
    assert session.duration_seconds == 90
    assert session.session_type == SessionType.MANUAL
    assert session.status == SessionStatus.COMPLETED
    assert as_utc(session.start_time) == T0
    assert as_utc(session.end_time) == T0 + timedelta(seconds=145)


def test_stop_from_paused_records_banked_time(timer, scheduler):
    timer.start()
    scheduler.advance(120)
    timer.pause()
    scheduler.advance(600)

    result = timer.stop()

    assert result.session.duration_seconds == 120
    assert result.reward.xp == 2


def test_stop_resets_timer(timer, scheduler, store):
    timer.start()
    scheduler.advance(20)
    timer.stop()

    saved = store.get_task(TASK_ID)
    assert saved.timer_status == TimerStatus.IDLE
    assert saved.timer_started_at is None
    assert saved.run_started_at is None
    assert saved.accumulated_time_seconds == 0
    assert timer.display_seconds() == 20


def test_run_under_floor_is_discarded(timer, scheduler, store):
    timer.start()
    scheduler.advance(5)

    assert timer.stop() is None
    assert store.list_sessions("user-1") == []
    saved = store.get_task(TASK_ID)
    assert saved.total_time_seconds == 0
    assert saved.timer_status == TimerStatus.IDLE


def test_ticks_only_while_running(timer, scheduler, event_log):
    log = event_log(TimerTicked)
    timer.start()
    scheduler.advance(3)
    assert [e.display_seconds for e in log.events] == [1, 2, 3]

    timer.pause()
    assert scheduler.pending == []
    scheduler.advance(10)
    assert len(log.events) == 3

    timer.resume()
    assert len(scheduler.pending) == 1
    timer.stop()
    assert scheduler.pending == []


def test_start_and_stop_announce_run(timer, scheduler, event_log):
    log = event_log(RunStarted, RunEnded)
    timer.start()
    scheduler.advance(15)
    timer.stop()
    assert [type(e) for e in log.events] == [RunStarted, RunEnded]
    assert all(e.source is timer for e in log.events)


def test_run_seconds_of_loaded_task(task, clock):
    task.timer_status = TimerStatus.RUNNING
    task.timer_started_at = T0
    task.accumulated_time_seconds = 40
    clock.advance(20)
    assert run_seconds(task, clock()) == 60

    task.timer_status = TimerStatus.PAUSED
    assert run_seconds(task, clock()) == 40

    task.timer_status = TimerStatus.IDLE
    assert run_seconds(task, clock()) == 0


def test_short_absence_keeps_running(timer, scheduler, event_log):
    log = event_log(AwayEnded, TimerAutoPaused)
    timer.start()
    scheduler.advance(10)
    timer.page_hidden()
    scheduler.advance(20)
    timer.page_visible()

    assert timer.status == TimerStatus.RUNNING
    assert timer.current_session_seconds() == 30
    assert log.events == [AwayEnded(TASK_ID, 20, resumed=True)]
    assert len(scheduler.pending) == 1


def test_long_absence_auto_pauses_at_threshold(timer, scheduler, event_log):
    log = event_log(AwayEnded, TimerAutoPaused)
    timer.start()
    scheduler.advance(10)
    timer.page_hidden()
    scheduler.advance(40)

    assert timer.status == TimerStatus.PAUSED
    assert timer.current_session_seconds() == 40
    assert log.of(TimerAutoPaused) == [TimerAutoPaused(TASK_ID, 30)]

    timer.page_visible()
    assert log.of(AwayEnded) == [AwayEnded(TASK_ID, 40, resumed=False)]
    assert timer.status == TimerStatus.PAUSED


def test_resume_cancels_pending_auto_pause(timer, scheduler):
    timer.start()
    timer.page_hidden()
    scheduler.advance(5)
    timer.pause()
    timer.resume()
    scheduler.advance(60)
    assert timer.status == TimerStatus.RUNNING


def test_hidden_while_idle_does_nothing(timer, scheduler):
    timer.page_hidden()
    assert scheduler.pending == []


def test_dispose_cancels_ticks_without_stopping(timer, scheduler, store):
    timer.start()
    timer.page_hidden()
    timer.dispose()
    assert scheduler.pending == []
    assert store.get_task(TASK_ID).timer_status == TimerStatus.RUNNING


def test_failed_recording_leaves_timer_stopped(task, failing_store, settings, scheduler, bus, clock, event_log):
    store = failing_store("create_session")
    recorder = SessionRecorder(store, settings, bus)
    timer = TimerStateMachine(task, store, recorder, scheduler, bus, clock, settings)
    log = event_log(RunEnded, PersistenceFailed)
    timer.start()
    scheduler.advance(60)

    with pytest.raises(PersistenceFailure):
        timer.stop()

    assert timer.status == TimerStatus.IDLE
    assert scheduler.pending == []
    assert store.get_task(TASK_ID).timer_status == TimerStatus.IDLE
    assert [type(e) for e in log.events] == [PersistenceFailed, RunEnded]


def test_failed_persist_is_reported(task, failing_store, recorder, scheduler, bus, clock, settings, event_log):
    store = failing_store("update_task")
    timer = TimerStateMachine(task, store, recorder, scheduler, bus, clock, settings)
    log = event_log(PersistenceFailed)

    with pytest.raises(PersistenceFailure):
        timer.start()

    assert log.events == [PersistenceFailed("update_task", "database is locked", TASK_ID)]
