"""
Time-Tracking Ledger Tests

Uses a controllable clock so durations are exact.
"""

from datetime import datetime, timedelta, timezone

import pytest

from groundcontrol.errors import (
    EntryNotFoundError,
    NoTimerRunningError,
    NotFoundError,
    TimerAlreadyRunningError,
    ValidationError,
)
from groundcontrol.models import Actor
from groundcontrol.time_tracking import TimeLedger, elapsed_minutes


@pytest.fixture
def ledger(services, clock):
    return TimeLedger(services.store, services.activity, clock=clock)


@pytest.fixture
def task_id(engine):
    return engine.create_task("Billable work")


def details(services, task_id):
    return [
        a.details for a in reversed(services.activity.activity_for_task(task_id))
        if a.action == "updated"
    ]


class TestElapsedMinutes:
    start = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)

    @pytest.mark.parametrize("seconds, expected", [
        (0, 1),
        (20, 1),
        (89, 1),
        (90, 2),
        (149, 2),
        (150, 3),
        (3600, 60),
    ])
    def test_rounding(self, seconds, expected):
        end = self.start + timedelta(seconds=seconds)
        assert elapsed_minutes(self.start, end) == expected


class TestTimer:
    def test_start_and_stop(self, services, engine, ledger, clock, task_id):
        started = ledger.start_timer(task_id, actor=Actor.CLIFTON)
        assert started == {"task_id": task_id, "start_time": clock().isoformat()}
        assert engine.get_task(task_id).timer_running

        clock.advance(minutes=2, seconds=30)
        result = ledger.stop_timer(task_id, notes="pairing")

        assert result["duration"] == 3
        assert result["total_time_spent"] == 3
        assert result["entry"]["notes"] == "pairing"
        task = engine.get_task(task_id)
        assert not task.timer_running
        assert [e.duration for e in task.time_entries] == [3]
        assert details(services, task_id) == ["timer started", "time logged: 3m"]

    def test_short_session_counts_one_minute(self, engine, ledger, clock, task_id):
        ledger.start_timer(task_id)
        clock.advance(seconds=20)
        assert ledger.stop_timer(task_id)["duration"] == 1

    def test_entry_without_notes_omits_field(self, ledger, clock, task_id):
        ledger.start_timer(task_id)
        clock.advance(minutes=5)
        assert "notes" not in ledger.stop_timer(task_id)["entry"]

    def test_second_start_rejected(self, ledger, task_id):
        ledger.start_timer(task_id)
        with pytest.raises(TimerAlreadyRunningError):
            ledger.start_timer(task_id)

    def test_stop_without_timer(self, services, ledger, task_id):
        with pytest.raises(NoTimerRunningError):
            ledger.stop_timer(task_id)
        assert details(services, task_id) == []

    def test_missing_task(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.start_timer("missing")

    def test_totals_accumulate(self, engine, ledger, clock, task_id):
        for minutes in (10, 25):
            ledger.start_timer(task_id)
            clock.advance(minutes=minutes)
            ledger.stop_timer(task_id)
        assert engine.get_task(task_id).total_time_spent == 35


class TestManualTime:
    def test_backdated_entry(self, engine, ledger, task_id):
        assert ledger.add_manual_time(task_id, 30, date="2025-02-10", notes="call") == 30

        entry = engine.get_task(task_id).time_entries[0]
        assert entry.start_time == "2025-02-10T00:00:00+00:00"
        assert entry.end_time == "2025-02-10T00:30:00+00:00"
        assert entry.notes == "call"

    def test_ends_now_without_date(self, engine, ledger, clock, task_id):
        ledger.add_manual_time(task_id, 45)
        entry = engine.get_task(task_id).time_entries[0]
        assert entry.end_time == clock().isoformat()
        assert entry.start_time == "2025-03-01T08:15:00+00:00"

    @pytest.mark.parametrize("duration, date", [
        (0, None),
        (-5, None),
        (True, None),
        (1.5, None),
        (10, "10/02/2025"),
    ])
    def test_rejects_bad_input(self, services, ledger, task_id, duration, date):
        with pytest.raises(ValidationError):
            ledger.add_manual_time(task_id, duration, date=date)
        assert details(services, task_id) == []

    def test_logs_activity(self, services, ledger, task_id):
        ledger.add_manual_time(task_id, 15, actor=Actor.SAGE)
        record = services.activity.activity_for_task(task_id)[0]
        assert (record.details, record.actor) == ("time logged: 15m", "sage")


class TestDeleteEntry:
    def test_removes_and_subtracts(self, services, engine, ledger, task_id):
        ledger.add_manual_time(task_id, 20)
        ledger.add_manual_time(task_id, 40)
        entry_id = engine.get_task(task_id).time_entries[0].id

        assert ledger.delete_time_entry(task_id, entry_id) == 40
        assert [e.duration for e in engine.get_task(task_id).time_entries] == [40]
        assert details(services, task_id)[-1] == "time entry removed: 20m"

    def test_total_never_negative(self, services, engine, ledger, task_id):
        ledger.add_manual_time(task_id, 30)
        entry_id = engine.get_task(task_id).time_entries[0].id
        services.store.patch("tasks", task_id, {"total_time_spent": 5})

        assert ledger.delete_time_entry(task_id, entry_id) == 0

    def test_unknown_entry(self, ledger, task_id):
        with pytest.raises(EntryNotFoundError):
            ledger.delete_time_entry(task_id, "nope")
