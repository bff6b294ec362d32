"""
Time-Tracking Ledger

At most one open timer per task. Stopping a timer closes it into a
TimeEntry whose duration is the elapsed minutes rounded half-up, never less
than one minute. total_time_spent is adjusted in the same unit of work as
the entry list, and each ledger mutation logs one "updated" activity.
"""

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from .activity_log import ActivityLog
from .entity_store import EntityStore
from .errors import (
    EntryNotFoundError,
    NoTimerRunningError,
    TimerAlreadyRunningError,
    ValidationError,
)
from .models import (
    ActivityAction,
    Actor,
    DATE_RE,
    Task,
    TimeEntry,
    new_id,
    parse_timestamp,
    utc_now,
)

logger = logging.getLogger("time_tracking")


def elapsed_minutes(start: datetime, end: datetime) -> int:
    """Whole minutes between start and end, rounded half-up, minimum 1."""
    minutes = (end - start).total_seconds() / 60
    return max(1, math.floor(minutes + 0.5))


class TimeLedger:
    def __init__(
        self,
        store: EntityStore,
        activity_log: ActivityLog,
        clock: Callable[[], datetime] = utc_now
    ):
        self.store = store
        self.activity_log = activity_log
        self.clock = clock

    def _load(self, task_id: str) -> Task:
        return Task.from_dict(self.store.require("tasks", task_id))

    def start_timer(self, task_id: str, actor: Actor = Actor.SYSTEM) -> Dict[str, Any]:
        """
        Open a timer on a task.

        Raises:
            NotFoundError: unknown task
            TimerAlreadyRunningError: a timer is already open
        """
        with self.store.transaction():
            task = self._load(task_id)
            if task.timer_running:
                logger.warning(f"Timer already running for '{task.title}'")
                raise TimerAlreadyRunningError(task_id, task.active_timer_start)

            start = self.clock().isoformat()
            self.store.patch("tasks", task_id, {
                "active_timer_start": start,
                "updated_at": start,
            })
            self.activity_log.append(
                task.id, task.title, ActivityAction.UPDATED, actor=actor,
                details="timer started",
            )

        logger.info(f"Timer started for '{task.title}'")
        return {"task_id": task_id, "start_time": start}

    def stop_timer(
        self,
        task_id: str,
        notes: Optional[str] = None,
        actor: Actor = Actor.SYSTEM
    ) -> Dict[str, Any]:
        """
        Close the open timer into a time entry.

        Raises:
            NotFoundError: unknown task
            NoTimerRunningError: no timer is open
        """
        with self.store.transaction():
            task = self._load(task_id)
            if not task.timer_running:
                logger.warning(f"No timer running for '{task.title}'")
                raise NoTimerRunningError(task_id)

            end = self.clock()
            start = parse_timestamp(task.active_timer_start)
            duration = elapsed_minutes(start, end)
            entry = TimeEntry(
                id=new_id(),
                start_time=task.active_timer_start,
                end_time=end.isoformat(),
                duration=duration,
                notes=notes,
            )
            total = task.total_time_spent + duration

            self.store.patch("tasks", task_id, {
                "active_timer_start": None,
                "time_entries": [e.to_dict() for e in task.time_entries] + [entry.to_dict()],
                "total_time_spent": total,
                "updated_at": entry.end_time,
            })
            self.activity_log.append(
                task.id, task.title, ActivityAction.UPDATED, actor=actor,
                details=f"time logged: {duration}m",
            )

        logger.info(f"Timer stopped for '{task.title}': {duration}m (total {total}m)")
        return {
            "task_id": task_id,
            "entry": entry.to_dict(),
            "duration": duration,
            "total_time_spent": total,
        }

    def add_manual_time(
        self,
        task_id: str,
        duration: int,
        date: Optional[str] = None,
        notes: Optional[str] = None,
        actor: Actor = Actor.SYSTEM
    ) -> int:
        """
        Record time worked without a timer; returns the new total.

        A date (YYYY-MM-DD) backdates the entry to midnight UTC of that day.
        """
        errors = []
        if isinstance(duration, bool) or not isinstance(duration, int) or duration <= 0:
            errors.append("duration must be a positive integer number of minutes")
        if date is not None and not DATE_RE.match(date):
            errors.append("date must be YYYY-MM-DD")
        if errors:
            raise ValidationError(errors)

        with self.store.transaction():
            task = self._load(task_id)
            if date is not None:
                start = datetime.strptime(date, "%Y-%m-%d").replace(tzinfo=timezone.utc)
            else:
                start = self.clock() - timedelta(minutes=duration)
            entry = TimeEntry(
                id=new_id(),
                start_time=start.isoformat(),
                end_time=(start + timedelta(minutes=duration)).isoformat(),
                duration=duration,
                notes=notes,
            )
            total = task.total_time_spent + duration

            self.store.patch("tasks", task_id, {
                "time_entries": [e.to_dict() for e in task.time_entries] + [entry.to_dict()],
                "total_time_spent": total,
                "updated_at": self.clock().isoformat(),
            })
            self.activity_log.append(
                task.id, task.title, ActivityAction.UPDATED, actor=actor,
                details=f"time logged: {duration}m",
            )

        logger.info(f"Manual time on '{task.title}': {duration}m (total {total}m)")
        return total

    def delete_time_entry(
        self,
        task_id: str,
        entry_id: str,
        actor: Actor = Actor.SYSTEM
    ) -> int:
        """
        Remove a time entry and take its duration off the total (floored at 0).

        Raises:
            NotFoundError: unknown task
            EntryNotFoundError: unknown entry
        """
        with self.store.transaction():
            task = self._load(task_id)
            entry = next((e for e in task.time_entries if e.id == entry_id), None)
            if entry is None:
                raise EntryNotFoundError(task_id, entry_id)

            total = max(0, task.total_time_spent - entry.duration)
            self.store.patch("tasks", task_id, {
                "time_entries": [e.to_dict() for e in task.time_entries if e.id != entry_id],
                "total_time_spent": total,
                "updated_at": self.clock().isoformat(),
            })
            self.activity_log.append(
                task.id, task.title, ActivityAction.UPDATED, actor=actor,
                details=f"time entry removed: {entry.duration}m",
            )

        logger.info(f"Time entry removed from '{task.title}': {entry.duration}m (total {total}m)")
        return total
