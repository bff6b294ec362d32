"""
Activity Log - Append-Only Audit Trail

Every state change on a task leaves one immutable Activity record.

IMPORTANT:
- append() is the only write; records are never patched or deleted
- Records live in the "activity" table of the same store, so they commit
  (or roll back) together with the mutation that produced them
- task_title is snapshotted at write time; records outlive their task
- Subscribers are called after commit only
"""

import logging
from typing import Callable, List, Optional

from .entity_store import EntityStore
from .models import Activity, ActivityAction, Actor, new_id, utc_now_iso

logger = logging.getLogger("activity_log")

TABLE = "activity"
DEFAULT_LIMIT = 50
DETAILS_PREVIEW = 100


def truncate(text: str, limit: int) -> str:
    """Cut text to limit characters, marking the cut with '...'."""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


class ActivityLog:
    def __init__(self, store: EntityStore):
        self.store = store
        self._subscribers: List[Callable[[Activity], None]] = []

    def subscribe(self, callback: Callable[[Activity], None]) -> None:
        """Call callback with every record once its unit of work commits."""
        self._subscribers.append(callback)

    def append(
        self,
        task_id: str,
        task_title: str,
        action: ActivityAction,
        actor: Actor = Actor.SYSTEM,
        details: Optional[str] = None,
    ) -> Activity:
        with self.store.transaction() as uow:
            activity = Activity(
                id=new_id(),
                task_id=task_id,
                task_title=task_title,
                action=ActivityAction(action).value,
                actor=Actor(actor).value,
                created_at=utc_now_iso(),
                sequence=self.store.count(TABLE) + 1,
                details=details,
            )
            self.store.insert(TABLE, activity.to_dict())
            for callback in self._subscribers:
                uow.on_commit(lambda cb=callback: cb(activity))

        logger.debug(f"Activity {activity.action} on '{task_title}' by {activity.actor}")
        return activity

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def _newest_first(self, rows) -> List[Activity]:
        records = [Activity.from_dict(row) for row in rows]
        records.sort(key=lambda a: (a.created_at, a.sequence), reverse=True)
        return records

    def recent_activity(self, limit: int = DEFAULT_LIMIT) -> List[Activity]:
        return self._newest_first(self.store.query(TABLE))[:max(0, limit)]

    def activity_for_task(self, task_id: str) -> List[Activity]:
        return self._newest_first(self.store.query(TABLE, task_id=task_id))
