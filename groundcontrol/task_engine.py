"""
Task Engine - Transition State Machine

Owns every mutation of a task and the rules that keep the board consistent.

State model:
- Any status may move to any other status
- Entering DONE is rejected while an existing blocker is not done
  (force=True bypasses the check; deleted blockers never block)
- Entering DONE clears the assignee unless the same call sets one
- Status changes reorder through the ordering engine (dense per column)

Audit:
- created, updated, moved, completed, assigned, deleted records are written
  in the same unit of work as the change
- Assigning the remote collaborator enqueues an assignment notification
  after commit

Every check runs before the first write; anything raised afterwards rolls
the whole unit of work back.
"""

import logging
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .activity_log import ActivityLog
from .entity_store import EntityStore
from .errors import BlockedTransitionError, ValidationError
from .models import (
    ActivityAction,
    Actor,
    Assignee,
    Comment,
    DATE_RE,
    Priority,
    RecurringRule,
    REMOTE_COLLABORATOR,
    Subtask,
    Task,
    TaskStatus,
    new_id,
    utc_now_iso,
)
from .notifications import NotificationOutbox, NotificationTemplates
from .ordering import OrderingEngine

logger = logging.getLogger("task_engine")

TABLE = "tasks"

# Fields that produce a single "updated" record with one clause each
UPDATABLE_FIELDS = (
    "title",
    "description",
    "priority",
    "project",
    "due_date",
    "time_estimate",
    "subtasks",
    "recurring",
    "blocked_by",
    "comments",
)
TRANSITION_FIELDS = ("status", "assignee", "order")
COLLECTION_FIELDS = ("subtasks", "recurring", "blocked_by", "comments")


# -----------------------------------------------------------------------------
# Validation
# -----------------------------------------------------------------------------
def _parse_enum(enum_cls, value, name: str, errors: List[str]):
    try:
        return enum_cls(getattr(value, "value", value))
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        errors.append(f"{name} must be one of: {allowed}")
        return None


def _valid_date(value: str) -> bool:
    if not isinstance(value, str) or not DATE_RE.match(value):
        return False
    try:
        datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        return False
    return True


def _parse_subtasks(value, errors: List[str]) -> List[Subtask]:
    subtasks = []
    for item in value or []:
        if isinstance(item, Subtask):
            subtasks.append(item)
        elif isinstance(item, str) and item.strip():
            subtasks.append(Subtask(id=new_id(), title=item.strip()))
        elif isinstance(item, dict) and str(item.get("title", "")).strip():
            subtasks.append(Subtask.from_dict(item))
        else:
            errors.append("subtasks must be titles or {title, completed} objects")
            break
    return subtasks


def _parse_recurring(value, errors: List[str]) -> Optional[RecurringRule]:
    if value is None:
        return None
    if isinstance(value, RecurringRule):
        rule = value
    else:
        try:
            rule = RecurringRule.from_dict(dict(value))
        except (KeyError, TypeError, ValueError):
            errors.append("recurring must have a valid frequency (daily, weekly, monthly)")
            return None
    if rule.interval < 1:
        errors.append("recurring.interval must be at least 1")
    if rule.next_due is not None and not _valid_date(rule.next_due):
        errors.append("recurring.next_due must be YYYY-MM-DD")
    return rule


def normalize_task_fields(fields: Dict[str, Any], task_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Validate caller-supplied task fields and convert them to model types.

    Raises:
        ValidationError: listing every problem found
    """
    errors: List[str] = []
    out: Dict[str, Any] = {}

    for name, value in fields.items():
        if name == "title":
            if not isinstance(value, str) or not value.strip():
                errors.append("title is required")
            else:
                out[name] = value.strip()
        elif name == "description":
            out[name] = "" if value is None else str(value)
        elif name == "assignee":
            out[name] = _parse_enum(Assignee, value, name, errors)
        elif name == "priority":
            out[name] = _parse_enum(Priority, value, name, errors)
        elif name == "status":
            out[name] = _parse_enum(TaskStatus, value, name, errors)
        elif name == "project":
            out[name] = str(value) if value else None
        elif name == "due_date":
            if value is not None and not _valid_date(value):
                errors.append("due_date must be YYYY-MM-DD")
            out[name] = value or None
        elif name == "time_estimate":
            if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value < 0):
                errors.append("time_estimate must be a non-negative integer")
            out[name] = value
        elif name == "subtasks":
            out[name] = _parse_subtasks(value, errors)
        elif name == "recurring":
            out[name] = _parse_recurring(value, errors)
        elif name == "blocked_by":
            blockers = list(dict.fromkeys(value or []))
            if task_id is not None and task_id in blockers:
                errors.append("a task cannot block itself")
            out[name] = blockers
        elif name == "order":
            if isinstance(value, bool) or not isinstance(value, int):
                errors.append("order must be an integer")
            out[name] = value
        elif name == "comments":
            try:
                out[name] = [c if isinstance(c, Comment) else Comment.from_dict(c) for c in value or []]
            except (KeyError, TypeError, ValueError):
                errors.append("comments must be {author, content} objects")
        else:
            errors.append(f"Unknown task field: {name}")

    if errors:
        raise ValidationError(errors)
    return out


def _comparable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, RecurringRule):
        return value.to_dict()
    if isinstance(value, list):
        return [_comparable(v) for v in value]
    if isinstance(value, (Subtask, Comment)):
        return value.to_dict()
    return value


def _display(value: Any) -> str:
    if value is None or value == "":
        return "none"
    if isinstance(value, Enum):
        return value.value
    return str(value)


def _stored(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (RecurringRule, Subtask, Comment)):
        return value.to_dict()
    if isinstance(value, list):
        return [_stored(v) for v in value]
    return value


# -----------------------------------------------------------------------------
# Engine
# -----------------------------------------------------------------------------
class TaskEngine:
    """
    Task mutations and queries.

    Mutations take an actor (default: system) that is recorded on every
    activity record they write.
    """

    def __init__(
        self,
        store: EntityStore,
        activity_log: ActivityLog,
        outbox: Optional[NotificationOutbox] = None
    ):
        self.store = store
        self.activity_log = activity_log
        self.outbox = outbox
        self.ordering = OrderingEngine(store, TABLE, "status")

    def _load(self, task_id: str) -> Task:
        return Task.from_dict(self.store.require(TABLE, task_id))

    def get_task(self, task_id: str) -> Task:
        return self._load(task_id)

    # -------------------------------------------------------------------------
    # Blocking
    # -------------------------------------------------------------------------

    def _incomplete_blockers(self, task: Task) -> List[Dict[str, Any]]:
        blockers = []
        for blocker_id in task.blocked_by:
            doc = self.store.get(TABLE, blocker_id)
            if doc is not None and doc["status"] != TaskStatus.DONE.value:
                blockers.append(doc)
        return blockers

    def _check_blockers(self, task: Task) -> None:
        blockers = self._incomplete_blockers(task)
        if blockers:
            titles = [b["title"] for b in blockers]
            logger.warning(f"Rejected completion of '{task.title}': blocked by {titles}")
            raise BlockedTransitionError(task.title, titles)

    def get_blocker_status(self, task_id: str) -> Dict[str, Any]:
        """Existing blockers of a task and whether any is still open."""
        task = self._load(task_id)
        blockers = []
        for blocker_id in task.blocked_by:
            doc = self.store.get(TABLE, blocker_id)
            if doc is not None:
                blockers.append({"id": doc["id"], "title": doc["title"], "status": doc["status"]})
        return {
            "has_incomplete_blockers": any(b["status"] != TaskStatus.DONE.value for b in blockers),
            "blockers": blockers,
        }

    # -------------------------------------------------------------------------
    # Core transition
    # -------------------------------------------------------------------------

    def _apply(
        self,
        task: Task,
        changes: Dict[str, Any],
        actor: Actor,
        force: bool = False,
        note: Optional[str] = None,
    ) -> bool:
        """
        Apply normalized changes to one task inside the active unit of work.

        Returns True when anything changed.
        """
        new_status = changes.get("status", task.status)
        status_changed = new_status != task.status
        entering_done = status_changed and new_status == TaskStatus.DONE

        if entering_done and not force:
            self._check_blockers(task)

        explicit_assignee = "assignee" in changes
        new_assignee = changes.get("assignee", task.assignee)
        auto_cleared = (
            entering_done
            and not explicit_assignee
            and task.assignee != Assignee.UNASSIGNED
        )
        if auto_cleared:
            new_assignee = Assignee.UNASSIGNED

        patch: Dict[str, Any] = {}
        clauses: List[str] = []
        for name in UPDATABLE_FIELDS:
            if name not in changes:
                continue
            old, new = getattr(task, name), changes[name]
            if _comparable(old) == _comparable(new):
                continue
            patch[name] = _stored(new)
            if name in COLLECTION_FIELDS:
                clauses.append(f"{name} updated")
            else:
                clauses.append(f"{name}: {_display(old)} → {_display(new)}")

        if new_assignee != task.assignee:
            patch["assignee"] = new_assignee.value

        title = patch.get("title", task.title)
        requested_order = changes.get("order")
        reordered: Optional[Tuple[int, int]] = None

        if status_changed:
            index = requested_order if requested_order is not None else self.ordering.append_order(new_status)
            self.ordering.move(task.to_dict(), new_status, index)
        elif requested_order is not None:
            final = self.ordering.move(task.to_dict(), task.status, requested_order)
            if final != task.order:
                reordered = (task.order, final)
                clauses.append(f"order: {task.order} → {final}")

        if not (patch or status_changed or reordered):
            return False

        now = utc_now_iso()
        patch["updated_at"] = now
        self.store.patch(TABLE, task.id, patch)

        if status_changed:
            details = f"{task.status.value} → {new_status.value}"
            if auto_cleared:
                details += " (assignee auto-cleared)"
            if note:
                details += f" ({note})"
            self.activity_log.append(task.id, title, ActivityAction.MOVED, actor=actor, details=details)
            if entering_done:
                self.activity_log.append(task.id, title, ActivityAction.COMPLETED, actor=actor)
            logger.info(f"Task '{title}' moved {details}")

        if explicit_assignee and new_assignee != task.assignee:
            self.activity_log.append(
                task.id, title, ActivityAction.ASSIGNED, actor=actor,
                details=f"assignee: {task.assignee.value} → {new_assignee.value}",
            )
            if new_assignee.value == REMOTE_COLLABORATOR:
                self._notify_assignment(task.id, title, actor)

        if clauses:
            self.activity_log.append(
                task.id, title, ActivityAction.UPDATED, actor=actor,
                details=", ".join(sorted(clauses)),
            )

        return True

    def _notify_assignment(self, task_id: str, title: str, actor: Actor) -> None:
        if self.outbox is None:
            return
        notification = NotificationTemplates.assignment(task_id, title, Actor(actor).value)
        self.store.on_commit(lambda: self.outbox.put(notification))

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def create_task(
        self,
        title: str,
        description: str = "",
        assignee: Assignee = Assignee.UNASSIGNED,
        priority: Priority = Priority.MEDIUM,
        status: TaskStatus = TaskStatus.TODO,
        project: Optional[str] = None,
        due_date: Optional[str] = None,
        time_estimate: Optional[int] = None,
        subtasks: Optional[List[Any]] = None,
        comments: Optional[List[Any]] = None,
        recurring: Optional[Any] = None,
        blocked_by: Optional[List[str]] = None,
        actor: Actor = Actor.SYSTEM,
        activity_details: Optional[str] = None,
    ) -> str:
        """
        Create a task at the end of its status column.

        Returns:
            The new task id

        Raises:
            ValidationError: on malformed input, before any write
        """
        fields = normalize_task_fields({
            "title": title,
            "description": description,
            "assignee": assignee,
            "priority": priority,
            "status": status,
            "project": project,
            "due_date": due_date,
            "time_estimate": time_estimate,
            "subtasks": subtasks,
            "comments": comments,
            "recurring": recurring,
            "blocked_by": blocked_by,
        })

        with self.store.transaction():
            task = Task(
                id=new_id(),
                title=fields["title"],
                description=fields["description"],
                assignee=fields["assignee"],
                priority=fields["priority"],
                status=fields["status"],
                order=self.ordering.append_order(fields["status"]),
                created_at=utc_now_iso(),
                project=fields["project"],
                due_date=fields["due_date"],
                time_estimate=fields["time_estimate"],
                subtasks=fields["subtasks"],
                comments=fields["comments"],
                blocked_by=fields["blocked_by"],
                recurring=fields["recurring"],
            )
            self.store.insert(TABLE, task.to_dict())
            self.activity_log.append(
                task.id, task.title, ActivityAction.CREATED, actor=actor,
                details=activity_details,
            )

        logger.info(f"Created task '{task.title}' in {task.status.value} at {task.order}")
        return task.id

    def update_task(
        self,
        task_id: str,
        actor: Actor = Actor.SYSTEM,
        force: bool = False,
        **fields: Any
    ) -> Task:
        """
        Patch a task; a status field goes through the transition rules.

        Raises:
            NotFoundError: unknown task
            BlockedTransitionError: completion blocked by an open blocker
            ValidationError: malformed fields
        """
        changes = normalize_task_fields(fields, task_id=task_id)
        with self.store.transaction():
            task = self._load(task_id)
            self._apply(task, changes, Actor(actor), force=force)
        return self._load(task_id)

    def move_task(
        self,
        task_id: str,
        new_status: TaskStatus,
        new_order: Optional[int] = None,
        force: bool = False,
        assignee: Optional[Assignee] = None,
        actor: Actor = Actor.SYSTEM,
        note: Optional[str] = None,
    ) -> Task:
        """
        Move a task to a column position (new_order None appends).

        Dropping a task on its own position is a no-op.
        """
        fields: Dict[str, Any] = {"status": new_status}
        if new_order is not None:
            fields["order"] = new_order
        if assignee is not None:
            fields["assignee"] = assignee
        changes = normalize_task_fields(fields, task_id=task_id)

        with self.store.transaction():
            task = self._load(task_id)
            self._apply(task, changes, Actor(actor), force=force, note=note)
        return self._load(task_id)

    def delete_task(self, task_id: str, actor: Actor = Actor.SYSTEM) -> bool:
        """Log, close the column gap and remove; a missing task is a no-op."""
        with self.store.transaction():
            doc = self.store.get(TABLE, task_id)
            if doc is None:
                return False
            self.activity_log.append(task_id, doc["title"], ActivityAction.DELETED, actor=Actor(actor))
            self.ordering.close_gap(doc)
            self.store.delete(TABLE, task_id)

        logger.info(f"Deleted task '{doc['title']}'")
        return True

    def bulk_update_tasks(
        self,
        task_ids: Iterable[str],
        actor: Actor = Actor.SYSTEM,
        force: bool = False,
        **fields: Any
    ) -> int:
        """
        Apply the same fields to many tasks in one unit of work.

        Missing ids are skipped; a blocked completion rejects the whole batch.
        """
        if "order" in fields:
            raise ValidationError(["order cannot be set in a bulk update"])
        changes = normalize_task_fields(fields)

        count = 0
        with self.store.transaction():
            for task_id in task_ids:
                doc = self.store.get(TABLE, task_id)
                if doc is None:
                    continue
                task = Task.from_dict(doc)
                if "blocked_by" in changes and task_id in changes["blocked_by"]:
                    raise ValidationError(["a task cannot block itself"])
                self._apply(task, changes, Actor(actor), force=force)
                count += 1

        logger.info(f"Bulk updated {count} tasks")
        return count

    def bulk_delete_tasks(self, task_ids: Iterable[str], actor: Actor = Actor.SYSTEM) -> int:
        count = 0
        with self.store.transaction():
            for task_id in task_ids:
                if self.delete_task(task_id, actor=actor):
                    count += 1
        return count

    def toggle_subtask(
        self,
        task_id: str,
        subtask_id: str,
        actor: Actor = Actor.SYSTEM
    ) -> Optional[Subtask]:
        """Flip a subtask's completed flag; unknown subtask ids are ignored."""
        with self.store.transaction():
            task = self._load(task_id)
            target = next((s for s in task.subtasks if s.id == subtask_id), None)
            if target is None:
                return None

            target.completed = not target.completed
            self.store.patch(TABLE, task_id, {
                "subtasks": [s.to_dict() for s in task.subtasks],
                "updated_at": utc_now_iso(),
            })
            state = "completed" if target.completed else "reopened"
            self.activity_log.append(
                task.id, task.title, ActivityAction.UPDATED, actor=Actor(actor),
                details=f"subtask {state}: {target.title}",
            )
        return target

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def _tasks(self, **filters: Any) -> List[Task]:
        docs = self.store.query(TABLE, **filters)
        docs.sort(key=lambda d: (d.get("order", 0), d.get("created_at", "")))
        return [Task.from_dict(d) for d in docs]

    def list_tasks(
        self,
        assignee: Optional[Assignee] = None,
        status: Optional[TaskStatus] = None
    ) -> List[Task]:
        filters = {}
        if assignee is not None:
            filters["assignee"] = Assignee(assignee)
        if status is not None:
            filters["status"] = TaskStatus(status)
        return self._tasks(**filters)

    def tasks_by_status(self, status: TaskStatus) -> List[Task]:
        return self._tasks(status=TaskStatus(status))

    def tasks_for_collaborator(self) -> List[Task]:
        """Tasks assigned to the remote collaborator plus unassigned todo tasks."""
        return [
            t for t in self._tasks()
            if t.assignee.value == REMOTE_COLLABORATOR
            or (t.assignee == Assignee.UNASSIGNED and t.status == TaskStatus.TODO)
        ]

    def collaborator_summary(self) -> Dict[str, List[Task]]:
        buckets = {
            TaskStatus.BACKLOG: "pending",
            TaskStatus.TODO: "pending",
            TaskStatus.IN_PROGRESS: "in_progress",
            TaskStatus.REVIEW: "in_review",
            TaskStatus.ON_HOLD: "on_hold",
            TaskStatus.DONE: "completed",
        }
        summary: Dict[str, List[Task]] = {name: [] for name in dict.fromkeys(buckets.values())}
        for task in self._tasks(assignee=REMOTE_COLLABORATOR):
            summary[buckets[task.status]].append(task)
        return summary

    def overdue_tasks(self, today: Optional[date] = None) -> List[Task]:
        """Open tasks whose due date is before today."""
        today_str = (today or date.today()).isoformat()
        return [
            t for t in self._tasks()
            if t.due_date and t.due_date < today_str and t.status != TaskStatus.DONE
        ]

    def tasks_due_within(self, days: int, today: Optional[date] = None) -> List[Task]:
        """Open tasks due between today and today + days (inclusive)."""
        start = today or date.today()
        end = start + timedelta(days=days)
        tasks = [
            t for t in self._tasks()
            if t.due_date
            and start.isoformat() <= t.due_date <= end.isoformat()
            and t.status != TaskStatus.DONE
        ]
        tasks.sort(key=lambda t: t.due_date)
        return tasks

    def task_stats(self, today: Optional[date] = None) -> Dict[str, Any]:
        tasks = self._tasks()
        by_status = {s.value: 0 for s in TaskStatus}
        by_assignee = {a.value: 0 for a in Assignee}
        for task in tasks:
            by_status[task.status.value] += 1
            by_assignee[task.assignee.value] += 1
        return {
            "total": len(tasks),
            "by_status": by_status,
            "by_assignee": by_assignee,
            "overdue": len(self.overdue_tasks(today)),
        }
