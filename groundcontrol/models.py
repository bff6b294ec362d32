"""
Domain models for tasks, prospects, templates and activity.

Entities are stored as plain dicts in the entity store; the dataclasses here
are the typed view the engines work with (from_dict on read, to_dict on
write). Enum values are the persisted strings.
"""

import re
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------
class Assignee(str, Enum):
    CLIFTON = "clifton"
    SAGE = "sage"
    UNASSIGNED = "unassigned"


class Actor(str, Enum):
    """Who performed an action or authored a comment."""
    CLIFTON = "clifton"
    SAGE = "sage"
    SYSTEM = "system"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TaskStatus(str, Enum):
    """
    Board columns.

    ON_HOLD is a first-class column: it is persisted, counted in stats and
    reachable from every path (including the GitHub PR-closed flow).
    """
    BACKLOG = "backlog"
    TODO = "todo"
    IN_PROGRESS = "in-progress"
    REVIEW = "review"
    DONE = "done"
    ON_HOLD = "on-hold"


class ActivityAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    MOVED = "moved"
    COMPLETED = "completed"
    COMMENTED = "commented"
    ASSIGNED = "assigned"
    DELETED = "deleted"


class RecurringFrequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class ProspectStage(str, Enum):
    LEAD = "lead"
    SITE_BUILT = "site_built"
    OUTREACH = "outreach"
    CONTACTED = "contacted"
    FOLLOW_UP = "follow_up"
    NEGOTIATING = "negotiating"
    CLOSED_WON = "closed_won"
    CLOSED_LOST = "closed_lost"


class Urgency(str, Enum):
    FRESH = "fresh"
    WARM = "warm"
    COLD = "cold"
    NO_CONTACT = "no_contact"


class ProjectStage(str, Enum):
    """Client website pipeline."""
    LEAD = "lead"
    DESIGN = "design"
    DEVELOPMENT = "development"
    REVIEW = "review"
    LIVE = "live"
    CLOSED = "closed"


# The watched remote collaborator: assignments and mentions targeting this
# actor are pushed to the collaborator webhook.
REMOTE_COLLABORATOR = "sage"

DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def new_id() -> str:
    """Opaque entity id (32 lowercase hex chars)."""
    return uuid.uuid4().hex


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO timestamp; naive values are taken as UTC."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _enum_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


# -----------------------------------------------------------------------------
# Embedded records
# -----------------------------------------------------------------------------
@dataclass
class Subtask:
    id: str
    title: str
    completed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Subtask":
        return cls(
            id=data.get("id") or new_id(),
            title=data["title"],
            completed=bool(data.get("completed", False)),
        )


@dataclass
class Comment:
    id: str
    author: Actor
    content: str
    created_at: str
    mentions: Optional[List[str]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "author": self.author.value,
            "content": self.content,
            "created_at": self.created_at,
        }
        # Absent rather than empty when nobody was mentioned
        if self.mentions:
            data["mentions"] = list(self.mentions)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Comment":
        return cls(
            id=data.get("id") or new_id(),
            author=Actor(data["author"]),
            content=data["content"],
            created_at=data.get("created_at") or utc_now_iso(),
            mentions=data.get("mentions") or None,
        )


@dataclass
class TimeEntry:
    id: str
    start_time: str
    end_time: str
    duration: int  # minutes
    notes: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if self.notes is None:
            data.pop("notes")
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimeEntry":
        return cls(
            id=data["id"],
            start_time=data["start_time"],
            end_time=data["end_time"],
            duration=int(data["duration"]),
            notes=data.get("notes"),
        )


@dataclass
class RecurringRule:
    frequency: RecurringFrequency
    interval: int = 1
    next_due: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"frequency": self.frequency.value, "interval": self.interval}
        if self.next_due:
            data["next_due"] = self.next_due
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RecurringRule":
        return cls(
            frequency=RecurringFrequency(data["frequency"]),
            interval=int(data.get("interval", 1)),
            next_due=data.get("next_due"),
        )


# -----------------------------------------------------------------------------
# Task
# -----------------------------------------------------------------------------
@dataclass
class Task:
    """
    A board card.

    order is the dense rank inside the task's status column.
    total_time_spent always equals the sum of time_entries durations; it is
    maintained incrementally by the time ledger.
    """
    id: str
    title: str
    description: str
    assignee: Assignee
    priority: Priority
    status: TaskStatus
    order: int
    created_at: str
    project: Optional[str] = None
    due_date: Optional[str] = None
    time_estimate: Optional[int] = None
    subtasks: List[Subtask] = field(default_factory=list)
    comments: List[Comment] = field(default_factory=list)
    blocked_by: List[str] = field(default_factory=list)
    recurring: Optional[RecurringRule] = None
    active_timer_start: Optional[str] = None
    time_entries: List[TimeEntry] = field(default_factory=list)
    total_time_spent: int = 0
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "assignee": self.assignee.value,
            "priority": self.priority.value,
            "status": self.status.value,
            "order": self.order,
            "created_at": self.created_at,
            "project": self.project,
            "due_date": self.due_date,
            "time_estimate": self.time_estimate,
            "subtasks": [s.to_dict() for s in self.subtasks],
            "comments": [c.to_dict() for c in self.comments],
            "blocked_by": list(self.blocked_by),
            "recurring": self.recurring.to_dict() if self.recurring else None,
            "active_timer_start": self.active_timer_start,
            "time_entries": [e.to_dict() for e in self.time_entries],
            "total_time_spent": self.total_time_spent,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        return cls(
            id=data["id"],
            title=data["title"],
            description=data.get("description", ""),
            assignee=Assignee(data.get("assignee", Assignee.UNASSIGNED.value)),
            priority=Priority(data.get("priority", Priority.MEDIUM.value)),
            status=TaskStatus(data["status"]),
            order=int(data.get("order", 0)),
            created_at=data["created_at"],
            project=data.get("project"),
            due_date=data.get("due_date"),
            time_estimate=data.get("time_estimate"),
            subtasks=[Subtask.from_dict(s) for s in data.get("subtasks", [])],
            comments=[Comment.from_dict(c) for c in data.get("comments", [])],
            blocked_by=list(data.get("blocked_by") or []),
            recurring=RecurringRule.from_dict(data["recurring"]) if data.get("recurring") else None,
            active_timer_start=data.get("active_timer_start"),
            time_entries=[TimeEntry.from_dict(e) for e in data.get("time_entries", [])],
            total_time_spent=int(data.get("total_time_spent", 0)),
            updated_at=data.get("updated_at"),
        )

    @property
    def timer_running(self) -> bool:
        return self.active_timer_start is not None


# -----------------------------------------------------------------------------
# Prospect
# -----------------------------------------------------------------------------
PROSPECT_DETAIL_FIELDS = (
    "contact_name",
    "phone",
    "email",
    "website",
    "facebook_url",
    "github_repo",
    "loom_url",
    "industry",
    "location",
    "last_contacted",
    "notes",
)


@dataclass
class Prospect:
    """Sales-pipeline card; order is dense inside its stage."""
    id: str
    title: str
    company: str
    stage: ProspectStage
    urgency: Urgency
    order: int
    created_at: str
    contact_name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    website: Optional[str] = None
    facebook_url: Optional[str] = None
    github_repo: Optional[str] = None
    loom_url: Optional[str] = None
    industry: Optional[str] = None
    location: Optional[str] = None
    last_contacted: Optional[str] = None
    notes: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["stage"] = self.stage.value
        data["urgency"] = self.urgency.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Prospect":
        kwargs = {name: data.get(name) for name in PROSPECT_DETAIL_FIELDS}
        return cls(
            id=data["id"],
            title=data["title"],
            company=data["company"],
            stage=ProspectStage(data["stage"]),
            urgency=Urgency(data.get("urgency", Urgency.FRESH.value)),
            order=int(data.get("order", 0)),
            created_at=data["created_at"],
            updated_at=data.get("updated_at"),
            **kwargs,
        )


# -----------------------------------------------------------------------------
# Project
# -----------------------------------------------------------------------------
PROJECT_DETAIL_FIELDS = (
    "contact_name",
    "phone",
    "email",
    "website",
    "budget",
    "technology",
    "launch_date",
    "notes",
)


@dataclass
class Project:
    """
    Client website project card.

    order is dense inside its stage, like tasks in a column.
    """
    id: str
    client: str
    website_type: str
    stage: ProjectStage
    priority: Priority
    assignee: Assignee
    order: int
    created_at: str
    contact_name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    website: Optional[str] = None
    budget: Optional[str] = None
    technology: Optional[str] = None
    launch_date: Optional[str] = None
    notes: Optional[str] = None
    time_estimate: Optional[int] = None
    subtasks: List[Subtask] = field(default_factory=list)
    comments: List[Comment] = field(default_factory=list)
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "client": self.client,
            "website_type": self.website_type,
            "stage": self.stage.value,
            "priority": self.priority.value,
            "assignee": self.assignee.value,
            "order": self.order,
            "created_at": self.created_at,
        }
        for name in PROJECT_DETAIL_FIELDS:
            data[name] = getattr(self, name)
        data["time_estimate"] = self.time_estimate
        data["subtasks"] = [s.to_dict() for s in self.subtasks]
        data["comments"] = [c.to_dict() for c in self.comments]
        data["updated_at"] = self.updated_at
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Project":
        kwargs = {name: data.get(name) for name in PROJECT_DETAIL_FIELDS}
        return cls(
            id=data["id"],
            client=data["client"],
            website_type=data["website_type"],
            stage=ProjectStage(data["stage"]),
            priority=Priority(data.get("priority", Priority.MEDIUM.value)),
            assignee=Assignee(data.get("assignee", Assignee.UNASSIGNED.value)),
            order=int(data.get("order", 0)),
            created_at=data["created_at"],
            time_estimate=data.get("time_estimate"),
            subtasks=[Subtask.from_dict(s) for s in data.get("subtasks", [])],
            comments=[Comment.from_dict(c) for c in data.get("comments", [])],
            updated_at=data.get("updated_at"),
            **kwargs,
        )


# -----------------------------------------------------------------------------
# Template
# -----------------------------------------------------------------------------
@dataclass
class Template:
    """Named bundle of defaults stamped onto new tasks."""
    id: str
    name: str
    description: str
    default_priority: Priority
    created_at: str
    subtasks: List[str] = field(default_factory=list)
    default_project: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "default_priority": self.default_priority.value,
            "default_project": self.default_project,
            "subtasks": list(self.subtasks),
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Template":
        return cls(
            id=data["id"],
            name=data["name"],
            description=data.get("description", ""),
            default_priority=Priority(data.get("default_priority", Priority.MEDIUM.value)),
            default_project=data.get("default_project"),
            subtasks=list(data.get("subtasks", [])),
            created_at=data["created_at"],
        )


# -----------------------------------------------------------------------------
# Activity (immutable)
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class Activity:
    """
    Immutable audit record.

    task_title is a snapshot taken when the record was written, so the
    record stays readable after the task is renamed or deleted.
    """
    id: str
    task_id: str
    task_title: str
    action: str  # ActivityAction value
    actor: str  # Actor value
    created_at: str
    sequence: int
    details: Optional[str] = None

    def __post_init__(self):
        if self.action not in [a.value for a in ActivityAction]:
            raise ValueError(f"Invalid activity action: {self.action}")
        if self.actor not in [a.value for a in Actor]:
            raise ValueError(f"Invalid activity actor: {self.actor}")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Activity":
        return cls(
            id=data["id"],
            task_id=data["task_id"],
            task_title=data["task_title"],
            action=_enum_value(data["action"]),
            actor=_enum_value(data["actor"]),
            created_at=data["created_at"],
            sequence=int(data.get("sequence", 0)),
            details=data.get("details"),
        )
