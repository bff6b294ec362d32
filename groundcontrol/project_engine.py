"""
Project Engine - Client Website Pipeline

Projects run lead -> design -> development -> review -> live -> closed and
are kept densely ordered per stage by the shared ordering engine. Like
prospects they carry no blockers and write no activity records.

Bulk updates only touch stage, assignee and priority; a stage change
appends the project to the end of its new stage.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from .entity_store import EntityStore
from .errors import ValidationError
from .models import (
    PROJECT_DETAIL_FIELDS,
    Assignee,
    Comment,
    Priority,
    Project,
    ProjectStage,
    Subtask,
    new_id,
    utc_now_iso,
)
from .ordering import OrderingEngine
from .task_engine import normalize_task_fields

logger = logging.getLogger("project_engine")

TABLE = "projects"

# Fields validated by the task rules and stored the same way
SHARED_TASK_FIELDS = ("priority", "assignee", "subtasks", "comments", "time_estimate")
BULK_FIELDS = ("stage", "assignee", "priority")


def _normalize(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Validate project fields into storable values (enums as their strings)."""
    errors: List[str] = []
    out: Dict[str, Any] = {}
    shared: Dict[str, Any] = {}

    for name, value in fields.items():
        if name in ("client", "website_type"):
            if not isinstance(value, str) or not value.strip():
                errors.append(f"{name} is required")
            else:
                out[name] = value.strip()
        elif name == "stage":
            try:
                out[name] = ProjectStage(getattr(value, "value", value)).value
            except ValueError:
                errors.append("stage must be one of: " + ", ".join(s.value for s in ProjectStage))
        elif name in SHARED_TASK_FIELDS:
            shared[name] = value
        elif name in PROJECT_DETAIL_FIELDS:
            out[name] = str(value) if value is not None else None
        else:
            errors.append(f"Unknown project field: {name}")

    try:
        parsed = normalize_task_fields(shared)
    except ValidationError as e:
        errors.extend(e.details["errors"])
        parsed = {}

    if errors:
        raise ValidationError(errors)

    for name, value in parsed.items():
        if isinstance(value, (Priority, Assignee)):
            out[name] = value.value
        elif name in ("subtasks", "comments"):
            out[name] = [item.to_dict() for item in value]
        else:
            out[name] = value
    return out


class ProjectEngine:
    def __init__(self, store: EntityStore):
        self.store = store
        self.ordering = OrderingEngine(store, TABLE, "stage")

    def get_project(self, project_id: str) -> Project:
        return Project.from_dict(self.store.require(TABLE, project_id))

    def create_project(
        self,
        client: str,
        website_type: str,
        stage: ProjectStage = ProjectStage.LEAD,
        priority: Priority = Priority.MEDIUM,
        assignee: Assignee = Assignee.UNASSIGNED,
        subtasks: Optional[List[Any]] = None,
        comments: Optional[List[Any]] = None,
        time_estimate: Optional[int] = None,
        **details: Any
    ) -> str:
        """
        Create a project at the end of its stage.

        Returns:
            The new project id

        Raises:
            ValidationError: on malformed input, before any write
        """
        fields = _normalize(dict(
            client=client,
            website_type=website_type,
            stage=stage,
            priority=priority,
            assignee=assignee,
            subtasks=subtasks,
            comments=comments,
            time_estimate=time_estimate,
            **details,
        ))

        stage_value = fields.pop("stage")
        with self.store.transaction():
            project = Project(
                id=new_id(),
                client=fields.pop("client"),
                website_type=fields.pop("website_type"),
                stage=ProjectStage(stage_value),
                priority=Priority(fields.pop("priority")),
                assignee=Assignee(fields.pop("assignee")),
                order=self.ordering.append_order(stage_value),
                created_at=utc_now_iso(),
                subtasks=[Subtask.from_dict(s) for s in fields.pop("subtasks")],
                comments=[Comment.from_dict(c) for c in fields.pop("comments")],
                **fields,
            )
            self.store.insert(TABLE, project.to_dict())

        logger.info(f"Created project '{project.client}' ({project.website_type}) in {project.stage.value}")
        return project.id

    def update_project(self, project_id: str, **fields: Any) -> str:
        """Patch project fields other than stage and order."""
        if "stage" in fields or "order" in fields:
            raise ValidationError(["use move_project to change stage or order"])
        changes = _normalize(fields)

        with self.store.transaction():
            self.store.require(TABLE, project_id)
            changes["updated_at"] = utc_now_iso()
            self.store.patch(TABLE, project_id, changes)

        logger.info(f"Updated project {project_id}: {', '.join(sorted(fields))}")
        return project_id

    def move_project(self, project_id: str, new_stage: ProjectStage, new_order: int) -> str:
        """Move a project to a stage position, reordering both stages."""
        stage = _normalize({"stage": new_stage})["stage"]

        with self.store.transaction():
            doc = self.store.require(TABLE, project_id)
            final = self.ordering.move(doc, stage, new_order)
            self.store.patch(TABLE, project_id, {"updated_at": utc_now_iso()})

        logger.info(f"Moved project '{doc['client']}' {doc['stage']}[{doc['order']}] -> {stage}[{final}]")
        return project_id

    def delete_project(self, project_id: str) -> None:
        """
        Raises:
            NotFoundError: unknown project
        """
        with self.store.transaction():
            doc = self.store.require(TABLE, project_id)
            self.ordering.close_gap(doc)
            self.store.delete(TABLE, project_id)
        logger.info(f"Deleted project '{doc['client']}'")

    def bulk_update_projects(self, project_ids: Iterable[str], **fields: Any) -> int:
        """
        Set stage, assignee and/or priority on many projects at once.

        Missing ids are skipped; returns the number of projects updated.
        """
        unsupported = sorted(set(fields) - set(BULK_FIELDS))
        if unsupported:
            raise ValidationError([f"cannot bulk update: {', '.join(unsupported)}"])
        changes = _normalize({k: v for k, v in fields.items() if v is not None})
        if not changes:
            return 0

        count = 0
        with self.store.transaction():
            for project_id in project_ids:
                doc = self.store.get(TABLE, project_id)
                if doc is None:
                    continue
                patch = {k: v for k, v in changes.items() if k != "stage"}
                stage = changes.get("stage")
                if stage is not None and stage != doc["stage"]:
                    self.ordering.move(doc, stage, self.ordering.append_order(stage))
                patch["updated_at"] = utc_now_iso()
                self.store.patch(TABLE, project_id, patch)
                count += 1

        logger.info(f"Bulk updated {count} projects")
        return count

    def bulk_delete_projects(self, project_ids: Iterable[str]) -> int:
        count = 0
        with self.store.transaction():
            for project_id in project_ids:
                doc = self.store.get(TABLE, project_id)
                if doc is None:
                    continue
                self.ordering.close_gap(doc)
                self.store.delete(TABLE, project_id)
                count += 1
        logger.info(f"Bulk deleted {count} projects")
        return count

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def list_projects(self) -> List[Project]:
        return [Project.from_dict(d) for d in self.store.query(TABLE, order_by="order")]

    def projects_by_stage(self, stage: ProjectStage) -> List[Project]:
        docs = self.store.query(TABLE, order_by="order", stage=ProjectStage(stage))
        return [Project.from_dict(d) for d in docs]

    def project_stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {"total": self.store.count(TABLE)}
        for stage in ProjectStage:
            stats[stage.value] = self.store.count(TABLE, stage=stage)
        stats["by_assignee"] = {a.value: self.store.count(TABLE, assignee=a) for a in Assignee}
        return stats
