"""
Task Templates

Named bundles of defaults (description, priority, project, subtask titles)
that stamp out new tasks and client projects. Metadata is validated into
the Template model at the write boundary; stored documents always
round-trip through it.
"""

import logging
from typing import Any, Dict, List, Optional

from .entity_store import EntityStore
from .errors import ValidationError
from .models import (
    Actor,
    Assignee,
    Comment,
    Priority,
    ProjectStage,
    Subtask,
    TaskStatus,
    Template,
    new_id,
    utc_now_iso,
)
from .project_engine import ProjectEngine
from .task_engine import TaskEngine, normalize_task_fields

logger = logging.getLogger("templates")

TABLE = "templates"


def _normalize(fields: Dict[str, Any]) -> Dict[str, Any]:
    errors: List[str] = []
    out: Dict[str, Any] = {}
    for name, value in fields.items():
        if name == "name":
            if not isinstance(value, str) or not value.strip():
                errors.append("name is required")
            else:
                out[name] = value.strip()
        elif name == "description":
            out[name] = "" if value is None else str(value)
        elif name == "default_priority":
            try:
                out[name] = Priority(getattr(value, "value", value)).value
            except ValueError:
                errors.append("default_priority must be one of: low, medium, high")
        elif name == "default_project":
            out[name] = str(value) if value else None
        elif name == "subtasks":
            if not isinstance(value, list) or not all(isinstance(s, str) and s.strip() for s in value):
                errors.append("subtasks must be a list of non-empty titles")
            else:
                out[name] = [s.strip() for s in value]
        else:
            errors.append(f"Unknown template field: {name}")
    if errors:
        raise ValidationError(errors)
    return out


class TemplateService:
    def __init__(
        self,
        store: EntityStore,
        task_engine: TaskEngine,
        project_engine: Optional[ProjectEngine] = None
    ):
        self.store = store
        self.task_engine = task_engine
        self.project_engine = project_engine

    def get_template(self, template_id: str) -> Template:
        return Template.from_dict(self.store.require(TABLE, template_id))

    def list_templates(self) -> List[Template]:
        templates = [Template.from_dict(d) for d in self.store.query(TABLE)]
        templates.sort(key=lambda t: t.name.lower())
        return templates

    def create_template(
        self,
        name: str,
        description: str = "",
        default_priority: Priority = Priority.MEDIUM,
        default_project: Optional[str] = None,
        subtasks: Optional[List[str]] = None,
    ) -> str:
        fields = _normalize({
            "name": name,
            "description": description,
            "default_priority": default_priority,
            "default_project": default_project,
            "subtasks": subtasks or [],
        })
        template = Template(
            id=new_id(),
            name=fields["name"],
            description=fields["description"],
            default_priority=Priority(fields["default_priority"]),
            default_project=fields["default_project"],
            subtasks=fields["subtasks"],
            created_at=utc_now_iso(),
        )
        self.store.insert(TABLE, template.to_dict())
        logger.info(f"Created template '{template.name}'")
        return template.id

    def update_template(self, template_id: str, **fields: Any) -> Template:
        changes = _normalize(fields)
        with self.store.transaction():
            self.store.require(TABLE, template_id)
            self.store.patch(TABLE, template_id, changes)
        return self.get_template(template_id)

    def delete_template(self, template_id: str) -> bool:
        deleted = self.store.delete(TABLE, template_id)
        if deleted:
            logger.info(f"Deleted template {template_id}")
        return deleted

    def create_task_from_template(
        self,
        template_id: str,
        title: str,
        assignee: Assignee = Assignee.UNASSIGNED,
        status: TaskStatus = TaskStatus.TODO,
        due_date: Optional[str] = None,
    ) -> str:
        """
        Create a task carrying the template's defaults and fresh subtasks.

        The "created" record is attributed to the assignee, or to the system
        for unassigned tasks.

        Raises:
            NotFoundError: unknown template
            ValidationError: malformed title, assignee, status or due date
        """
        assignee = normalize_task_fields({"assignee": assignee})["assignee"]
        actor = Actor.SYSTEM if assignee == Assignee.UNASSIGNED else Actor(assignee.value)

        with self.store.transaction():
            template = self.get_template(template_id)
            task_id = self.task_engine.create_task(
                title=title,
                description=template.description,
                assignee=assignee,
                priority=template.default_priority,
                status=status,
                project=template.default_project,
                due_date=due_date,
                subtasks=[Subtask(id=new_id(), title=t) for t in template.subtasks],
                actor=actor,
                activity_details=f'Created from template "{template.name}"',
            )

        logger.info(f"Created task '{title}' from template '{template.name}'")
        return task_id

    def create_project_from_template(
        self,
        template_id: str,
        client: str,
        stage: ProjectStage = ProjectStage.LEAD,
        assignee: Assignee = Assignee.UNASSIGNED,
        notes: Optional[str] = None,
        **details: Any
    ) -> str:
        """
        Create a client project from a template.

        The template name becomes the website type and its description the
        default notes; subtasks are copied with fresh ids and a system comment
        records the origin.

        Raises:
            NotFoundError: unknown template
            ValidationError: malformed client, stage, assignee or details
        """
        if self.project_engine is None:
            raise RuntimeError("TemplateService has no project engine")

        with self.store.transaction():
            template = self.get_template(template_id)
            project_id = self.project_engine.create_project(
                client=client,
                website_type=template.name,
                stage=stage,
                priority=template.default_priority,
                assignee=assignee,
                subtasks=[Subtask(id=new_id(), title=t) for t in template.subtasks],
                comments=[Comment(
                    id=new_id(),
                    author=Actor.SYSTEM,
                    content=f"Project created from template: {template.name}",
                    created_at=utc_now_iso(),
                )],
                notes=notes or template.description or None,
                **details,
            )

        logger.info(f"Created project '{client}' from template '{template.name}'")
        return project_id
