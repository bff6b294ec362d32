"""
API Routers for the GroundControl task core

This module provides FastAPI routes for:
- Task board mutations (create, update, move, bulk, comments, subtasks)
- Time tracking (timer start/stop, manual entries)
- Queries (board, stats, collaborator view, activity feed, blockers)
- Sales pipeline prospects
- Client website projects
- Task templates
- GitHub webhook deliveries
- Outbound notification log and due-date reminders

Core errors are raised as GroundControlError and rendered by the
application's exception handler.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field

from .errors import InvalidSignatureError
from .github_integration import SUPPORTED_EVENTS, verify_signature
from .models import (
    Actor,
    Assignee,
    Priority,
    ProjectStage,
    ProspectStage,
    TaskStatus,
    Urgency,
)
from .services import get_services

logger = logging.getLogger("api")

tasks_router = APIRouter(prefix="/tasks", tags=["Tasks"])
board_router = APIRouter(tags=["Board"])
prospects_router = APIRouter(prefix="/prospects", tags=["Prospects"])
projects_router = APIRouter(prefix="/projects", tags=["Projects"])
templates_router = APIRouter(prefix="/templates", tags=["Templates"])
github_router = APIRouter(prefix="/github", tags=["GitHub"])
notifications_router = APIRouter(prefix="/notifications", tags=["Notifications"])


# -----------------------------------------------------------------------------
# Request Models
# -----------------------------------------------------------------------------
class CreateTaskRequest(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    assignee: Assignee = Assignee.UNASSIGNED
    priority: Priority = Priority.MEDIUM
    status: TaskStatus = TaskStatus.TODO
    project: Optional[str] = None
    due_date: Optional[str] = Field(None, description="YYYY-MM-DD")
    time_estimate: Optional[int] = Field(None, ge=0, description="Minutes")
    subtasks: Optional[List[Any]] = None
    comments: Optional[List[Dict[str, Any]]] = None
    recurring: Optional[Dict[str, Any]] = None
    blocked_by: Optional[List[str]] = None
    actor: Actor = Actor.SYSTEM


class UpdateTaskRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    assignee: Optional[Assignee] = None
    priority: Optional[Priority] = None
    status: Optional[TaskStatus] = None
    project: Optional[str] = None
    due_date: Optional[str] = None
    time_estimate: Optional[int] = None
    subtasks: Optional[List[Any]] = None
    recurring: Optional[Dict[str, Any]] = None
    blocked_by: Optional[List[str]] = None
    order: Optional[int] = None
    actor: Actor = Actor.SYSTEM
    force: bool = False


class MoveTaskRequest(BaseModel):
    new_status: TaskStatus
    new_order: Optional[int] = Field(None, description="Target index; omitted = end of column")
    force: bool = False
    assignee: Optional[Assignee] = None
    actor: Actor = Actor.SYSTEM


class BulkUpdateRequest(BaseModel):
    ids: List[str]
    fields: Dict[str, Any]
    actor: Actor = Actor.SYSTEM
    force: bool = False


class BulkDeleteRequest(BaseModel):
    ids: List[str]
    actor: Actor = Actor.SYSTEM


class CommentRequest(BaseModel):
    author: Actor
    content: str = Field(..., min_length=1)


class StopTimerRequest(BaseModel):
    notes: Optional[str] = None
    actor: Actor = Actor.SYSTEM


class ManualTimeRequest(BaseModel):
    duration: int = Field(..., description="Minutes")
    date: Optional[str] = Field(None, description="YYYY-MM-DD")
    notes: Optional[str] = None
    actor: Actor = Actor.SYSTEM


class CreateProspectRequest(BaseModel):
    title: str = Field(..., min_length=1)
    company: str = Field(..., min_length=1)
    stage: ProspectStage = ProspectStage.LEAD
    urgency: Urgency = Urgency.FRESH
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


class UpdateProspectRequest(BaseModel):
    title: Optional[str] = None
    company: Optional[str] = None
    urgency: Optional[Urgency] = None
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


class MoveProspectRequest(BaseModel):
    new_stage: ProspectStage
    new_order: int


class CreateProjectRequest(BaseModel):
    client: str = Field(..., min_length=1)
    website_type: str = Field(..., min_length=1)
    stage: ProjectStage = ProjectStage.LEAD
    priority: Priority = Priority.MEDIUM
    assignee: Assignee = Assignee.UNASSIGNED
    subtasks: List[Any] = Field(default_factory=list)
    time_estimate: Optional[int] = Field(None, ge=0)
    contact_name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    website: Optional[str] = None
    budget: Optional[str] = None
    technology: Optional[str] = None
    launch_date: Optional[str] = None
    notes: Optional[str] = None


class UpdateProjectRequest(BaseModel):
    client: Optional[str] = None
    website_type: Optional[str] = None
    priority: Optional[Priority] = None
    assignee: Optional[Assignee] = None
    subtasks: Optional[List[Any]] = None
    time_estimate: Optional[int] = Field(None, ge=0)
    contact_name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    website: Optional[str] = None
    budget: Optional[str] = None
    technology: Optional[str] = None
    launch_date: Optional[str] = None
    notes: Optional[str] = None


class MoveProjectRequest(BaseModel):
    new_stage: ProjectStage
    new_order: int


class BulkUpdateProjectsRequest(BaseModel):
    ids: List[str]
    stage: Optional[ProjectStage] = None
    assignee: Optional[Assignee] = None
    priority: Optional[Priority] = None


class BulkDeleteProjectsRequest(BaseModel):
    ids: List[str]


class CreateTemplateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    default_priority: Priority = Priority.MEDIUM
    default_project: Optional[str] = None
    subtasks: List[str] = Field(default_factory=list)


class UpdateTemplateRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    default_priority: Optional[Priority] = None
    default_project: Optional[str] = None
    subtasks: Optional[List[str]] = None


class TaskFromTemplateRequest(BaseModel):
    title: str = Field(..., min_length=1)
    assignee: Assignee = Assignee.UNASSIGNED
    status: TaskStatus = TaskStatus.TODO
    due_date: Optional[str] = None


class ProjectFromTemplateRequest(BaseModel):
    client: str = Field(..., min_length=1)
    stage: ProjectStage = ProjectStage.LEAD
    assignee: Assignee = Assignee.UNASSIGNED
    contact_name: Optional[str] = None
    email: Optional[str] = None
    notes: Optional[str] = None


# -----------------------------------------------------------------------------
# Tasks
# -----------------------------------------------------------------------------
@tasks_router.get("")
async def list_tasks(
    assignee: Optional[Assignee] = Query(None),
    status: Optional[TaskStatus] = Query(None)
):
    tasks = get_services().tasks.list_tasks(assignee=assignee, status=status)
    return {"tasks": [t.to_dict() for t in tasks], "count": len(tasks)}


@tasks_router.post("", status_code=201)
async def create_task(request: CreateTaskRequest):
    services = get_services()
    fields = request.model_dump()
    actor = fields.pop("actor")
    task_id = services.tasks.create_task(actor=actor, **fields)
    return services.tasks.get_task(task_id).to_dict()


@tasks_router.get("/stats")
async def task_stats():
    return get_services().tasks.task_stats()


@tasks_router.post("/bulk-update")
async def bulk_update_tasks(request: BulkUpdateRequest):
    count = get_services().tasks.bulk_update_tasks(
        request.ids, actor=request.actor, force=request.force, **request.fields
    )
    return {"updated": count}


@tasks_router.post("/bulk-delete")
async def bulk_delete_tasks(request: BulkDeleteRequest):
    count = get_services().tasks.bulk_delete_tasks(request.ids, actor=request.actor)
    return {"deleted": count}


@tasks_router.get("/{task_id}")
async def get_task(task_id: str):
    return get_services().tasks.get_task(task_id).to_dict()


@tasks_router.patch("/{task_id}")
async def update_task(task_id: str, request: UpdateTaskRequest):
    fields = request.model_dump(exclude_unset=True)
    fields.pop("actor", None)
    fields.pop("force", None)
    task = get_services().tasks.update_task(
        task_id, actor=request.actor, force=request.force, **fields
    )
    return task.to_dict()


@tasks_router.delete("/{task_id}")
async def delete_task(task_id: str, actor: Actor = Query(Actor.SYSTEM)):
    if not get_services().tasks.delete_task(task_id, actor=actor):
        raise HTTPException(status_code=404, detail=f"Task '{task_id}' not found")
    return {"deleted": True, "id": task_id}


@tasks_router.post("/{task_id}/move")
async def move_task(task_id: str, request: MoveTaskRequest):
    task = get_services().tasks.move_task(
        task_id,
        request.new_status,
        request.new_order,
        force=request.force,
        assignee=request.assignee,
        actor=request.actor,
    )
    return task.to_dict()


@tasks_router.post("/{task_id}/comments", status_code=201)
async def add_comment(task_id: str, request: CommentRequest):
    comment = get_services().comments.add_comment(task_id, request.author, request.content)
    return comment.to_dict()


@tasks_router.post("/{task_id}/subtasks/{subtask_id}/toggle")
async def toggle_subtask(task_id: str, subtask_id: str, actor: Actor = Query(Actor.SYSTEM)):
    subtask = get_services().tasks.toggle_subtask(task_id, subtask_id, actor=actor)
    return {"toggled": subtask is not None, "subtask": subtask.to_dict() if subtask else None}


@tasks_router.get("/{task_id}/blockers")
async def blocker_status(task_id: str):
    return get_services().tasks.get_blocker_status(task_id)


@tasks_router.get("/{task_id}/activity")
async def task_activity(task_id: str):
    records = get_services().activity.activity_for_task(task_id)
    return {"activity": [a.to_dict() for a in records]}


@tasks_router.post("/{task_id}/timer/start")
async def start_timer(task_id: str, actor: Actor = Query(Actor.SYSTEM)):
    return get_services().time.start_timer(task_id, actor=actor)


@tasks_router.post("/{task_id}/timer/stop")
async def stop_timer(task_id: str, request: Optional[StopTimerRequest] = None):
    request = request or StopTimerRequest()
    return get_services().time.stop_timer(task_id, notes=request.notes, actor=request.actor)


@tasks_router.post("/{task_id}/time")
async def add_manual_time(task_id: str, request: ManualTimeRequest):
    total = get_services().time.add_manual_time(
        task_id, request.duration, date=request.date, notes=request.notes, actor=request.actor
    )
    return {"task_id": task_id, "total_time_spent": total}


@tasks_router.delete("/{task_id}/time/{entry_id}")
async def delete_time_entry(task_id: str, entry_id: str, actor: Actor = Query(Actor.SYSTEM)):
    total = get_services().time.delete_time_entry(task_id, entry_id, actor=actor)
    return {"task_id": task_id, "total_time_spent": total}


# -----------------------------------------------------------------------------
# Board-wide queries
# -----------------------------------------------------------------------------
@board_router.get("/collaborator/tasks")
async def collaborator_tasks():
    services = get_services()
    summary = services.tasks.collaborator_summary()
    return {
        "tasks": [t.to_dict() for t in services.tasks.tasks_for_collaborator()],
        "summary": {name: [t.to_dict() for t in tasks] for name, tasks in summary.items()},
    }


@board_router.get("/activity")
async def recent_activity(limit: int = Query(50, ge=1, le=500)):
    records = get_services().activity.recent_activity(limit)
    return {"activity": [a.to_dict() for a in records]}


# -----------------------------------------------------------------------------
# Prospects
# -----------------------------------------------------------------------------
@prospects_router.get("")
async def list_prospects(stage: Optional[ProspectStage] = Query(None)):
    engine = get_services().prospects
    prospects = engine.prospects_by_stage(stage) if stage else engine.list_prospects()
    return {"prospects": [p.to_dict() for p in prospects], "count": len(prospects)}


@prospects_router.post("", status_code=201)
async def create_prospect(request: CreateProspectRequest):
    engine = get_services().prospects
    prospect_id = engine.create_prospect(**request.model_dump())
    return engine.get_prospect(prospect_id).to_dict()


@prospects_router.get("/stats")
async def prospect_stats():
    return get_services().prospects.prospect_stats()


@prospects_router.patch("/{prospect_id}")
async def update_prospect(prospect_id: str, request: UpdateProspectRequest):
    engine = get_services().prospects
    engine.update_prospect(prospect_id, **request.model_dump(exclude_unset=True))
    return engine.get_prospect(prospect_id).to_dict()


@prospects_router.delete("/{prospect_id}")
async def delete_prospect(prospect_id: str):
    get_services().prospects.delete_prospect(prospect_id)
    return {"deleted": True, "id": prospect_id}


@prospects_router.post("/{prospect_id}/move")
async def move_prospect(prospect_id: str, request: MoveProspectRequest):
    engine = get_services().prospects
    engine.move_prospect(prospect_id, request.new_stage, request.new_order)
    return engine.get_prospect(prospect_id).to_dict()


# -----------------------------------------------------------------------------
# Projects
# -----------------------------------------------------------------------------
@projects_router.get("")
async def list_projects(stage: Optional[ProjectStage] = Query(None)):
    engine = get_services().projects
    projects = engine.projects_by_stage(stage) if stage else engine.list_projects()
    return {"projects": [p.to_dict() for p in projects], "count": len(projects)}


@projects_router.post("", status_code=201)
async def create_project(request: CreateProjectRequest):
    engine = get_services().projects
    project_id = engine.create_project(**request.model_dump())
    return engine.get_project(project_id).to_dict()


@projects_router.get("/stats")
async def project_stats():
    return get_services().projects.project_stats()


@projects_router.post("/bulk-update")
async def bulk_update_projects(request: BulkUpdateProjectsRequest):
    fields = request.model_dump(exclude={"ids"}, exclude_none=True)
    count = get_services().projects.bulk_update_projects(request.ids, **fields)
    return {"updated": count}


@projects_router.post("/bulk-delete")
async def bulk_delete_projects(request: BulkDeleteProjectsRequest):
    return {"deleted": get_services().projects.bulk_delete_projects(request.ids)}


@projects_router.get("/{project_id}")
async def get_project(project_id: str):
    return get_services().projects.get_project(project_id).to_dict()


@projects_router.patch("/{project_id}")
async def update_project(project_id: str, request: UpdateProjectRequest):
    engine = get_services().projects
    engine.update_project(project_id, **request.model_dump(exclude_unset=True))
    return engine.get_project(project_id).to_dict()


@projects_router.delete("/{project_id}")
async def delete_project(project_id: str):
    get_services().projects.delete_project(project_id)
    return {"deleted": True, "id": project_id}


@projects_router.post("/{project_id}/move")
async def move_project(project_id: str, request: MoveProjectRequest):
    engine = get_services().projects
    engine.move_project(project_id, request.new_stage, request.new_order)
    return engine.get_project(project_id).to_dict()


# -----------------------------------------------------------------------------
# Templates
# -----------------------------------------------------------------------------
@templates_router.get("")
async def list_templates():
    return {"templates": [t.to_dict() for t in get_services().templates.list_templates()]}


@templates_router.post("", status_code=201)
async def create_template(request: CreateTemplateRequest):
    service = get_services().templates
    template_id = service.create_template(**request.model_dump())
    return service.get_template(template_id).to_dict()


@templates_router.patch("/{template_id}")
async def update_template(template_id: str, request: UpdateTemplateRequest):
    template = get_services().templates.update_template(
        template_id, **request.model_dump(exclude_unset=True)
    )
    return template.to_dict()


@templates_router.delete("/{template_id}")
async def delete_template(template_id: str):
    if not get_services().templates.delete_template(template_id):
        raise HTTPException(status_code=404, detail=f"Template '{template_id}' not found")
    return {"deleted": True, "id": template_id}


@templates_router.post("/{template_id}/tasks", status_code=201)
async def create_task_from_template(template_id: str, request: TaskFromTemplateRequest):
    services = get_services()
    task_id = services.templates.create_task_from_template(template_id, **request.model_dump())
    return services.tasks.get_task(task_id).to_dict()


@templates_router.post("/{template_id}/projects", status_code=201)
async def create_project_from_template(template_id: str, request: ProjectFromTemplateRequest):
    services = get_services()
    project_id = services.templates.create_project_from_template(
        template_id, **request.model_dump(exclude_none=True)
    )
    return services.projects.get_project(project_id).to_dict()


# -----------------------------------------------------------------------------
# GitHub webhook
# -----------------------------------------------------------------------------
@github_router.get("/webhook")
async def github_webhook_info():
    return {
        "success": True,
        "name": "GroundControl GitHub Webhook",
        "supported_events": SUPPORTED_EVENTS,
        "task_reference_formats": [
            "[TASK-xxx] - Task ID fragment in brackets",
            "#taskId - Task ID fragment (8+ characters) with hash",
            "task:xxx - Alternative format",
        ],
    }


@github_router.post("/webhook")
async def github_webhook(request: Request):
    services = get_services()
    body = await request.body()

    if not verify_signature(body, request.headers.get("x-hub-signature-256"), services.config.github_webhook_secret):
        logger.error("GitHub webhook signature verification failed")
        raise InvalidSignatureError()

    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        raise HTTPException(status_code=400, detail="Webhook body is not valid JSON")

    return services.github.handle_event(
        request.headers.get("x-github-event"),
        payload,
        delivery_id=request.headers.get("x-github-delivery"),
    )


# -----------------------------------------------------------------------------
# Notifications
# -----------------------------------------------------------------------------
@notifications_router.get("")
async def recent_notifications(limit: int = Query(50, ge=1, le=500)):
    services = get_services()
    return {
        "pending": len(services.outbox),
        "notifications": services.notifications.get_recent_notifications(limit),
    }


@notifications_router.post("/due-reminders")
async def queue_due_reminders(days: int = Query(1, ge=0, le=30)):
    count = get_services().enqueue_due_reminders(days)
    return {"queued": count > 0, "tasks": count}
