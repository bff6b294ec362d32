"""
Service wiring.

Builds every component of the core from one GroundControlConfig so they all
share the same store and outbox. get_services() returns the process-wide
instance used by the HTTP layer; tests build their own with build_services().
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from .activity_log import ActivityLog
from .comments import CommentPipeline
from .config import GroundControlConfig, load_config
from .entity_store import EntityStore
from .github_integration import GitHubIntegration
from .models import Activity
from .notifications import (
    NotificationEngine,
    NotificationOutbox,
    NotificationTemplates,
    build_notification_engine,
)
from .project_engine import ProjectEngine
from .prospect_engine import ProspectEngine
from .task_engine import TaskEngine
from .templates import TemplateService
from .time_tracking import TimeLedger

logger = logging.getLogger("services")


@dataclass
class Services:
    config: GroundControlConfig
    store: EntityStore
    outbox: NotificationOutbox
    notifications: NotificationEngine
    activity: ActivityLog
    tasks: TaskEngine
    comments: CommentPipeline
    time: TimeLedger
    prospects: ProspectEngine
    projects: ProjectEngine
    templates: TemplateService
    github: GitHubIntegration

    def enqueue_due_reminders(self, days: int = 1, today: Optional[date] = None) -> int:
        """Queue one Telegram digest of open tasks due within days; returns the task count."""
        due = self.tasks.tasks_due_within(days, today=today)
        if not due:
            return 0
        self.outbox.put(NotificationTemplates.due_reminder(t.to_dict() for t in due))
        return len(due)


def build_services(config: GroundControlConfig) -> Services:
    store = EntityStore(config.data_path)
    outbox = NotificationOutbox()
    activity = ActivityLog(store)

    if config.telegram_activity_notifications:
        def push_activity(record: Activity) -> None:
            outbox.put(NotificationTemplates.task_update(record))

        activity.subscribe(push_activity)
        logger.info("Telegram activity notifications enabled")

    tasks = TaskEngine(store, activity, outbox)
    projects = ProjectEngine(store)
    comments = CommentPipeline(store, activity, outbox)

    return Services(
        config=config,
        store=store,
        outbox=outbox,
        notifications=build_notification_engine(config, outbox),
        activity=activity,
        tasks=tasks,
        comments=comments,
        time=TimeLedger(store, activity),
        prospects=ProspectEngine(store),
        projects=projects,
        templates=TemplateService(store, tasks, projects),
        github=GitHubIntegration(
            store, tasks, comments, activity,
            webhook_secret=config.github_webhook_secret,
        ),
    )


# Global instance
_services: Optional[Services] = None


def get_services() -> Services:
    """Get or create the process-wide services."""
    global _services

    if _services is None:
        _services = build_services(load_config())

    return _services


def set_services(services: Optional[Services]) -> None:
    """Replace (or reset) the process-wide services."""
    global _services
    _services = services
