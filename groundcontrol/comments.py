"""
Comment & Mention Pipeline

Comments are appended to their task together with a "commented" activity
record. Mentions (@clifton, @sage) are extracted case-insensitively,
lowercased and deduplicated in first-seen order; the field is left out when
nothing was mentioned.

A mention of the remote collaborator by someone else (never by the system)
enqueues a mention notification once the unit of work commits.
"""

import logging
import re
from typing import List, Optional

from .activity_log import ActivityLog, DETAILS_PREVIEW, truncate
from .entity_store import EntityStore
from .models import (
    ActivityAction,
    Actor,
    Comment,
    REMOTE_COLLABORATOR,
    Task,
    new_id,
    utc_now_iso,
)
from .notifications import NotificationOutbox, NotificationTemplates

logger = logging.getLogger("comments")

MENTION_RE = re.compile(r"@(clifton|sage)", re.IGNORECASE)


def extract_mentions(content: str) -> List[str]:
    mentions: List[str] = []
    for match in MENTION_RE.finditer(content):
        name = match.group(1).lower()
        if name not in mentions:
            mentions.append(name)
    return mentions


class CommentPipeline:
    def __init__(
        self,
        store: EntityStore,
        activity_log: ActivityLog,
        outbox: Optional[NotificationOutbox] = None
    ):
        self.store = store
        self.activity_log = activity_log
        self.outbox = outbox

    def _append(self, task: Task, author: Actor, content: str) -> Comment:
        mentions = extract_mentions(content)
        comment = Comment(
            id=new_id(),
            author=author,
            content=content,
            created_at=utc_now_iso(),
            mentions=mentions or None,
        )
        self.store.patch("tasks", task.id, {
            "comments": [c.to_dict() for c in task.comments] + [comment.to_dict()],
            "updated_at": comment.created_at,
        })
        return comment

    def add_comment(
        self,
        task_id: str,
        author: Actor,
        content: str,
        actor: Optional[Actor] = None
    ) -> Comment:
        """
        Append a comment and log it.

        Args:
            task_id: Task to comment on
            author: Comment author (clifton, sage or system)
            content: Comment body
            actor: Activity actor, defaults to the author

        Raises:
            NotFoundError: unknown task
        """
        author = Actor(author)
        with self.store.transaction() as uow:
            task = Task.from_dict(self.store.require("tasks", task_id))
            comment = self._append(task, author, content)
            self.activity_log.append(
                task.id,
                task.title,
                ActivityAction.COMMENTED,
                actor=Actor(actor) if actor else author,
                details=truncate(content, DETAILS_PREVIEW),
            )

            notify = (
                comment.mentions is not None
                and REMOTE_COLLABORATOR in comment.mentions
                and author not in (Actor.SAGE, Actor.SYSTEM)
                and self.outbox is not None
            )
            if notify:
                notification = NotificationTemplates.mention(
                    task_id=task.id,
                    task_title=task.title,
                    comment_content=content,
                    comment_author=author.value,
                )
                uow.on_commit(lambda: self.outbox.put(notification))

        logger.info(f"Comment by {author.value} on '{task.title}'")
        return comment

    def add_system_comment(self, task_id: str, content: str) -> Comment:
        """Append a system-authored comment; never notifies and logs no activity."""
        with self.store.transaction():
            task = Task.from_dict(self.store.require("tasks", task_id))
            comment = self._append(task, Actor.SYSTEM, content)
        return comment
