"""
GitHub Integration - Webhook Boundary

Turns GitHub push and pull_request deliveries into task comments and status
moves.

Task references are found in commit messages, PR titles, bodies and branch
names:
- [TASK-xxx] / [TASK_xxx]   id fragment in brackets
- #xxxxxxxx                 id fragment of at least 8 characters
- task:xxx / task xxx       alternative form

References resolve by case-insensitive substring match on task ids; that
lookup lives here only, the core addresses tasks by exact id.

PR lifecycle:
- opened / reopened        -> in-progress
- ready_for_review         -> review
- closed (merged)          -> update_from_pr_merge (review by default)
- closed (not merged)      -> on-hold + warning comment
- anything else            -> ignored, not counted as processed

Per-reference failures are collected into the result, never raised.
"""

import hashlib
import hmac
import logging
import re
from typing import Any, Dict, List, Optional

from .activity_log import ActivityLog
from .comments import CommentPipeline
from .entity_store import EntityStore
from .errors import GroundControlError
from .models import ActivityAction, Actor, Task, TaskStatus
from .task_engine import TaskEngine

logger = logging.getLogger("github_integration")

REFERENCE_PATTERNS = (
    re.compile(r"\[TASK[_-]([a-zA-Z0-9]+)\]", re.IGNORECASE),
    re.compile(r"#([a-zA-Z0-9]{8,})"),
    re.compile(r"task[:\s]([a-zA-Z0-9]+)", re.IGNORECASE),
)
SUPPORTED_EVENTS = ["push", "pull_request", "ping"]
PREVIEW_LENGTH = 50


def parse_task_references(text: str) -> List[str]:
    """Task id fragments referenced in text, deduplicated in first-seen order."""
    refs: List[str] = []
    for pattern in REFERENCE_PATTERNS:
        for match in pattern.finditer(text or ""):
            if match.group(1) and match.group(1) not in refs:
                refs.append(match.group(1))
    return refs


def verify_signature(payload: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """
    Check an X-Hub-Signature-256 header ("sha256=<hex>").

    Without a configured secret every payload is accepted.
    """
    if not secret:
        return True
    if not signature:
        return False
    digest = "sha256=" + hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(digest, signature)


def _preview(text: str) -> str:
    return text[:PREVIEW_LENGTH] + ("..." if len(text) > PREVIEW_LENGTH else "")


class GitHubIntegration:
    def __init__(
        self,
        store: EntityStore,
        task_engine: TaskEngine,
        comments: CommentPipeline,
        activity_log: ActivityLog,
        webhook_secret: Optional[str] = None,
    ):
        self.store = store
        self.task_engine = task_engine
        self.comments = comments
        self.activity_log = activity_log
        self.webhook_secret = webhook_secret

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def find_by_short_id(self, short_id: str) -> List[Task]:
        needle = short_id.lower()
        return [
            Task.from_dict(doc) for doc in self.store.query("tasks")
            if needle in doc["id"].lower()
        ]

    def _resolve(self, ref: str) -> Optional[Task]:
        matches = self.find_by_short_id(ref)
        return matches[0] if matches else None

    # -------------------------------------------------------------------------
    # Core mutations
    # -------------------------------------------------------------------------

    def add_github_commit(
        self,
        task_id: str,
        commit_sha: str,
        message: str,
        url: str,
        author: Optional[str] = None,
        repo: Optional[str] = None,
        branch: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Attach a commit reference to a task as a system comment."""
        short_sha = commit_sha[:7]
        content = f"🔗 **Commit** [`{short_sha}`]({url})"
        if author:
            content += f" by {author}"
        if repo:
            content += f" in {repo}"
        if branch:
            content += f" on {branch}"
        content += f"\n\n> {message}"

        with self.store.transaction():
            task = self.task_engine.get_task(task_id)
            comment = self.comments.add_system_comment(task_id, content)
            self.activity_log.append(
                task.id, task.title, ActivityAction.COMMENTED, actor=Actor.SYSTEM,
                details=f"GitHub commit {short_sha}: {_preview(message)}",
            )

        logger.info(f"Linked commit {short_sha} to '{task.title}'")
        return {"success": True, "comment_id": comment.id}

    def update_from_pr_merge(
        self,
        task_id: str,
        pr_number: int,
        pr_title: str,
        pr_url: str,
        merged_by: Optional[str] = None,
        repo: Optional[str] = None,
        target_status: TaskStatus = TaskStatus.REVIEW,
    ) -> Dict[str, Any]:
        """
        Record a merged PR and move the task to target_status.

        A task already done is never moved back.
        """
        target_status = TaskStatus(target_status)
        content = f"🎉 **PR Merged** [#{pr_number}]({pr_url})"
        if merged_by:
            content += f" by {merged_by}"
        if repo:
            content += f" in {repo}"
        content += f"\n\n> {pr_title}"

        with self.store.transaction():
            task = self.task_engine.get_task(task_id)
            self.comments.add_system_comment(task_id, content)
            self.activity_log.append(
                task.id, task.title, ActivityAction.COMMENTED, actor=Actor.SYSTEM,
                details=f"PR #{pr_number} merged: {_preview(pr_title)}",
            )

            status_updated = task.status not in (TaskStatus.DONE, target_status)
            if status_updated:
                self.task_engine.move_task(
                    task_id, target_status, actor=Actor.SYSTEM, note="PR merged"
                )

        logger.info(f"PR #{pr_number} merged for '{task.title}' (status updated: {status_updated})")
        return {"success": True, "status_updated": status_updated}

    # -------------------------------------------------------------------------
    # Event handlers
    # -------------------------------------------------------------------------

    def handle_push_event(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        result: Dict[str, Any] = {"processed": 0, "errors": []}
        repo = (payload.get("repository") or {}).get("full_name") or "unknown"
        branch = (payload.get("ref") or "").replace("refs/heads/", "") or "unknown"

        for commit in payload.get("commits") or []:
            message = commit.get("message") or ""
            for ref in parse_task_references(message):
                task = self._resolve(ref)
                if task is None:
                    continue
                author = commit.get("author") or {}
                try:
                    self.add_github_commit(
                        task.id,
                        commit_sha=commit.get("id", ""),
                        message=message.split("\n")[0],
                        url=commit.get("url", ""),
                        author=author.get("name") or author.get("username"),
                        repo=repo,
                        branch=branch,
                    )
                    result["processed"] += 1
                except GroundControlError as e:
                    logger.warning(f"Failed to add commit to task {ref}: {e}")
                    result["errors"].append(f"Failed to add commit to task {ref}: {e}")

        return result

    def handle_pull_request_event(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        result: Dict[str, Any] = {"processed": 0, "errors": []}
        action = payload.get("action")
        pr = payload.get("pull_request")
        if not pr:
            return result

        repo = (payload.get("repository") or {}).get("full_name") or "unknown"
        search_text = " ".join([
            pr.get("title") or "",
            pr.get("body") or "",
            (pr.get("head") or {}).get("ref") or "",
        ])

        for ref in parse_task_references(search_text):
            task = self._resolve(ref)
            if task is None:
                continue
            try:
                if self._apply_pr_action(task, action, pr, repo):
                    result["processed"] += 1
            except GroundControlError as e:
                logger.warning(f"Failed to process PR event for task {ref}: {e}")
                result["errors"].append(f"Failed to process PR event for task {ref}: {e}")

        return result

    def _apply_pr_action(self, task: Task, action: Optional[str], pr: Dict[str, Any], repo: str) -> bool:
        number = pr.get("number")

        if action in ("opened", "reopened"):
            self.task_engine.move_task(task.id, TaskStatus.IN_PROGRESS, actor=Actor.SYSTEM)
        elif action == "ready_for_review":
            self.task_engine.move_task(task.id, TaskStatus.REVIEW, actor=Actor.SYSTEM)
        elif action == "closed":
            if pr.get("merged"):
                self.update_from_pr_merge(
                    task.id,
                    pr_number=number,
                    pr_title=pr.get("title", ""),
                    pr_url=pr.get("html_url", ""),
                    merged_by=(pr.get("merged_by") or {}).get("login"),
                    repo=repo,
                )
            else:
                with self.store.transaction():
                    self.task_engine.move_task(task.id, TaskStatus.ON_HOLD, actor=Actor.SYSTEM)
                    self.comments.add_system_comment(
                        task.id,
                        f"⚠️ PR #{number} closed without merge. Task moved to on-hold.",
                    )
        else:
            return False
        return True

    def handle_event(self, event: Optional[str], payload: Dict[str, Any], delivery_id: Optional[str] = None) -> Dict[str, Any]:
        """Dispatch one webhook delivery by its X-GitHub-Event name."""
        logger.info(f"GitHub webhook received: {event} (delivery: {delivery_id})")

        if event == "ping":
            return {
                "success": True,
                "message": "Pong! Webhook configured successfully.",
                "zen": payload.get("zen"),
            }
        if event == "push":
            result = self.handle_push_event(payload)
        elif event == "pull_request":
            result = self.handle_pull_request_event(payload)
        else:
            return {
                "success": True,
                "message": f"Event '{event}' acknowledged but not processed",
            }

        return {"success": True, "event": event, "delivery_id": delivery_id, **result}
