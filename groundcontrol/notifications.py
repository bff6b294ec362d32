"""
Notification Engine - Outbound Notifications

This module owns everything the core sends to the outside world:
1. Notification command objects and their templates
2. The outbox the core pushes into after a unit of work commits
3. Routing to delivery channels (collaborator webhook, Telegram)
4. Delivery tracking and logging

IMPORTANT:
- Nothing here runs inside a store transaction
- Delivery failures are logged and recorded on the notification, never
  raised back to the code that enqueued it
- Rate limiting is applied per recipient
- All notifications are logged to a daily JSONL file for audit
"""

import asyncio
import html
import json
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Deque, Dict, Iterable, List, Optional

import httpx

from .config import GroundControlConfig
from .models import Activity, REMOTE_COLLABORATOR, utc_now

logger = logging.getLogger("notification_engine")

TELEGRAM_API_URL = "https://api.telegram.org/bot{token}/sendMessage"
HTTP_TIMEOUT = 10.0


class NotificationType(str, Enum):
    # Collaborator webhook
    MENTION = "mention"
    ASSIGNMENT = "assignment"

    # Telegram
    TASK_UPDATE = "task_update"
    DUE_REMINDER = "due_reminder"


CHANNEL_ROUTES: Dict[NotificationType, str] = {
    NotificationType.MENTION: "webhook",
    NotificationType.ASSIGNMENT: "webhook",
    NotificationType.TASK_UPDATE: "telegram",
    NotificationType.DUE_REMINDER: "telegram",
}


@dataclass
class Notification:
    """An outbound notification; payload is the JSON body for webhooks."""
    notification_type: NotificationType
    title: str
    message: str
    recipient: str = "default"
    task_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)
    delivered_at: Optional[datetime] = None
    delivery_channel: Optional[str] = None
    delivery_error: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "type": self.notification_type.value,
            "title": self.title,
            "message": self.message,
            "recipient": self.recipient,
            "task_id": self.task_id,
            "payload": self.payload,
            "created_at": self.created_at.isoformat(),
            "delivered_at": self.delivered_at.isoformat() if self.delivered_at else None,
            "delivery_channel": self.delivery_channel,
            "delivery_error": self.delivery_error
        }


# -----------------------------------------------------------------------------
# Templates
# -----------------------------------------------------------------------------
ACTION_EMOJI = {
    "created": "✨",
    "completed": "✅",
    "moved": "➡️",
    "assigned": "👤",
    "commented": "💬",
    "deleted": "🗑️",
}

ACTOR_NAMES = {
    "sage": "🌿 Sage",
    "clifton": "👤 Clifton",
}

ASSIGNEE_ICONS = {
    "sage": "🌿",
    "clifton": "👤",
}


def _collaborator_payload(**fields: Any) -> Dict[str, Any]:
    """Webhook body: unset fields are omitted, a timestamp is always added."""
    payload = {key: value for key, value in fields.items() if value is not None}
    payload["timestamp"] = utc_now().isoformat()
    return payload


class NotificationTemplates:
    """Pre-defined notification templates."""

    @staticmethod
    def mention(
        task_id: str,
        task_title: str,
        comment_content: str,
        comment_author: str
    ) -> Notification:
        return Notification(
            notification_type=NotificationType.MENTION,
            title="Mentioned in a comment",
            message=f"{comment_author} mentioned @{REMOTE_COLLABORATOR} on '{task_title}'",
            recipient=REMOTE_COLLABORATOR,
            task_id=task_id,
            payload=_collaborator_payload(
                taskId=task_id,
                taskTitle=task_title,
                actionType="mention",
                commentContent=comment_content,
                commentAuthor=comment_author,
            )
        )

    @staticmethod
    def assignment(task_id: str, task_title: str, assigned_by: str) -> Notification:
        return Notification(
            notification_type=NotificationType.ASSIGNMENT,
            title="Task assigned",
            message=f"{assigned_by} assigned '{task_title}' to {REMOTE_COLLABORATOR}",
            recipient=REMOTE_COLLABORATOR,
            task_id=task_id,
            payload=_collaborator_payload(
                taskId=task_id,
                taskTitle=task_title,
                actionType="assignment",
                assignedBy=assigned_by,
            )
        )

    @staticmethod
    def task_update(activity: Activity) -> Notification:
        emoji = ACTION_EMOJI.get(activity.action, "📝")
        actor_name = ACTOR_NAMES.get(activity.actor, "System")
        message = (
            f"{emoji} <b>{actor_name}</b> {activity.action} task:\n"
            f"<i>{html.escape(activity.task_title)}</i>"
        )
        if activity.details:
            message += f"\n\n{html.escape(activity.details)}"

        return Notification(
            notification_type=NotificationType.TASK_UPDATE,
            title=f"Task {activity.action}",
            message=message,
            recipient="telegram",
            task_id=activity.task_id,
            payload={"action": activity.action, "actor": activity.actor}
        )

    @staticmethod
    def due_reminder(tasks: Iterable[Dict[str, Any]]) -> Notification:
        """Digest of tasks with a due date; each task dict needs title, due_date, assignee."""
        message = "⏰ <b>Due Date Reminders</b>\n\n"
        count = 0
        for task in tasks:
            icon = ASSIGNEE_ICONS.get(task.get("assignee"), "❓")
            message += (
                f"{icon} <i>{html.escape(task['title'])}</i>\n"
                f"   📅 Due: {task.get('due_date')}\n\n"
            )
            count += 1

        return Notification(
            notification_type=NotificationType.DUE_REMINDER,
            title="Due Date Reminders",
            message=message,
            recipient="telegram",
            payload={"count": count}
        )


# -----------------------------------------------------------------------------
# Outbox
# -----------------------------------------------------------------------------
class NotificationOutbox:
    """Thread-safe FIFO of notifications waiting for delivery."""

    def __init__(self):
        self._queue: Deque[Notification] = deque()
        self._lock = threading.Lock()

    def put(self, notification: Notification) -> None:
        with self._lock:
            self._queue.append(notification)
        logger.debug(f"Enqueued {notification.notification_type.value} notification")

    def take_all(self) -> List[Notification]:
        with self._lock:
            items = list(self._queue)
            self._queue.clear()
        return items

    def __len__(self) -> int:
        with self._lock:
            return len(self._queue)


# -----------------------------------------------------------------------------
# Engine
# -----------------------------------------------------------------------------
ChannelHandler = Callable[[Notification], Awaitable[bool]]


class NotificationEngine:
    """
    Drains the outbox through registered channels.

    Features:
    - Per-type routing (webhook for collaborator events, Telegram for updates)
    - Rate limiting per recipient
    - Delivery tracking and JSONL logging
    """

    def __init__(self, config: GroundControlConfig, outbox: NotificationOutbox):
        self.outbox = outbox
        self._log_dir = config.notification_log_path
        self._rate_limit_window = config.rate_limit_window
        self._rate_limit_max = config.rate_limit_max
        self._channels: Dict[str, ChannelHandler] = {}
        self._rate_limits: Dict[str, List[datetime]] = {}
        self._stopping: Optional[asyncio.Event] = None

    def register_channel(self, name: str, handler: ChannelHandler):
        """Register a notification delivery channel."""
        self._channels[name] = handler
        logger.info(f"Registered notification channel: {name}")

    @property
    def channels(self) -> List[str]:
        return list(self._channels)

    def _check_rate_limit(self, recipient: str) -> bool:
        """Check if recipient is within rate limit."""
        now = utc_now()
        window_start = now - timedelta(seconds=self._rate_limit_window)

        recent = [t for t in self._rate_limits.get(recipient, []) if t > window_start]
        self._rate_limits[recipient] = recent

        if len(recent) >= self._rate_limit_max:
            return False

        recent.append(now)
        return True

    def _log_file(self) -> Path:
        return self._log_dir / f"{utc_now().strftime('%Y-%m-%d')}.jsonl"

    def _log_notification(self, notification: Notification):
        """Log notification for audit."""
        try:
            self._log_dir.mkdir(parents=True, exist_ok=True)
            with open(self._log_file(), "a") as f:
                f.write(json.dumps(notification.to_dict()) + "\n")
        except OSError as e:
            logger.error(f"Failed to log notification: {e}")

    async def send(
        self,
        notification: Notification,
        channel: Optional[str] = None
    ) -> bool:
        """
        Deliver one notification.

        Args:
            notification: The notification to send
            channel: Channel name (None = route by notification type)

        Returns:
            True if delivered successfully
        """
        if not self._check_rate_limit(notification.recipient):
            logger.warning(f"Rate limit exceeded for {notification.recipient}")
            notification.delivery_error = "Rate limit exceeded"
            self._log_notification(notification)
            return False

        ch_name = channel or CHANNEL_ROUTES[notification.notification_type]
        handler = self._channels.get(ch_name)
        delivered = False

        if handler is None:
            notification.delivery_error = f"No channel registered: {ch_name}"
            logger.warning(notification.delivery_error)
        else:
            try:
                delivered = bool(await handler(notification))
                if delivered:
                    notification.delivered_at = utc_now()
                    notification.delivery_channel = ch_name
                else:
                    notification.delivery_error = f"Channel {ch_name} did not deliver"
            except Exception as e:
                logger.error(f"Channel {ch_name} delivery failed: {e}")
                notification.delivery_error = str(e)

        self._log_notification(notification)
        return delivered

    async def drain(self) -> Dict[str, int]:
        """
        Send everything currently in the outbox.

        Returns:
            Dict with 'delivered' and 'failed' counts
        """
        delivered = 0
        failed = 0

        for notification in self.outbox.take_all():
            if await self.send(notification):
                delivered += 1
            else:
                failed += 1

        if delivered or failed:
            logger.info(f"Outbox drained: {delivered} delivered, {failed} failed")
        return {"delivered": delivered, "failed": failed}

    async def run(self, poll_interval: float):
        """Drain the outbox every poll_interval seconds until stop() is called."""
        self._stopping = asyncio.Event()
        logger.info(f"Notification drain loop started (every {poll_interval}s)")
        while not self._stopping.is_set():
            await self.drain()
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=poll_interval)
            except asyncio.TimeoutError:
                continue
        await self.drain()
        logger.info("Notification drain loop stopped")

    def stop(self):
        if self._stopping is not None:
            self._stopping.set()

    def get_recent_notifications(self, limit: int = 50) -> List[Dict]:
        """Get today's notifications from the log."""
        notifications = []
        log_file = self._log_file()

        if log_file.exists():
            try:
                with open(log_file, "r") as f:
                    for line in f:
                        notifications.append(json.loads(line))
            except (OSError, ValueError) as e:
                logger.error(f"Failed to read notifications: {e}")

        return notifications[-limit:]


# -----------------------------------------------------------------------------
# Channels
# -----------------------------------------------------------------------------
def collaborator_webhook_channel(webhook_url: Optional[str]) -> ChannelHandler:
    """POST the notification payload as JSON to the collaborator webhook."""

    async def _send(notification: Notification) -> bool:
        if not webhook_url:
            logger.info(
                f"[Collaborator notification] No webhook URL configured - logged only: "
                f"{json.dumps(notification.payload)}"
            )
            return False

        async with httpx.AsyncClient(timeout=HTTP_TIMEOUT) as client:
            response = await client.post(webhook_url, json=notification.payload)

        if response.status_code >= 400:
            logger.error(f"[Collaborator notification] Webhook failed: {response.status_code}")
            return False
        logger.info("[Collaborator notification] Webhook sent successfully")
        return True

    return _send


def telegram_channel(bot_token: Optional[str], chat_id: Optional[str]) -> ChannelHandler:
    """Send the notification message to one Telegram chat (HTML parse mode)."""

    async def _send(notification: Notification) -> bool:
        if not bot_token or not chat_id:
            logger.warning("Telegram not configured")
            return False

        async with httpx.AsyncClient(timeout=HTTP_TIMEOUT) as client:
            response = await client.post(
                TELEGRAM_API_URL.format(token=bot_token),
                json={
                    "chat_id": chat_id,
                    "text": notification.message,
                    "parse_mode": "HTML",
                    "disable_web_page_preview": True
                }
            )

        if response.status_code != 200:
            logger.error(f"Telegram send failed: {response.status_code}")
            return False
        return True

    return _send


def build_notification_engine(
    config: GroundControlConfig,
    outbox: NotificationOutbox
) -> NotificationEngine:
    """Create an engine with the webhook and Telegram channels from config."""
    engine = NotificationEngine(config, outbox)
    engine.register_channel("webhook", collaborator_webhook_channel(config.collaborator_webhook_url))
    engine.register_channel(
        "telegram",
        telegram_channel(config.telegram_bot_token, config.telegram_chat_id)
    )
    return engine
