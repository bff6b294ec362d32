"""
Structured errors for the task core.

Every error carries a stable code, a human message and a details mapping so
the HTTP layer can render it without knowing the concrete type.
"""

from typing import Any, Dict, List, Optional


class GroundControlError(Exception):
    """Base error with structured details."""
    status_code = 500

    def __init__(self, code: str, message: str, details: Dict[str, Any] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": True,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(GroundControlError):
    status_code = 404

    def __init__(self, entity: str, entity_id: str):
        super().__init__(
            code="NOT_FOUND",
            message=f"{entity.capitalize()} '{entity_id}' not found",
            details={"entity": entity, "id": entity_id}
        )


class BlockedTransitionError(GroundControlError):
    """Completion attempted while blockers are still open."""
    status_code = 409

    def __init__(self, task_title: str, blocker_titles: List[str]):
        self.blocker_titles = list(blocker_titles)
        super().__init__(
            code="BLOCKED_TRANSITION",
            message=(
                f"Task '{task_title}' is blocked by incomplete tasks: "
                f"{', '.join(blocker_titles)}"
            ),
            details={"task_title": task_title, "blockers": self.blocker_titles}
        )


class TimerAlreadyRunningError(GroundControlError):
    status_code = 409

    def __init__(self, task_id: str, started_at: Optional[str] = None):
        super().__init__(
            code="TIMER_ALREADY_RUNNING",
            message=f"Timer already running for task '{task_id}'",
            details={"task_id": task_id, "started_at": started_at}
        )


class NoTimerRunningError(GroundControlError):
    status_code = 409

    def __init__(self, task_id: str):
        super().__init__(
            code="NO_TIMER_RUNNING",
            message=f"No timer running for task '{task_id}'",
            details={"task_id": task_id}
        )


class EntryNotFoundError(GroundControlError):
    status_code = 404

    def __init__(self, task_id: str, entry_id: str):
        super().__init__(
            code="ENTRY_NOT_FOUND",
            message=f"Time entry '{entry_id}' not found on task '{task_id}'",
            details={"task_id": task_id, "entry_id": entry_id}
        )


class ValidationError(GroundControlError):
    status_code = 400

    def __init__(self, errors: List[str]):
        super().__init__(
            code="VALIDATION_FAILED",
            message="; ".join(errors) if errors else "Validation failed",
            details={"errors": errors}
        )


class InvalidSignatureError(GroundControlError):
    status_code = 401

    def __init__(self):
        super().__init__(
            code="INVALID_SIGNATURE",
            message="Invalid webhook signature",
        )


class StoreError(GroundControlError):
    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(code="STORE_FAILED", message=message, details=details)
