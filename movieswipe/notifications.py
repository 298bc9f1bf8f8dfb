# movieswipe/notifications.py
"""Best-effort fan-out of group and session events.

Delivery (push, websockets) lives outside this service. A failed dispatch is
logged and never propagated to the operation that triggered it.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict

GROUP_USER_JOINED = "user-joined"
GROUP_USER_LEFT = "user-left"
GROUP_DELETED = "group-deleted"
SESSION_CREATED = "session-created"
SESSION_STARTED = "session-started"
SESSION_COMPLETED = "session-completed"
SESSION_CANCELLED = "session-cancelled"
VOTE_UPDATED = "vote-updated"


class Notifier(ABC):
    @abstractmethod
    def notify_group(self, group_id: int, event: str, payload: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    def notify_user(self, user_id: int, event: str, payload: Dict[str, Any]) -> None:
        ...


class LoggingNotifier(Notifier):
    """Default notifier: records events in the application log."""

    def notify_group(self, group_id: int, event: str, payload: Dict[str, Any]) -> None:
        logging.info(f"Notify group {group_id}: {event} {payload}")

    def notify_user(self, user_id: int, event: str, payload: Dict[str, Any]) -> None:
        logging.info(f"Notify user {user_id}: {event} {payload}")


def dispatch_group_event(notifier: Notifier, group_id: int, event: str, payload: Dict[str, Any]) -> bool:
    """Send an event to a group, returning False instead of raising on failure."""
    try:
        notifier.notify_group(group_id, event, payload)
        return True
    except Exception as e:
        logging.error(f"Failed to deliver '{event}' to group {group_id}: {e}")
        return False


def dispatch_user_event(notifier: Notifier, user_id: int, event: str, payload: Dict[str, Any]) -> bool:
    try:
        notifier.notify_user(user_id, event, payload)
        return True
    except Exception as e:
        logging.error(f"Failed to deliver '{event}' to user {user_id}: {e}")
        return False
