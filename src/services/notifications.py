"""Notification sink - delivers task notifications to employees."""

from typing import Optional

from src.models.notification import Notification, NotificationPriority
from src.services.supabase_client import SupabaseClient
from src.utils.config import EngineConfig, get_config
from src.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)


class NotificationSink:
    """Delivery contract. ``notify`` must never raise into the caller."""

    async def notify(self, user_id: int, title: str, content: str, task_id: Optional[str] = None) -> None:
        raise NotImplementedError


class SupabaseNotificationSink(NotificationSink):
    """Writes one unread ``TASK`` notification row per call."""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        priority: NotificationPriority = NotificationPriority.HIGH,
    ):
        self.config = config or get_config()
        self.priority = priority

    async def notify(self, user_id: int, title: str, content: str, task_id: Optional[str] = None) -> None:
        notification = Notification(
            employee_id=user_id,
            title=title,
            content=content,
            priority=self.priority,
            related_to={"type": "task", "id": task_id} if task_id else None,
        )
        try:
            async with SupabaseClient() as client:
                client.table(self.config.NOTIFICATIONS_TABLE).insert(
                    notification.model_dump(mode="json", exclude_none=True)
                ).execute()
            logger.debug("Notification stored", recipient_id=user_id, task_id=task_id)
        except Exception as e:
            # Delivery is best-effort; the task mutation is already persisted
            logger.warning(
                "Failed to store notification",
                recipient_id=user_id,
                task_id=task_id,
                error=str(e),
                error_type=type(e).__name__,
            )
