"""Task record store.

Each task is persisted as one row: the whole aggregate in a JSON ``document``
column plus the columns used for filtering (``status``, ``assignee_id``,
``assigner_id``, ``due_date``) and the ``version`` used for optimistic
concurrency. Writes replace the whole document only when the stored version
still matches the snapshot the decision was made on.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from src.models.task import AuditEntry, Task
from src.services.supabase_client import SupabaseClient
from src.utils.config import EngineConfig, get_config
from src.utils.errors import ConflictError, NotFoundError, StoreError
from src.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)


class TaskStore(ABC):
    """Storage contract the orchestrator relies on."""

    @abstractmethod
    async def find_by_id(self, task_id: str) -> Optional[Task]:
        """Return the current snapshot, or None when the task does not exist."""

    @abstractmethod
    async def find_many(self, task_ids: list[str]) -> list[Task]:
        """Return the snapshots that exist among ``task_ids``."""

    @abstractmethod
    async def insert(self, task: Task) -> Task:
        """Persist a new task at version 0 and return the stored snapshot."""

    @abstractmethod
    async def conditional_update(self, task_id: str, expected_version: int, task: Task) -> Task:
        """Replace the aggregate if the stored version equals ``expected_version``.

        Raises:
            NotFoundError: no such task.
            ConflictError: the stored version moved on since the snapshot was read.
        """

    @abstractmethod
    async def append_audit(self, task_id: str, entry: AuditEntry) -> None:
        """Append an audit entry without touching the rest of the aggregate.

        The stored version is bumped, so a writer holding an older snapshot
        gets a ConflictError instead of overwriting the entry.
        """


def task_to_row(task: Task, version: int) -> dict[str, Any]:
    document = task.model_dump(mode="json", exclude={"version"})
    return {
        "task_id": task.task_id,
        "version": version,
        "status": task.status.value,
        "assignee_id": task.assignee_id,
        "assigner_id": task.assigner_id,
        "due_date": task.due_date.isoformat() if task.due_date else None,
        "parent_task_id": task.parent_task_id,
        "document": document,
        "updated_at": document["updated_at"],
    }


def row_to_task(row: dict[str, Any]) -> Task:
    return Task.model_validate({**row["document"], "version": row["version"]})


class SupabaseTaskStore(TaskStore):
    """Task store backed by a Supabase table."""

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or get_config()
        self.table = self.config.TASKS_TABLE

    async def find_by_id(self, task_id: str) -> Optional[Task]:
        async with SupabaseClient() as client:
            try:
                result = client.table(self.table).select("*").eq("task_id", task_id).execute()
            except Exception as e:
                raise StoreError(f"Failed to load task {task_id}: {e}") from e
        return row_to_task(result.data[0]) if result.data else None

    async def find_many(self, task_ids: list[str]) -> list[Task]:
        if not task_ids:
            return []
        async with SupabaseClient() as client:
            try:
                result = client.table(self.table).select("*").in_("task_id", task_ids).execute()
            except Exception as e:
                raise StoreError(f"Failed to load tasks: {e}") from e
        return [row_to_task(row) for row in result.data or []]

    async def insert(self, task: Task) -> Task:
        async with SupabaseClient() as client:
            try:
                result = client.table(self.table).insert(task_to_row(task, 0)).execute()
            except Exception as e:
                raise StoreError(f"Failed to create task: {e}") from e
        if not result.data:
            raise StoreError("Failed to create task: no data returned")
        logger.info("Task inserted", task_id=task.task_id)
        return row_to_task(result.data[0])

    async def conditional_update(self, task_id: str, expected_version: int, task: Task) -> Task:
        async with SupabaseClient() as client:
            try:
                result = (
                    client.table(self.table)
                    .update(task_to_row(task, expected_version + 1))
                    .eq("task_id", task_id)
                    .eq("version", expected_version)
                    .execute()
                )
            except Exception as e:
                raise StoreError(f"Failed to update task {task_id}: {e}") from e

        if result.data:
            return row_to_task(result.data[0])

        # Nothing matched: either the task is gone or someone else wrote first
        current = await self.find_by_id(task_id)
        if current is None:
            raise NotFoundError("Task not found", details={"task_id": task_id})
        logger.warning(
            "Conditional update lost the race",
            task_id=task_id,
            expected_version=expected_version,
            stored_version=current.version,
        )
        raise ConflictError(
            "Task was modified concurrently; the action was not applied",
            details={"task_id": task_id, "expected_version": expected_version, "stored_version": current.version},
        )

    async def append_audit(self, task_id: str, entry: AuditEntry) -> None:
        # The database function appends to document->audit_trail and increments version in one statement
        async with SupabaseClient() as client:
            try:
                client.rpc(self.config.AUDIT_APPEND_RPC, {
                    "p_task_id": task_id,
                    "p_entry": entry.model_dump(mode="json"),
                }).execute()
            except Exception as e:
                raise StoreError(f"Failed to append audit entry to {task_id}: {e}") from e
