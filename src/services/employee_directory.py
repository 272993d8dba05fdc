"""Employee directory - resolve employee IDs to display names for task views."""

from typing import Optional

from src.services.supabase_client import SupabaseClient
from src.utils.config import EngineConfig, get_config
from src.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)


class EmployeeDirectory:
    """Name lookup used for enrichment only, never for authorization."""

    async def resolve_name(self, employee_id: int) -> Optional[str]:
        raise NotImplementedError

    async def resolve_names(self, employee_ids: set[int]) -> dict[int, Optional[str]]:
        return {employee_id: await self.resolve_name(employee_id) for employee_id in sorted(employee_ids)}


class SupabaseEmployeeDirectory(EmployeeDirectory):
    """Reads names from the employees table, caching hits for the process lifetime."""

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or get_config()
        self._names: dict[int, str] = {}

    async def resolve_name(self, employee_id: int) -> Optional[str]:
        if employee_id in self._names:
            return self._names[employee_id]

        try:
            async with SupabaseClient() as client:
                result = (
                    client.table(self.config.EMPLOYEES_TABLE)
                    .select("employee_id, name")
                    .eq("employee_id", employee_id)
                    .execute()
                )
        except Exception as e:
            logger.warning(
                "Employee lookup failed",
                employee_id=employee_id,
                error=str(e),
            )
            return None

        if not result.data:
            logger.debug("Employee not found", employee_id=employee_id)
            return None

        name = result.data[0].get("name")
        if name:
            self._names[employee_id] = name
        return name

    def clear_cache(self) -> None:
        self._names.clear()
