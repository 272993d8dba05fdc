"""Engine configuration with environment variable support."""

import os
from typing import Any


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() == "true"


class EngineConfig:
    """Tunable thresholds and storage names for the workflow engine.

    Class attributes hold the environment defaults; keyword arguments override
    them per instance (tests build their own config this way).
    """

    # Progress & milestones
    SIGNIFICANT_PROGRESS_DELTA = int(os.environ.get("SIGNIFICANT_PROGRESS_DELTA", "20"))
    NEAR_COMPLETION_THRESHOLD = int(os.environ.get("NEAR_COMPLETION_THRESHOLD", "90"))

    # Recurrence
    DEFAULT_MAX_OCCURRENCES = int(os.environ.get("DEFAULT_MAX_OCCURRENCES", "52"))

    # Authorization
    ADMIN_BYPASS_ENABLED = _env_bool("ADMIN_BYPASS_ENABLED", "true")
    RECORD_DENIED_ACCESS = _env_bool("RECORD_DENIED_ACCESS", "true")

    # Supabase tables
    TASKS_TABLE = os.environ.get("TASKS_TABLE", "tasks")
    NOTIFICATIONS_TABLE = os.environ.get("NOTIFICATIONS_TABLE", "notifications")
    EMPLOYEES_TABLE = os.environ.get("EMPLOYEES_TABLE", "employees")
    AUDIT_APPEND_RPC = os.environ.get("AUDIT_APPEND_RPC", "append_task_audit_entry")

    def __init__(self, **overrides: Any):
        for key, value in overrides.items():
            if not hasattr(type(self), key):
                raise AttributeError(f"Unknown config option: {key}")
            setattr(self, key, value)


_config: EngineConfig | None = None


def get_config() -> EngineConfig:
    """Get or create the process-wide config."""
    global _config
    if _config is None:
        _config = EngineConfig()
    return _config
