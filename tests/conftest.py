"""Shared pytest fixtures and configuration."""

import os

import pytest
from freezegun import freeze_time
from unittest.mock import MagicMock

# Set test environment variables
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-key")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from src.models.actor import Actor, Role  # noqa: E402
from src.services.task_orchestrator import TaskOrchestrator  # noqa: E402
from src.utils.config import EngineConfig  # noqa: E402
from tests.utils.factories import ASSIGNEE_ID, ASSIGNER_ID, OUTSIDER_ID, REVIEWER_IDS  # noqa: E402
from tests.utils.fakes import (  # noqa: E402
    InMemoryTaskStore,
    RecordingNotificationSink,
    StaticEmployeeDirectory,
)


@pytest.fixture
def engine_config():
    """Config with the default thresholds, independent of the environment."""
    return EngineConfig(
        SIGNIFICANT_PROGRESS_DELTA=20,
        NEAR_COMPLETION_THRESHOLD=90,
        DEFAULT_MAX_OCCURRENCES=52,
        ADMIN_BYPASS_ENABLED=True,
        RECORD_DENIED_ACCESS=True,
    )


@pytest.fixture
def store():
    return InMemoryTaskStore()


@pytest.fixture
def sink():
    return RecordingNotificationSink()


@pytest.fixture
def directory():
    return StaticEmployeeDirectory({
        ASSIGNER_ID: "Layla Haddad",
        ASSIGNEE_ID: "Omar Farouk",
        REVIEWER_IDS[0]: "Sara Nasser",
        REVIEWER_IDS[1]: "Yusuf Karim",
    })


@pytest.fixture
def orchestrator(store, sink, directory, engine_config):
    return TaskOrchestrator(store, sink, directory, config=engine_config)


@pytest.fixture
def assigner():
    return Actor(employee_id=ASSIGNER_ID, role=Role.MANAGER)


@pytest.fixture
def assignee():
    return Actor(employee_id=ASSIGNEE_ID)


@pytest.fixture
def outsider():
    return Actor(employee_id=OUTSIDER_ID)


@pytest.fixture
def admin():
    return Actor(employee_id=1, role=Role.ADMIN)


@pytest.fixture
def reviewers():
    return [Actor(employee_id=employee_id) for employee_id in REVIEWER_IDS]


@pytest.fixture
def freeze_time_fixture():
    """Fixture for freezing time in tests."""
    with freeze_time("2024-12-09 12:00:00") as frozen_time:
        yield frozen_time


@pytest.fixture
def mock_supabase_client():
    """Mock Supabase client whose query builders chain back to themselves."""
    client = MagicMock()
    query = MagicMock()
    for method in ("select", "insert", "update", "eq", "in_"):
        getattr(query, method).return_value = query
    query.execute.return_value = MagicMock(data=[])
    client.table.return_value = query
    client.rpc.return_value = query
    return client
