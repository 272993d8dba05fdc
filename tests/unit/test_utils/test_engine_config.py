"""Tests for engine configuration and wiring."""

import logging
from unittest.mock import patch

import pytest

from src.services.employee_directory import SupabaseEmployeeDirectory
from src.services.notifications import SupabaseNotificationSink
from src.services.supabase_client import get_supabase_client, reset_supabase_client
from src.services.task_orchestrator import create_orchestrator
from src.services.task_store import SupabaseTaskStore
from src.utils.config import EngineConfig, get_config
from src.utils.errors import StoreError


@pytest.mark.unit
def test_defaults():
    config = EngineConfig()

    assert config.SIGNIFICANT_PROGRESS_DELTA == 20
    assert config.NEAR_COMPLETION_THRESHOLD == 90
    assert config.DEFAULT_MAX_OCCURRENCES == 52
    assert config.TASKS_TABLE == "tasks"


@pytest.mark.unit
def test_overrides_are_per_instance():
    config = EngineConfig(SIGNIFICANT_PROGRESS_DELTA=10)

    assert config.SIGNIFICANT_PROGRESS_DELTA == 10
    assert EngineConfig().SIGNIFICANT_PROGRESS_DELTA == 20


@pytest.mark.unit
def test_unknown_override_rejected():
    with pytest.raises(AttributeError):
        EngineConfig(SIGNIFICANT_DELTA=10)


@pytest.mark.unit
def test_get_config_is_a_singleton():
    assert get_config() is get_config()


@pytest.mark.unit
def test_missing_supabase_credentials(monkeypatch):
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    reset_supabase_client()

    with pytest.raises(StoreError):
        get_supabase_client()

    reset_supabase_client()


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.mark.unit
def test_create_orchestrator_wires_supabase_collaborators(restore_root_logger):
    config = EngineConfig(TASKS_TABLE="tasks_test")

    with patch("src.utils.logging_config.LoggingConfig.LOG_LEVEL", "WARNING"):
        orchestrator = create_orchestrator(config)

    assert isinstance(orchestrator.store, SupabaseTaskStore)
    assert isinstance(orchestrator.notifier, SupabaseNotificationSink)
    assert isinstance(orchestrator.directory, SupabaseEmployeeDirectory)
    assert orchestrator.store.table == "tasks_test"
    assert logging.getLogger().level == logging.WARNING
