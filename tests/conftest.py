"""Shared pytest fixtures for StayPay tests."""
import sys
sys.dont_write_bytecode = True

from unittest.mock import MagicMock  # noqa: E402

import pytest  # noqa: E402


@pytest.fixture
def cur():
    """Mocked psycopg2 cursor."""
    return MagicMock()


@pytest.fixture(autouse=True)
def _clear_task_auth_env(monkeypatch):
    """Keep task-auth configuration from the host environment out of tests."""
    for name in ("TASKS_OIDC_AUDIENCE", "TASKS_OIDC_SERVICE_ACCOUNT", "INTERNAL_TASK_SECRET"):
        monkeypatch.delenv(name, raising=False)
