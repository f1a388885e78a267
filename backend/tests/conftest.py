# backend/tests/conftest.py
"""
Pytest configuration for Notion Workload Dashboard backend tests.

- Ensures that the project root (backend/) is added to sys.path
  so that `import app.*` works correctly in tests.
- Clears env-derived settings so every test starts without a shared
  guest credential or OAuth app configured.
"""

import sys
from pathlib import Path

import pytest


def _ensure_project_root_in_sys_path() -> None:
    # This file is located at: backend/tests/conftest.py
    # parents[1] -> backend/
    project_root = Path(__file__).resolve().parents[1]
    project_root_str = str(project_root)

    if project_root_str not in sys.path:
        # Insert at the beginning so it has priority over site-packages, etc.
        sys.path.insert(0, project_root_str)


_ensure_project_root_in_sys_path()


_ENV_VARS = (
    "NOTION_API_BASE_URL",
    "NOTION_API_VERSION",
    "NOTION_OWNER_ACCESS_TOKEN",
    "NOTION_OWNER_DATABASE_ID",
    "NOTION_OWNER_WORKSPACE_ID",
    "NOTION_OWNER_WORKSPACE_NAME",
    "NOTION_CLIENT_ID",
    "NOTION_CLIENT_SECRET",
    "NOTION_REDIRECT_URI",
    "MANAGER_SECRET",
    "WORKLOAD_FAILURE_MODE",
    "NOTION_MAX_CONCURRENCY",
    "NOTION_TIMEOUT_SECONDS",
    "NOTION_QUERY_PAGE_SIZE",
)


@pytest.fixture(autouse=True)
def _clean_notion_env(monkeypatch):
    """
    Remove env vars that change aggregation behaviour and reset the cached config.

    Real credentials must never leak into tests from the developer's shell.
    """
    from app.notion.config import get_notion_config

    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    get_notion_config.cache_clear()
    yield
    get_notion_config.cache_clear()
