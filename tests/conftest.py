"""
Shared pytest fixtures and configuration for userpool tests.

This module provides:
- Temporary data directories and bound store factories
- A user record builder with fixed timestamps
- Settings/logging cleanup for test isolation
"""

import functools
import os
import sys
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest
import structlog

# Ensure userpool package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from userpool.core.datastore import create_data_store
from userpool.core.models import Attribute, UserRecord
from userpool.core.settings import reset_settings

NOW_MS = 1_700_000_000_000


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)

        if "cli" in test_path.parts or "userpool" in test_path.name:
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Isolation Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[None, None, None]:
    """
    Drop USERPOOL_* variables, run from an empty directory (no stray .env)
    and reset cached settings and logging configuration around each test.
    """
    for key in list(os.environ):
        if key.startswith("USERPOOL_"):
            monkeypatch.delenv(key)
    workdir = tmp_path / "cwd"
    workdir.mkdir()
    monkeypatch.chdir(workdir)
    reset_settings()
    yield
    reset_settings()
    structlog.reset_defaults()


# =============================================================================
# Store Fixtures
# =============================================================================


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    """Empty base directory for store files."""
    path = tmp_path / "db"
    path.mkdir()
    return path


@pytest.fixture
def store_factory(data_dir: Path) -> Callable[..., Any]:
    """``create_data_store`` with the directory bound to ``data_dir``."""
    return functools.partial(create_data_store, directory=data_dir)


@pytest.fixture
def make_user() -> Callable[..., UserRecord]:
    """
    Build a ``UserRecord`` with fixed timestamps.

        user = make_user("1", email="example@example.com")
    """

    def _make(username: str = "1", *, password: str = "hunter2", **attributes: str) -> UserRecord:
        return UserRecord(
            username=username,
            password=password,
            user_status="UNCONFIRMED",
            attributes=[Attribute(name, value) for name, value in attributes.items()],
            user_create_date=NOW_MS,
            user_last_modified_date=NOW_MS,
            enabled=True,
        )

    return _make


@pytest.fixture
def now_ms() -> int:
    """The fixed timestamp ``make_user`` stamps on records."""
    return NOW_MS
