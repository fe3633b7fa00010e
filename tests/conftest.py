"""
Test configuration and fixtures for the accessibility scan service.

Every test gets its own SQLite database so quota and report tests are
isolated. Browser-facing tests use MagicMock drivers; nothing here launches
Chrome or touches the network.
"""

import os
import tempfile
from typing import Generator
from unittest.mock import MagicMock

from dotenv import load_dotenv

load_dotenv()

# Must be set before app.platform.config is imported anywhere
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{tempfile.mktemp(suffix='.db')}"
os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ["CELERY_TASK_ALWAYS_EAGER"] = "false"

import pytest
import pytest_asyncio
from fastapi import Depends
from fastapi.testclient import TestClient

from app.platform.db.connection import AsyncDatabaseConnectionManager, DatabaseConnectionManager
from app.features.scan.services.reports.report_store import AsyncScanReportStore, ScanReportStore

ADMIN_HEADERS = {"X-Admin-Key": "test-admin-key"}


@pytest.fixture
def database_path(tmp_path):
    """One SQLite file per test, shared by the sync (worker) and async (API) stores."""
    return tmp_path / "reports.db"


@pytest.fixture
def connection_manager(database_path) -> Generator[DatabaseConnectionManager, None, None]:
    manager = DatabaseConnectionManager(
        database_url=f"sqlite:///{database_path}",
        max_retries=1,
        backoff_seconds=0,
    )
    yield manager
    manager.close()


@pytest.fixture
def report_store(connection_manager) -> ScanReportStore:
    return ScanReportStore(connection_manager)


@pytest_asyncio.fixture
async def async_connection_manager(database_path):
    manager = AsyncDatabaseConnectionManager(
        database_url=f"sqlite+aiosqlite:///{database_path}",
        max_retries=1,
        backoff_seconds=0,
    )
    yield manager
    await manager.close()


@pytest.fixture
def async_report_store(async_connection_manager) -> AsyncScanReportStore:
    return AsyncScanReportStore(async_connection_manager)


@pytest.fixture
def dispatched() -> list:
    """Report ids handed to the (fake) Celery dispatcher."""
    return []


@pytest.fixture
def admin_headers() -> dict:
    return dict(ADMIN_HEADERS)


@pytest.fixture(scope="session")
def test_app():
    """Create FastAPI test application."""
    from app.main import app

    return app


@pytest.fixture(scope="function")
def client(test_app, database_path, dispatched, monkeypatch) -> Generator[TestClient, None, None]:
    """
    TestClient on the per-test database, with scan dispatch captured
    instead of sent to a broker.

    The TestClient runs the app on its own event loop, so the API manager is
    built here and closed by the app shutdown on that loop.
    """
    from app.features.scan.routes.scan import get_report_store, get_submission_service
    from app.features.scan.services.reports.submission import ScanSubmissionService
    from app.platform.db import connection

    monkeypatch.setattr(
        connection,
        "_async_manager",
        AsyncDatabaseConnectionManager(
            database_url=f"sqlite+aiosqlite:///{database_path}",
            max_retries=1,
            backoff_seconds=0,
        ),
    )

    def submission_service(store: AsyncScanReportStore = Depends(get_report_store)):
        return ScanSubmissionService(store, dispatcher=dispatched.append)

    test_app.dependency_overrides[get_submission_service] = submission_service

    with TestClient(test_app) as test_client:
        yield test_client

    test_app.dependency_overrides.clear()


@pytest.fixture
def mock_driver() -> MagicMock:
    driver = MagicMock()
    driver.execute_script.return_value = None
    driver.execute_cdp_cmd.return_value = {}
    return driver


@pytest.fixture
def mock_session(mock_driver) -> MagicMock:
    session = MagicMock()
    session.driver = mock_driver
    session.viewport_screenshot.return_value = "data:image/png;base64,VIEWPORT"
    session.viewport_size.return_value = {"width": 1280, "height": 800}
    return session
