"""Pytest configuration and fixtures for worker tests.

These fixtures enable testing Celery tasks without requiring:
- Running Redis/Celery
- A MySQL server
- External provider APIs
"""

import os
from typing import Any, Generator
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import StaticPool, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

# Set test environment variables before importing celery_app
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("LOG_JSON", "false")


@pytest.fixture(scope="session")
def celery_config() -> dict[str, Any]:
    """Celery configuration for testing."""
    return {
        "broker_url": "memory://",
        "result_backend": "cache+memory://",
        "task_always_eager": True,
        "task_eager_propagates": True,
    }


@pytest.fixture
def mock_celery_app():
    """Celery app configured for eager (synchronous) execution."""
    from harvester_worker.celery_app import app

    app.conf.update(
        task_always_eager=True,
        task_eager_propagates=True,
    )
    return app


@pytest.fixture
def mock_task_request():
    """Create a mock Celery task request object."""
    request = MagicMock()
    request.id = "test-task-id-123"
    request.retries = 0
    return request


@pytest.fixture
def worker_session_factory() -> Generator[sessionmaker[Session], None, None]:
    """SQLite in-memory session factory with the run tables created."""
    from sqlalchemy.dialects import sqlite

    from harvester_core.domain.models import Base

    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    # BigInteger primary keys only autoincrement as INTEGER on SQLite
    original_visit = sqlite.dialect.type_compiler_cls.visit_BIGINT
    sqlite.dialect.type_compiler_cls.visit_BIGINT = lambda self, type_, **kw: "INTEGER"
    Base.metadata.create_all(bind=engine)
    sqlite.dialect.type_compiler_cls.visit_BIGINT = original_visit

    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    with patch("harvester_core.infra.db.get_sync_session_factory", return_value=factory):
        yield factory

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def mock_orchestrator():
    """Orchestrator stand-in whose execute() is awaited by the task."""
    orchestrator = MagicMock()

    async def execute(run_id):
        return orchestrator.final_status

    orchestrator.final_status = "completed"
    orchestrator.execute = MagicMock(side_effect=execute)
    return orchestrator


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Reset the settings cache before each test."""
    from harvester_core.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
