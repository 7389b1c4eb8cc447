"""Pytest configuration and fixtures for Harvester Core tests.

This module provides fixtures for:
- Database: SQLite in-memory with SAVEPOINT support
- Orchestrator: wired to a scripted provider client, no network
- HTTP client: AsyncClient for FastAPI testing
"""

from collections.abc import AsyncGenerator, Generator

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import StaticPool, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from harvester_core.config import Settings
from harvester_core.domain.models import Base
from harvester_core.domain.services.gate import ValidationGate
from harvester_core.domain.services.normalizer import Normalizer
from harvester_core.domain.services.orchestrator import RunOrchestrator
from harvester_core.providers.adapter import ProviderAdapter, ProviderConfig
from harvester_core.providers.apify.mapping import APOLLO_DOMAIN_MAPPING
from tests.fakes import FakeProviderClient


# -----------------------------------------------------------------------------
# Test Settings
# -----------------------------------------------------------------------------


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings with no waits."""
    return Settings(
        database_url="sqlite+pysqlite:///:memory:",
        execution_mode="inline",
        apify_api_token="test-token",
        provider_poll_interval_seconds=0,
        provider_poll_max_attempts=3,
        batch_size=10,
        inter_batch_delay_seconds=0,
        feed_poll_interval_seconds=0.01,
        log_json=False,
    )


# -----------------------------------------------------------------------------
# Synchronous Database Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def sync_engine():
    """Create a synchronous SQLite in-memory engine for testing."""
    from sqlalchemy import BigInteger, Integer

    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Enable foreign key support and let SQLAlchemy own transactions,
    # which pysqlite needs for SAVEPOINT to work
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    # Convert BigInteger to Integer for SQLite (required for autoincrement)
    @event.listens_for(Base.metadata, "column_reflect")
    def receive_column_reflect(inspector, table, column_info):
        if isinstance(column_info.get("type"), BigInteger):
            column_info["type"] = Integer()

    # Temporarily override BigInteger to compile as INTEGER for SQLite
    from sqlalchemy.dialects import sqlite
    original_visit = sqlite.dialect.type_compiler_cls.visit_BIGINT
    sqlite.dialect.type_compiler_cls.visit_BIGINT = lambda self, type_, **kw: "INTEGER"

    # Create all tables
    Base.metadata.create_all(bind=engine)

    # Restore original behavior
    sqlite.dialect.type_compiler_cls.visit_BIGINT = original_visit

    yield engine

    # Cleanup
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def sync_session_factory(sync_engine) -> sessionmaker[Session]:
    """Create a synchronous session factory."""
    return sessionmaker(
        bind=sync_engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


@pytest.fixture
def db_session(sync_session_factory) -> Generator[Session, None, None]:
    """Create a synchronous database session for testing."""
    session = sync_session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# -----------------------------------------------------------------------------
# Provider and Orchestrator Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def fake_client() -> FakeProviderClient:
    """Scripted provider client. Configure per test before starting a run."""
    return FakeProviderClient()


@pytest.fixture
def provider_config(test_settings) -> ProviderConfig:
    return ProviderConfig(
        poll_interval_seconds=test_settings.provider_poll_interval_seconds,
        max_poll_attempts=test_settings.provider_poll_max_attempts,
    )


@pytest.fixture
def adapter(fake_client, provider_config) -> ProviderAdapter:
    return ProviderAdapter(
        client=fake_client,
        config=provider_config,
        normalizer=Normalizer(APOLLO_DOMAIN_MAPPING),
    )


@pytest.fixture
def gate(test_settings) -> ValidationGate:
    return ValidationGate.from_settings(test_settings)


@pytest.fixture
def orchestrator(adapter, sync_session_factory, test_settings, gate) -> RunOrchestrator:
    """In-process orchestrator backed by the fake provider and test database."""
    return RunOrchestrator(
        adapter=adapter,
        session_factory=sync_session_factory,
        settings=test_settings,
        gate=gate,
    )


# -----------------------------------------------------------------------------
# FastAPI Test Client Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def test_app(test_settings, orchestrator) -> Generator[FastAPI, None, None]:
    """Create a FastAPI test application with the orchestrator overridden."""
    from harvester_core.api.deps import get_orchestrator
    from harvester_core.main import app

    # Override settings
    app.state.settings = test_settings

    app.dependency_overrides[get_orchestrator] = lambda: orchestrator

    yield app

    # Clean up overrides
    app.dependency_overrides.clear()


@pytest.fixture
async def client(test_app) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing FastAPI endpoints."""
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test",
    ) as ac:
        yield ac


# -----------------------------------------------------------------------------
# Cleanup Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Reset the settings cache before each test."""
    from harvester_core.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
