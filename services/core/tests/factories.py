"""Test data factories for Harvester Core.

This module provides factory functions to create test data for models.
Use these instead of manually constructing objects in tests for consistency.
"""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from harvester_core.domain.models import Lead, Run, RunLogEntry, RunStatus


def utcnow() -> datetime:
    """Get current UTC time (naive, as stored)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# -----------------------------------------------------------------------------
# Run Factory
# -----------------------------------------------------------------------------


def create_run(
    session: Session,
    owner_id: str = "owner-1",
    status: str = RunStatus.PENDING,
    filters_json: dict | None = None,
    target_spec_json: dict | None = None,
    **kwargs: Any,
) -> Run:
    """Create a Run record for testing."""
    if status in (RunStatus.RUNNING, RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED):
        kwargs.setdefault("started_at", utcnow())
    run = Run(
        owner_id=owner_id,
        status=status,
        filters_json=filters_json or {},
        target_spec_json=target_spec_json
        or {"prompt": None, "organizations": [{"name": "Acme", "domain": "acme.com"}]},
        **kwargs,
    )
    session.add(run)
    session.flush()
    return run


# -----------------------------------------------------------------------------
# Run Log Factory
# -----------------------------------------------------------------------------


def create_log_entry(
    session: Session,
    run: Run,
    sequence: int,
    stage: str = "System",
    message: str = "Test entry",
    level: str = "info",
    **kwargs: Any,
) -> RunLogEntry:
    """Create a RunLogEntry record for testing."""
    entry = RunLogEntry(
        run_id=run.id,
        sequence=sequence,
        stage=stage,
        message=message,
        level=level,
        created_at=utcnow(),
        **kwargs,
    )
    session.add(entry)
    session.flush()
    return entry


# -----------------------------------------------------------------------------
# Lead Factory
# -----------------------------------------------------------------------------


def create_lead(
    session: Session,
    email: str = "ada@acme.com",
    owner_id: str = "owner-1",
    company_name: str = "Acme",
    **kwargs: Any,
) -> Lead:
    """Create a Lead record for testing."""
    lead = Lead(
        owner_id=owner_id,
        email=email,
        company_name=company_name,
        **kwargs,
    )
    session.add(lead)
    session.flush()
    return lead
