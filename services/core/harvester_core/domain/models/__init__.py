"""Domain models for Harvester.

This module defines the SQLAlchemy ORM models for acquisition runs,
their append-only log and the leads they produce.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


# =============================================================================
# ENUMS
# =============================================================================


class RunStatus(str):
    """Acquisition run status values."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class LeadStatus(str):
    """Lead status values (owned by CRM operations after creation)."""

    NEW = "new"
    CONTACTED = "contacted"
    REPLIED = "replied"
    DISQUALIFIED = "disqualified"


class LogLevel(str):
    """Run log entry levels."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


# =============================================================================
# MODELS
# =============================================================================


class Run(Base):
    """One supervised acquisition request."""

    __tablename__ = "acquisition_runs"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)

    status: Mapped[str] = mapped_column(
        Enum(
            "pending", "running", "completed", "failed", "cancelled",
            name="run_status_enum",
        ),
        nullable=False,
        default="pending",
    )

    # Request
    filters_json: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    target_spec_json: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    idempotency_key: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    # Progress
    current_stage: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    cancel_requested: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    batches_total: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    batches_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Aggregate counters
    submitted_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    found_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    accepted_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rejected_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    duplicate_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    errored_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Outcome
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    output_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint("owner_id", "idempotency_key", name="uq_run_idempotency"),
        Index("idx_runs_status", "status", "started_at"),
        Index("idx_runs_owner", "owner_id", "created_at"),
    )

    # Relationships
    log_entries: Mapped[list["RunLogEntry"]] = relationship(
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="RunLogEntry.sequence",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES


class RunLogEntry(Base):
    """Append-only progress log for a run."""

    __tablename__ = "acquisition_run_logs"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    run_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("acquisition_runs.id", ondelete="CASCADE"), nullable=False
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    stage: Mapped[str] = mapped_column(String(64), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    level: Mapped[str] = mapped_column(
        Enum("info", "warning", "error", name="run_log_level_enum"),
        nullable=False,
        default="info",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint("run_id", "sequence", name="uq_run_log_sequence"),
    )

    # Relationships
    run: Mapped["Run"] = relationship(back_populates="log_entries")


class Lead(Base):
    """A validated contact, unique per (email, owner)."""

    __tablename__ = "leads"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)

    first_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    linkedin_url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)

    company_name: Mapped[str] = mapped_column(String(255), nullable=False)
    company_domain: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    company_website: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    company_profile: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    fit_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default="new")
    source: Mapped[str] = mapped_column(String(64), nullable=False, default="acquisition_run")
    run_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("acquisition_runs.id", ondelete="SET NULL"), nullable=True
    )
    outreach_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    custom_data_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint("email", "owner_id", name="uq_lead_email_owner"),
        Index("idx_leads_owner", "owner_id", "created_at"),
        Index("idx_leads_run", "run_id"),
    )


TERMINAL_RUN_STATUSES = frozenset(
    {RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED}
)
ACTIVE_RUN_STATUSES = frozenset({RunStatus.PENDING, RunStatus.RUNNING})


# Export all models
__all__ = [
    "Base",
    "Run",
    "RunLogEntry",
    "Lead",
    # Enums
    "RunStatus",
    "LeadStatus",
    "LogLevel",
    "TERMINAL_RUN_STATUSES",
    "ACTIVE_RUN_STATUSES",
]
