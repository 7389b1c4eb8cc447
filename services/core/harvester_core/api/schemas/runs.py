"""Runs API schemas."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator


# =============================================================================
# START RUN SCHEMAS
# =============================================================================


class OrganizationInput(BaseModel):
    """A target organization supplied by the caller."""

    name: str = Field(default="", description="Organization name")
    domain: Optional[str] = Field(default=None, description="Organization domain (e.g., 'acme.com')")
    website: Optional[str] = Field(default=None, description="Organization website URL")
    profile: Optional[str] = Field(default=None, description="Profile text carried onto matched leads")
    fit_score: Optional[float] = Field(default=None, description="Fit score carried onto matched leads")


class RunFilters(BaseModel):
    """Contact filters.

    Search filters are forwarded to the provider; the exclusions and the
    domain check are applied to what it returns.
    """

    job_titles: list[str] = Field(default_factory=list, description="Job titles to search for")
    seniority: list[str] = Field(default_factory=list, description="Seniority labels")
    countries: list[str] = Field(default_factory=list, description="Company countries")
    employee_sizes: list[str] = Field(default_factory=list, description="Company size bands")
    max_results: Optional[int] = Field(default=None, ge=1, description="Cap on returned contacts")
    excluded_functions: list[str] = Field(
        default_factory=list, description="Job functions to reject, e.g. 'HR / Recruiting'"
    )
    excluded_industries: list[str] = Field(
        default_factory=list, description="Company industries to reject"
    )
    require_domain_match: bool = Field(
        default=True, description="Reject contacts from domains the run did not ask for"
    )


class StartRunRequest(BaseModel):
    """Request schema for starting an acquisition run."""

    owner_id: str = Field(..., min_length=1, max_length=64, description="Tenant that owns the leads")
    organizations: list[OrganizationInput] = Field(
        default_factory=list, description="Explicit target organizations"
    )
    prompt: Optional[str] = Field(default=None, description="Search prompt used when no organizations are given")
    filters: RunFilters = Field(default_factory=RunFilters, description="Contact filters")
    idempotency_key: Optional[str] = Field(
        default=None, max_length=128, description="Repeat starts with the same key return the same run"
    )

    @model_validator(mode="after")
    def require_targets(self) -> "StartRunRequest":
        if not self.organizations and not (self.prompt and self.prompt.strip()):
            raise ValueError("Either organizations or prompt is required")
        return self


# =============================================================================
# RUN RESPONSE SCHEMAS
# =============================================================================


class RunCounters(BaseModel):
    """Aggregate run counters."""

    submitted: int = Field(..., description="Targets submitted to the provider")
    found: int = Field(..., description="Contacts returned by the provider")
    accepted: int = Field(..., description="Contacts persisted as leads")
    rejected: int = Field(..., description="Contacts rejected by validation")
    duplicate: int = Field(..., description="Contacts that were already leads")
    errored: int = Field(..., description="Batches that failed at the provider")


class RunResponse(BaseModel):
    """Response schema for a run snapshot."""

    id: int = Field(..., description="Run ID")
    owner_id: str = Field(..., description="Owning tenant")
    status: str = Field(..., description="pending, running, completed, failed or cancelled")
    current_stage: Optional[str] = Field(default=None, description="Most recent known stage")
    cancel_requested: bool = Field(..., description="Whether cancellation was requested")
    idempotency_key: Optional[str] = Field(default=None, description="Idempotency key")
    batches_total: int = Field(..., description="Number of batches")
    batches_completed: int = Field(..., description="Batches attempted so far")
    counters: RunCounters
    error_message: Optional[str] = Field(default=None, description="Failure reason")
    output: Optional[dict[str, Any]] = Field(default=None, description="Per-batch summary")
    started_at: Optional[datetime] = Field(default=None, description="When the run started")
    ended_at: Optional[datetime] = Field(default=None, description="When the run reached a terminal status")
    created_at: datetime = Field(..., description="When the run was created")

    @classmethod
    def from_run(cls, run) -> "RunResponse":
        return cls(
            id=run.id,
            owner_id=run.owner_id,
            status=run.status,
            current_stage=run.current_stage,
            cancel_requested=run.cancel_requested,
            idempotency_key=run.idempotency_key,
            batches_total=run.batches_total,
            batches_completed=run.batches_completed,
            counters=RunCounters(
                submitted=run.submitted_count,
                found=run.found_count,
                accepted=run.accepted_count,
                rejected=run.rejected_count,
                duplicate=run.duplicate_count,
                errored=run.errored_count,
            ),
            error_message=run.error_message,
            output=run.output_json,
            started_at=run.started_at,
            ended_at=run.ended_at,
            created_at=run.created_at,
        )


class RunLogEntryResponse(BaseModel):
    """Response schema for a run log entry."""

    sequence: int = Field(..., description="1-based position in the run log")
    stage: str = Field(..., description="Stage label")
    message: str = Field(..., description="Log message")
    level: str = Field(..., description="info, warning or error")
    created_at: datetime = Field(..., description="When the entry was written")

    model_config = {"from_attributes": True}


class RunLogListResponse(BaseModel):
    """Response schema for a run's log."""

    run_id: int
    entries: list[RunLogEntryResponse]


# =============================================================================
# CONTROL SCHEMAS
# =============================================================================


class ForceFailRequest(BaseModel):
    """Request schema for force-failing a run."""

    reason: str = Field(..., min_length=1, max_length=1000, description="Why the run is being failed")


class ControlResponse(BaseModel):
    """Response schema for cancel and force-fail."""

    run_id: int
    accepted: bool = Field(..., description="False if the run was already terminal")
