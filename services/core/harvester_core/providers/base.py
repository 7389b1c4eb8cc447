"""Base provider interface and DTOs.

This module defines the provider-agnostic job protocol that every contact
scraping provider client must implement, along with the data transfer
objects that cross the provider boundary:

- TargetOrganization: A company we ask the provider to search
- JobStatus: The provider's view of a submitted job
- CanonicalContact: A normalized contact, ready for the validation gate

Raw provider records are plain dicts and never leave the adapter/normalizer
boundary.

Usage:
    class ApifyClient(ProviderClient):
        @property
        def provider_id(self) -> str:
            return "apify_apollo_domain"

        async def submit_job(self, targets, filter_payload, idempotency_key=None) -> str:
            # Implementation
            pass
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


RawProviderRecord = dict[str, Any]


# =============================================================================
# EXCEPTIONS
# =============================================================================


class ProviderError(Exception):
    """The provider rejected a call or reported a failed job.

    Scoped to a single batch: the scheduler logs it and moves on.
    """

    def __init__(self, message: str, status_code: int = 0, job_id: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.job_id = job_id


class RecordSchemaError(ProviderError):
    """A provider record does not match the configured field mapping."""

    pass


class ProviderTimeoutError(TimeoutError):
    """The poll budget was exhausted before the job reached a terminal state."""

    def __init__(self, message: str, job_id: Optional[str] = None, attempts: int = 0):
        super().__init__(message)
        self.job_id = job_id
        self.attempts = attempts


class AcquisitionCancelled(Exception):
    """Cooperative cancellation was observed at a wait boundary."""

    pass


# =============================================================================
# ENUMS
# =============================================================================


class JobState(str, Enum):
    """State of a provider job."""

    SUBMITTED = "SUBMITTED"
    READY = "READY"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    ABORTING = "ABORTING"
    ABORTED = "ABORTED"
    TIMED_OUT = "TIMED-OUT"

    @classmethod
    def parse(cls, value: Optional[str]) -> "JobState":
        """Map a provider status string to a JobState.

        Unknown values are treated as still in progress so the poll loop keeps
        waiting until its own budget runs out.
        """
        if not value:
            return cls.SUBMITTED
        try:
            return cls(value.upper())
        except ValueError:
            return cls.RUNNING

    @property
    def is_success(self) -> bool:
        return self is JobState.SUCCEEDED

    @property
    def is_failure(self) -> bool:
        return self in (JobState.FAILED, JobState.ABORTED, JobState.TIMED_OUT)


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class TargetOrganization:
    """A company to search against.

    `profile` and `fit_score` are never returned by the provider; they are
    carried through the round trip and restored onto matched contacts.
    """

    name: str
    domain: Optional[str] = None
    website: Optional[str] = None
    profile: Optional[str] = None
    fit_score: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "domain": self.domain,
            "website": self.website,
            "profile": self.profile,
            "fit_score": self.fit_score,
        }


@dataclass
class JobStatus:
    """Provider job status as seen by a single poll."""

    state: JobState
    result_handle: Optional[str] = None
    raw_data: Optional[dict] = None


@dataclass
class CanonicalContact:
    """Normalized contact produced by the normalizer."""

    first_name: str = ""
    last_name: str = ""
    email: Optional[str] = None
    title: Optional[str] = None
    linkedin_url: Optional[str] = None

    organization_name: Optional[str] = None
    organization_domain: Optional[str] = None
    organization_website: Optional[str] = None

    # Carried from the matched target
    organization_profile: Optional[str] = None
    fit_score: Optional[float] = None
    matched_target: Optional[str] = None

    city: Optional[str] = None
    state: Optional[str] = None
    industry: Optional[str] = None
    phone_numbers: list[dict[str, str]] = field(default_factory=list)
    raw: Optional[RawProviderRecord] = None

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p).strip()


# =============================================================================
# PROVIDER CLIENT INTERFACE
# =============================================================================


class ProviderClient(ABC):
    """Abstract base class for provider job clients.

    Speaks the provider's submit/status/results protocol and nothing more:
    polling, timeouts and normalization belong to the ProviderAdapter.

    Methods:
        submit_job: Start a scraping job for a set of targets
        get_job_status: Query a job's state
        get_job_results: Download the records of a finished job
        abort_job: Ask the provider to stop a job
    """

    @property
    @abstractmethod
    def provider_id(self) -> str:
        """Return the unique provider identifier."""
        ...

    @abstractmethod
    async def submit_job(
        self,
        targets: list[TargetOrganization],
        filter_payload: dict[str, Any],
        idempotency_key: Optional[str] = None,
    ) -> str:
        """Submit a job.

        Args:
            targets: Organizations to search against.
            filter_payload: Provider-agnostic filters (titles, seniority, ...).
            idempotency_key: Optional key the provider uses to dedupe submits.

        Returns:
            The provider job ID.

        Raises:
            ProviderError: If the provider refuses the job.
        """
        ...

    @abstractmethod
    async def get_job_status(self, job_id: str) -> JobStatus:
        """Get the current status of a job.

        Raises:
            ProviderError: If the status request fails.
        """
        ...

    @abstractmethod
    async def get_job_results(self, result_handle: str) -> list[RawProviderRecord]:
        """Fetch the raw records of a finished job.

        Raises:
            ProviderError: If the results request fails.
        """
        ...

    async def abort_job(self, job_id: str) -> bool:
        """Ask the provider to stop a job. Returns True if accepted."""
        return False
