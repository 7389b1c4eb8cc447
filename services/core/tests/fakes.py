"""Scripted collaborators for Harvester Core tests.

FakeProviderClient plays a provider's job protocol from a script instead of
the network, so tests decide per submission whether a job succeeds, fails,
stalls or raises.
"""

from typing import Any, Callable, Optional

from harvester_core.providers.base import (
    CanonicalContact,
    JobState,
    JobStatus,
    ProviderClient,
    ProviderError,
    RawProviderRecord,
    TargetOrganization,
)


def apollo_record(
    first_name: str = "Ada",
    last_name: str = "Lovelace",
    email: Optional[str] = "ada@acme.com",
    organization_name: Optional[str] = "Acme",
    organization_domain: Optional[str] = "acme.com",
    **extra: Any,
) -> RawProviderRecord:
    """A dataset record shaped like the Apollo domain scraper's output."""
    record: RawProviderRecord = {
        "firstName": first_name,
        "lastName": last_name,
        "email": email,
        "position": "Head of Operations",
        "linkedinUrl": f"https://linkedin.com/in/{first_name.lower()}",
        "organizationName": organization_name,
        "organizationDomain": organization_domain,
    }
    record.update(extra)
    return record


def make_targets(count: int, prefix: str = "company") -> list[TargetOrganization]:
    """`count` targets named company1..N with domains company1.com..N."""
    return [
        TargetOrganization(name=f"{prefix}{i}", domain=f"{prefix}{i}.com")
        for i in range(1, count + 1)
    ]


class FakeProviderClient(ProviderClient):
    """Provider client driven by a script.

    Attributes:
        records_by_domain: Records returned for each target domain.
        failing_submissions: 1-based submission numbers whose job ends FAILED.
        rejected_submissions: Submission numbers whose submit raises.
        stalled_submissions: Submission numbers whose job never finishes.
        pending_polls: Non-terminal polls before a job reports SUCCEEDED.
        on_submit: Called with the submission number before it is accepted.
    """

    def __init__(self):
        self.records_by_domain: dict[str, list[RawProviderRecord]] = {}
        self.failing_submissions: set[int] = set()
        self.rejected_submissions: set[int] = set()
        self.stalled_submissions: set[int] = set()
        self.pending_polls = 0
        self.on_submit: Optional[Callable[[int], None]] = None

        self.submissions: list[dict[str, Any]] = []
        self.polls: list[str] = []
        self.aborted: list[str] = []
        self._jobs: dict[str, dict[str, Any]] = {}

    @property
    def provider_id(self) -> str:
        return "fake_provider"

    def add_records(self, domain: str, *records: RawProviderRecord) -> None:
        self.records_by_domain.setdefault(domain, []).extend(records)

    async def submit_job(
        self,
        targets: list[TargetOrganization],
        filter_payload: dict[str, Any],
        idempotency_key: Optional[str] = None,
    ) -> str:
        number = len(self.submissions) + 1
        self.submissions.append(
            {
                "targets": [t.domain for t in targets],
                "filters": filter_payload,
                "idempotency_key": idempotency_key,
            }
        )
        if self.on_submit is not None:
            self.on_submit(number)
        if number in self.rejected_submissions:
            raise ProviderError("Actor run refused: quota exceeded", status_code=402)

        job_id = f"job-{number}"
        records: list[RawProviderRecord] = []
        for target in targets:
            records.extend(self.records_by_domain.get(target.domain, []))
        self._jobs[job_id] = {"number": number, "records": records, "polls": 0}
        return job_id

    async def get_job_status(self, job_id: str) -> JobStatus:
        self.polls.append(job_id)
        job = self._jobs[job_id]
        job["polls"] += 1

        if job["number"] in self.stalled_submissions:
            return JobStatus(state=JobState.RUNNING)
        if job["number"] in self.failing_submissions:
            return JobStatus(state=JobState.FAILED)
        if job["polls"] <= self.pending_polls:
            return JobStatus(state=JobState.RUNNING)
        return JobStatus(state=JobState.SUCCEEDED, result_handle=f"dataset-{job_id}")

    async def get_job_results(self, result_handle: str) -> list[RawProviderRecord]:
        job_id = result_handle.removeprefix("dataset-")
        return list(self._jobs[job_id]["records"])

    async def abort_job(self, job_id: str) -> bool:
        self.aborted.append(job_id)
        return True


class FakeResolver:
    """Target resolver returning a fixed list."""

    def __init__(self, targets: list[TargetOrganization]):
        self.targets = targets
        self.prompts: list[str] = []

    async def resolve(self, prompt: str, filters: dict[str, Any]) -> list[TargetOrganization]:
        self.prompts.append(prompt)
        return list(self.targets)


class FakeDrafter:
    """Message drafter that fails for the emails it is told to."""

    def __init__(self, failing_emails: tuple[str, ...] = ()):
        self.failing_emails = set(failing_emails)
        self.drafted: list[str] = []

    async def draft(self, contact: CanonicalContact) -> str:
        if contact.email in self.failing_emails:
            raise RuntimeError("drafting model unavailable")
        self.drafted.append(contact.email)
        return f"Hi {contact.first_name}, quick question about {contact.organization_name}."
