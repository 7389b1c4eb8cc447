"""Provider adapter: submit, poll, fetch and normalize.

Wraps a ProviderClient with the bounded poll loop and the normalizer so the
batch scheduler only ever sees CanonicalContacts or one of three errors:

- ProviderError: the provider refused the job or reported it failed
- ProviderTimeoutError: the poll budget ran out
- AcquisitionCancelled: the run's cancellation token fired

Usage:
    adapter = ProviderAdapter(
        client=ApifyClient(api_token="..."),
        config=ProviderConfig(poll_interval_seconds=5.0, max_poll_attempts=120),
        normalizer=Normalizer(APOLLO_DOMAIN_MAPPING),
    )
    contacts = await adapter.acquire(targets, filters, token)
"""

import logging
from dataclasses import dataclass, replace
from typing import Any, Optional

from harvester_core.domain.services.normalizer import Normalizer
from harvester_core.infrastructure.cancellation import CancellationToken
from harvester_core.providers.base import (
    AcquisitionCancelled,
    CanonicalContact,
    JobStatus,
    ProviderClient,
    ProviderError,
    ProviderTimeoutError,
    RawProviderRecord,
    TargetOrganization,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderConfig:
    """Explicit adapter configuration.

    Attributes:
        poll_interval_seconds: Wait before each status query.
        max_poll_attempts: Status queries before giving up.
        idempotency_key: Passed to the provider on submit, if set.
    """

    poll_interval_seconds: float = 5.0
    max_poll_attempts: int = 120
    idempotency_key: Optional[str] = None

    @property
    def poll_budget_seconds(self) -> float:
        return self.poll_interval_seconds * self.max_poll_attempts

    def for_batch(self, batch_number: int) -> "ProviderConfig":
        """Derive the per-batch config, suffixing the idempotency key."""
        if not self.idempotency_key:
            return self
        return replace(self, idempotency_key=f"{self.idempotency_key}_batch_{batch_number}")


class ProviderAdapter:
    """Runs one provider job end to end."""

    def __init__(
        self,
        client: ProviderClient,
        config: ProviderConfig,
        normalizer: Normalizer,
    ):
        self.client = client
        self.config = config
        self.normalizer = normalizer

    @property
    def provider_id(self) -> str:
        return self.client.provider_id

    def with_config(self, config: ProviderConfig) -> "ProviderAdapter":
        """Return an adapter sharing this client and normalizer."""
        return ProviderAdapter(self.client, config, self.normalizer)

    async def submit(
        self,
        targets: list[TargetOrganization],
        filters: dict[str, Any],
    ) -> str:
        """Submit a job. Failures are fatal to the calling acquire."""
        return await self.client.submit_job(
            targets, filters, idempotency_key=self.config.idempotency_key
        )

    async def poll(self, job_id: str) -> JobStatus:
        """Query a job's state once."""
        return await self.client.get_job_status(job_id)

    async def fetch(self, result_handle: str) -> list[RawProviderRecord]:
        """Download a finished job's records."""
        return await self.client.get_job_results(result_handle)

    async def wait_for_result(self, job_id: str, token: CancellationToken) -> str:
        """Poll until the job finishes and return its result handle.

        Raises:
            AcquisitionCancelled: If the token fires before or during a wait.
                The remote job is aborted first.
            ProviderError: If the job reaches a failure state.
            ProviderTimeoutError: If max_poll_attempts queries all came back
                non-terminal.
        """
        for attempt in range(1, self.config.max_poll_attempts + 1):
            if await token.sleep(self.config.poll_interval_seconds):
                await self._abort(job_id)
                raise AcquisitionCancelled(f"Cancelled while waiting on job {job_id}")

            status = await self.poll(job_id)

            if status.state.is_success:
                if not status.result_handle:
                    raise ProviderError(
                        f"Job {job_id} succeeded without a result handle", job_id=job_id
                    )
                return status.result_handle

            if status.state.is_failure:
                raise ProviderError(
                    f"Provider job {job_id} ended in state {status.state.value}",
                    job_id=job_id,
                )

            logger.debug(
                f"Job {job_id} still {status.state.value} "
                f"(attempt {attempt}/{self.config.max_poll_attempts})"
            )

        raise ProviderTimeoutError(
            f"Job {job_id} did not finish within {self.config.max_poll_attempts} polls "
            f"({self.config.poll_budget_seconds:.0f}s)",
            job_id=job_id,
            attempts=self.config.max_poll_attempts,
        )

    async def acquire(
        self,
        targets: list[TargetOrganization],
        filters: dict[str, Any],
        token: CancellationToken,
    ) -> list[CanonicalContact]:
        """Submit, wait, fetch and normalize one batch of targets."""
        if token.cancelled:
            raise AcquisitionCancelled("Cancelled before submit")

        job_id = await self.submit(targets, filters)
        logger.info(f"Submitted {self.provider_id} job {job_id} for {len(targets)} targets")

        result_handle = await self.wait_for_result(job_id, token)
        records = await self.fetch(result_handle)
        return self.normalizer.normalize_all(records, targets)

    async def _abort(self, job_id: str) -> None:
        """Best-effort remote abort."""
        try:
            accepted = await self.client.abort_job(job_id)
        except ProviderError as e:
            logger.warning(f"Abort of job {job_id} failed: {e}")
            return
        if not accepted:
            logger.warning(f"Provider did not accept abort of job {job_id}")
