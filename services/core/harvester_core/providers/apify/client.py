"""Apify actor client.

Implements the ProviderClient job protocol against the Apify REST API for
the Apollo domain scraper actor: start an actor run, poll it, read its
default dataset and abort it.

Usage:
    client = ApifyClient(api_token="...", actor_id="T1XDXWc1L92AfIJtd")

    job_id = await client.submit_job(targets, filters, idempotency_key="run-7_batch_1")
    status = await client.get_job_status(job_id)
    records = await client.get_job_results(status.result_handle)
"""

import logging
from typing import Any, Optional

import httpx

from harvester_core.infrastructure.retry import (
    NETWORK_RETRY,
    RetryConfig,
    TransientStatusError,
    with_retry,
)
from harvester_core.providers.apify.payload import build_apollo_domain_payload
from harvester_core.providers.base import (
    JobState,
    JobStatus,
    ProviderClient,
    ProviderError,
    RawProviderRecord,
    TargetOrganization,
)

logger = logging.getLogger(__name__)


class ApifyClient(ProviderClient):
    """Apify provider client for the Apollo domain scraper actor."""

    BASE_URL = "https://api.apify.com/v2"
    DEFAULT_ACTOR_ID = "T1XDXWc1L92AfIJtd"

    def __init__(
        self,
        api_token: str,
        actor_id: str = DEFAULT_ACTOR_ID,
        base_url: str = BASE_URL,
        timeout: float = 30.0,
        max_results: int = 1000,
        max_cost: float = 1.0,
        retry: RetryConfig = NETWORK_RETRY,
    ):
        """Initialize the Apify client.

        Args:
            api_token: Apify API token.
            actor_id: Actor to start for each job.
            base_url: API root, overridable for tests.
            timeout: Per-request timeout in seconds.
            max_results: Default `totalResults` cap per job.
            max_cost: Default `maxCost` cap per job, in USD.
            retry: Retry policy for read-only calls.
        """
        self.api_token = api_token
        self.actor_id = actor_id
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_results = max_results
        self.max_cost = max_cost
        self.retry = retry

    @property
    def provider_id(self) -> str:
        """Return the provider identifier."""
        return "apify_apollo_domain"

    def _get_headers(self) -> dict[str, str]:
        """Get headers for API requests."""
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        """Pull the provider's error message out of a failed response."""
        try:
            body = response.json()
        except ValueError:
            return response.text[:500] or response.reason_phrase
        if isinstance(body, dict):
            error = body.get("error")
            if isinstance(error, dict) and error.get("message"):
                return str(error["message"])
        return response.reason_phrase

    @staticmethod
    def _decode(response: httpx.Response, what: str) -> Any:
        """Parse a JSON body, turning a non-JSON body (a proxy error page) into ProviderError."""
        try:
            return response.json()
        except ValueError as e:
            snippet = (response.text or "")[:200]
            raise ProviderError(
                f"{what} was not valid JSON: {snippet!r}", status_code=response.status_code
            ) from e

    @staticmethod
    def _run_data(body: Any, what: str) -> dict[str, Any]:
        """The run object under `data` in an actor-run response."""
        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict):
            raise ProviderError(f"{what} did not include a run object")
        return data

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> httpx.Response:
        """Make a single API request."""
        url = f"{self.base_url}{path}"
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.request(
                method, url, headers=self._get_headers(), params=params, json=json
            )

    async def _get(self, path: str, params: Optional[dict[str, Any]] = None) -> httpx.Response:
        response = await self._request("GET", path, params=params)
        return self.retry.check_status(response)

    async def _read(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        """GET a JSON document, retrying transport errors and transient statuses.

        Raises:
            ProviderError: On an HTTP error status or once retries are exhausted.
        """
        try:
            response = await with_retry(self.retry)(self._get)(path, params)
        except httpx.TransportError as e:
            raise ProviderError(f"Apify request failed: {e}") from e
        except TransientStatusError as e:
            response = e.response

        if response.status_code >= 400:
            raise ProviderError(
                f"Apify GET {path} failed: {self._error_detail(response)}",
                status_code=response.status_code,
            )
        return self._decode(response, f"Apify GET {path}")

    async def submit_job(
        self,
        targets: list[TargetOrganization],
        filter_payload: dict[str, Any],
        idempotency_key: Optional[str] = None,
    ) -> str:
        """Start an actor run for a batch of targets."""
        payload = build_apollo_domain_payload(
            targets,
            filter_payload,
            max_results=self.max_results,
            max_cost=self.max_cost,
        )
        if not payload["companyDomain"]:
            raise ProviderError("No valid company domains in batch")

        params = {}
        if idempotency_key:
            params["idempotencyKey"] = idempotency_key

        logger.info(
            "Starting Apify actor run",
            extra={
                "actor_id": self.actor_id,
                "domains": len(payload["companyDomain"]),
                "idempotency_key": idempotency_key,
            },
        )

        try:
            response = await self._request(
                "POST", f"/acts/{self.actor_id}/runs", params=params, json=payload
            )
        except httpx.TransportError as e:
            raise ProviderError(f"Failed to start Apify run: {e}") from e

        if response.status_code >= 400:
            raise ProviderError(
                f"Failed to start Apify run: {self._error_detail(response)}",
                status_code=response.status_code,
            )

        body = self._decode(response, "Apify run response")
        data = self._run_data(body, "Apify run response")
        job_id = data.get("id")
        if not job_id:
            raise ProviderError("Apify run response did not include a run ID")
        return job_id

    async def get_job_status(self, job_id: str) -> JobStatus:
        """Get the state of an actor run."""
        body = await self._read(f"/actor-runs/{job_id}")
        data = self._run_data(body, f"Apify status for run {job_id}")
        return JobStatus(
            state=JobState.parse(data.get("status")),
            result_handle=data.get("defaultDatasetId"),
            raw_data=data,
        )

    async def get_job_results(self, result_handle: str) -> list[RawProviderRecord]:
        """Fetch the items of a run's dataset."""
        body = await self._read(
            f"/datasets/{result_handle}/items",
            params={"format": "json", "clean": "true"},
        )
        if not isinstance(body, list):
            raise ProviderError(
                f"Expected a list of dataset items, got {type(body).__name__}"
            )
        return body

    async def abort_job(self, job_id: str) -> bool:
        """Abort an actor run. Failures are logged, not raised."""
        try:
            response = await self._request("POST", f"/actor-runs/{job_id}/abort")
        except httpx.HTTPError as e:
            logger.warning(f"Failed to abort Apify run {job_id}: {e}")
            return False

        if response.status_code >= 400:
            logger.warning(
                f"Failed to abort Apify run {job_id}: {self._error_detail(response)}"
            )
            return False
        return True
