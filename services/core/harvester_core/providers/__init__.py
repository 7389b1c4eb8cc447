"""Provider integrations for Harvester.

This package contains provider-specific implementations:
- Base: Job protocol, DTOs and provider errors
- Adapter: Poll loop and normalization on top of a ProviderClient
- Apify: Apollo domain scraper actor client
"""

from harvester_core.providers.base import (
    AcquisitionCancelled,
    CanonicalContact,
    JobState,
    JobStatus,
    ProviderClient,
    ProviderError,
    ProviderTimeoutError,
    RawProviderRecord,
    RecordSchemaError,
    TargetOrganization,
)

__all__ = [
    "AcquisitionCancelled",
    "CanonicalContact",
    "JobState",
    "JobStatus",
    "ProviderClient",
    "ProviderError",
    "ProviderTimeoutError",
    "RawProviderRecord",
    "RecordSchemaError",
    "TargetOrganization",
]
