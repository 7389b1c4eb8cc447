"""API schemas."""

from harvester_core.api.schemas.runs import (
    ControlResponse,
    ForceFailRequest,
    OrganizationInput,
    RunCounters,
    RunFilters,
    RunLogEntryResponse,
    RunLogListResponse,
    RunResponse,
    StartRunRequest,
)

__all__ = [
    "ControlResponse",
    "ForceFailRequest",
    "OrganizationInput",
    "RunCounters",
    "RunFilters",
    "RunLogEntryResponse",
    "RunLogListResponse",
    "RunResponse",
    "StartRunRequest",
]
