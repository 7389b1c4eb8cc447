"""Acquisition runs API routes.

Provides endpoints for:
- POST /runs - Start a run (server-sent events: run, log..., status)
- GET /runs/{id} - Get run snapshot
- GET /runs/{id}/logs - Get run log entries
- GET /runs/{id}/events - Reconnect to a run's event stream
- POST /runs/{id}/cancel - Request cooperative cancellation
- POST /runs/{id}/force-fail - Fail a run regardless of in-flight work
"""

import json
import logging
from typing import AsyncIterator

from fastapi import APIRouter, HTTPException, Query, status
from fastapi.responses import StreamingResponse

from harvester_core.api.deps import Orchestrator
from harvester_core.api.schemas.runs import (
    ControlResponse,
    ForceFailRequest,
    RunLogEntryResponse,
    RunLogListResponse,
    RunResponse,
    StartRunRequest,
)
from harvester_core.domain.services.events import RunEvent
from harvester_core.domain.services.orchestrator import DispatchError, RequestError, RunRequest
from harvester_core.domain.services.runs import RunNotFoundError
from harvester_core.providers.base import TargetOrganization

router = APIRouter(prefix="/runs", tags=["runs"])
logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
}


def format_sse(event: RunEvent) -> str:
    """Format a run event as a server-sent event."""
    return f"event: {event.kind}\ndata: {json.dumps(event.to_dict(), default=str)}\n\n"


async def stream_events(events: AsyncIterator[RunEvent]) -> AsyncIterator[str]:
    async for event in events:
        yield format_sse(event)


def _not_found(run_id: int) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Run {run_id} not found",
    )


@router.post(
    "",
    status_code=status.HTTP_200_OK,
    summary="Start an acquisition run",
    description="Creates a run and streams its events until it reaches a terminal status.",
)
async def start_run(request: StartRunRequest, orchestrator: Orchestrator) -> StreamingResponse:
    """Start an acquisition run."""
    run_request = RunRequest(
        owner_id=request.owner_id,
        organizations=[TargetOrganization(**o.model_dump()) for o in request.organizations],
        prompt=request.prompt,
        filters=request.filters.model_dump(exclude_none=True),
        idempotency_key=request.idempotency_key,
    )

    try:
        handle = await orchestrator.start(run_request)
    except RequestError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except DispatchError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    logger.info(f"Run {handle.run_id} started (created={handle.created})")

    return StreamingResponse(
        stream_events(handle.events),
        media_type="text/event-stream",
        headers={**SSE_HEADERS, "X-Run-Id": str(handle.run_id)},
    )


@router.get("/{run_id}", response_model=RunResponse)
async def get_run(run_id: int, orchestrator: Orchestrator) -> RunResponse:
    """Get a run snapshot."""
    try:
        run = orchestrator.status(run_id)
    except RunNotFoundError:
        raise _not_found(run_id)
    return RunResponse.from_run(run)


@router.get("/{run_id}/logs", response_model=RunLogListResponse)
async def get_run_logs(
    run_id: int,
    orchestrator: Orchestrator,
    after: int = Query(default=0, ge=0, description="Only entries after this sequence"),
) -> RunLogListResponse:
    """Get a run's log entries in sequence order."""
    try:
        entries = orchestrator.logs(run_id, after_sequence=after)
    except RunNotFoundError:
        raise _not_found(run_id)
    return RunLogListResponse(
        run_id=run_id,
        entries=[RunLogEntryResponse.model_validate(e) for e in entries],
    )


@router.get("/{run_id}/events")
async def follow_run(
    run_id: int,
    orchestrator: Orchestrator,
    after: int = Query(default=0, ge=0, description="Replay entries after this sequence"),
) -> StreamingResponse:
    """Replay a run's log from a sequence and stream it until the run ends."""
    try:
        orchestrator.status(run_id)
    except RunNotFoundError:
        raise _not_found(run_id)

    return StreamingResponse(
        stream_events(orchestrator.follow(run_id, after_sequence=after)),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.post("/{run_id}/cancel", response_model=ControlResponse)
async def cancel_run(run_id: int, orchestrator: Orchestrator) -> ControlResponse:
    """Request cooperative cancellation of a run."""
    try:
        accepted = orchestrator.cancel(run_id)
    except RunNotFoundError:
        raise _not_found(run_id)
    return ControlResponse(run_id=run_id, accepted=accepted)


@router.post("/{run_id}/force-fail", response_model=ControlResponse)
async def force_fail_run(
    run_id: int,
    request: ForceFailRequest,
    orchestrator: Orchestrator,
) -> ControlResponse:
    """Fail a run regardless of in-flight work. A no-op on terminal runs."""
    try:
        changed = orchestrator.force_fail(run_id, request.reason)
    except RunNotFoundError:
        raise _not_found(run_id)
    return ControlResponse(run_id=run_id, accepted=changed)
