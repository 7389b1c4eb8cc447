"""Run event channel.

Every progress notification for a run is a RunEvent published on the run's
RunEventChannel. The channel has two kinds of consumers:

- A recorder (the persistence sink) that runs synchronously on publish,
  writes log events to the run log and stamps them with their sequence.
- Live subscribers (SSE streams), each with its own bounded queue. A slow
  subscriber loses its oldest undelivered events; it never blocks the run.

Usage:
    channel = RunEventChannel(run_id, recorder=service_recorder, maxsize=256)
    queue = channel.subscribe()
    channel.log("Contact-Finding", "Submitting batch 1/3")
    ...
    channel.close()

    async for event in channel.iterate(queue):
        ...
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Iterable, Optional

from harvester_core.domain.models import LogLevel, Run, RunLogEntry

logger = logging.getLogger(__name__)


class EventKind:
    """RunEvent kinds, also used as SSE event names."""

    RUN = "run"
    LOG = "log"
    STATUS = "status"


@dataclass(frozen=True)
class RunEvent:
    """A single progress notification."""

    kind: str
    run_id: int
    sequence: Optional[int] = None
    stage: Optional[str] = None
    message: Optional[str] = None
    level: str = LogLevel.INFO
    status: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def for_run(cls, run: Run) -> "RunEvent":
        return cls(kind=EventKind.RUN, run_id=run.id, status=run.status)

    @classmethod
    def from_log_entry(cls, entry: RunLogEntry) -> "RunEvent":
        return cls(
            kind=EventKind.LOG,
            run_id=entry.run_id,
            sequence=entry.sequence,
            stage=entry.stage,
            message=entry.message,
            level=entry.level,
            created_at=entry.created_at,
        )

    @classmethod
    def for_status(cls, run: Run) -> "RunEvent":
        return cls(
            kind=EventKind.STATUS,
            run_id=run.id,
            status=run.status,
            message=run.error_message,
            data={
                "accepted": run.accepted_count,
                "rejected": run.rejected_count,
                "duplicate": run.duplicate_count,
                "errored": run.errored_count,
                "batches_completed": run.batches_completed,
                "batches_total": run.batches_total,
            },
        )

    @property
    def is_terminal(self) -> bool:
        return self.kind == EventKind.STATUS

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"run_id": self.run_id}
        if self.kind == EventKind.LOG:
            result.update(
                sequence=self.sequence,
                stage=self.stage,
                message=self.message,
                level=self.level,
                created_at=self.created_at.isoformat(),
            )
        elif self.kind == EventKind.STATUS:
            result.update(status=self.status, error=self.message, **self.data)
        else:
            result["status"] = self.status
        return result


# Recorders persist a log event and return it with its sequence assigned
Recorder = Callable[[RunEvent], RunEvent]


class RunEventChannel:
    """Fan-out of a run's events to a recorder and live subscribers."""

    def __init__(
        self,
        run_id: int,
        recorder: Optional[Recorder] = None,
        maxsize: int = 256,
    ):
        self.run_id = run_id
        self._recorder = recorder
        self._maxsize = max(maxsize, 1)
        self._subscribers: list[asyncio.Queue] = []
        self._closed = False
        self.last_sequence = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, replay: Iterable[RunEvent] = ()) -> asyncio.Queue:
        """Open a live subscription, seeded with `replay` events."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._maxsize)
        for event in replay:
            self._offer(queue, event)
        if self._closed:
            self._offer(queue, None)
        else:
            self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def publish(self, event: RunEvent) -> RunEvent:
        """Record (for log events) and deliver an event.

        Log events that already carry a sequence were persisted by the
        caller and are only delivered. Errors raised by the recorder
        propagate to the publisher; nothing is delivered for an event that
        failed to persist.
        """
        if self._closed:
            logger.warning(f"Dropping event for closed channel of run {self.run_id}")
            return event

        if event.kind == EventKind.LOG:
            if event.sequence is None:
                if self._recorder is not None:
                    event = self._recorder(event)
                else:
                    event = replace(event, sequence=self.last_sequence + 1)
            self.last_sequence = max(self.last_sequence, event.sequence or 0)

        for queue in self._subscribers:
            self._offer(queue, event)
        return event

    def log(self, stage: str, message: str, level: str = LogLevel.INFO) -> RunEvent:
        return self.publish(
            RunEvent(kind=EventKind.LOG, run_id=self.run_id, stage=stage, message=message, level=level)
        )

    def close(self) -> None:
        """End every subscription after any queued events."""
        if self._closed:
            return
        self._closed = True
        for queue in self._subscribers:
            self._offer(queue, None)
        self._subscribers.clear()

    @staticmethod
    def _offer(queue: asyncio.Queue, event: Optional[RunEvent]) -> None:
        """Enqueue without blocking, dropping the oldest event when full."""
        while True:
            try:
                queue.put_nowait(event)
                return
            except asyncio.QueueFull:
                try:
                    queue.get_nowait()
                except asyncio.QueueEmpty:
                    pass

    @staticmethod
    async def iterate(queue: asyncio.Queue) -> AsyncIterator[RunEvent]:
        """Yield events from a subscription until the channel closes."""
        while True:
            event = await queue.get()
            if event is None:
                return
            yield event
