"""Unit tests for run events and the event channel.

Tests cover:
- Event serialization
- Recorder-assigned sequences
- Subscriber fan-out, replay and close
- Bounded queues dropping the oldest events
"""

import asyncio
from dataclasses import replace

import pytest

from harvester_core.domain.models import LogLevel
from harvester_core.domain.services.events import EventKind, RunEvent, RunEventChannel


async def drain(queue: asyncio.Queue) -> list[RunEvent]:
    return [event async for event in RunEventChannel.iterate(queue)]


class TestRunEvent:
    """Tests for RunEvent serialization."""

    def test_log_event_dict(self):
        event = RunEvent(
            kind=EventKind.LOG,
            run_id=3,
            sequence=7,
            stage="Persistence",
            message="Batch 1/1: accepted 2",
            level=LogLevel.WARNING,
        )

        data = event.to_dict()

        assert data["run_id"] == 3
        assert data["sequence"] == 7
        assert data["stage"] == "Persistence"
        assert data["level"] == "warning"
        assert "created_at" in data
        assert not event.is_terminal

    def test_status_event_dict(self):
        event = RunEvent(
            kind=EventKind.STATUS,
            run_id=3,
            status="completed",
            data={"accepted": 5},
        )

        assert event.to_dict() == {"run_id": 3, "status": "completed", "error": None, "accepted": 5}
        assert event.is_terminal


class TestRunEventChannel:
    """Tests for the channel."""

    @pytest.mark.asyncio
    async def test_fans_out_to_all_subscribers(self):
        channel = RunEventChannel(run_id=1)
        first = channel.subscribe()
        second = channel.subscribe()

        channel.log("System", "hello")
        channel.close()

        assert [e.message for e in await drain(first)] == ["hello"]
        assert [e.message for e in await drain(second)] == ["hello"]

    @pytest.mark.asyncio
    async def test_sequences_without_recorder(self):
        channel = RunEventChannel(run_id=1)
        queue = channel.subscribe()

        channel.log("System", "a")
        channel.log("System", "b")
        channel.close()

        assert [e.sequence for e in await drain(queue)] == [1, 2]
        assert channel.last_sequence == 2

    @pytest.mark.asyncio
    async def test_recorder_assigns_sequence(self):
        recorded = []

        def recorder(event: RunEvent) -> RunEvent:
            recorded.append(event.message)
            return replace(event, sequence=100 + len(recorded))

        channel = RunEventChannel(run_id=1, recorder=recorder)
        queue = channel.subscribe()

        channel.log("System", "a")
        channel.close()

        events = await drain(queue)
        assert recorded == ["a"]
        assert events[0].sequence == 101

    @pytest.mark.asyncio
    async def test_sequenced_events_are_not_recorded_again(self):
        recorder_calls = []
        channel = RunEventChannel(run_id=1, recorder=lambda e: recorder_calls.append(e) or e)
        queue = channel.subscribe()

        channel.publish(RunEvent(kind=EventKind.LOG, run_id=1, sequence=9, stage="System", message="x"))
        channel.close()

        assert recorder_calls == []
        assert [e.sequence for e in await drain(queue)] == [9]

    @pytest.mark.asyncio
    async def test_recorder_errors_propagate_and_nothing_is_delivered(self):
        def failing_recorder(event):
            raise RuntimeError("db down")

        channel = RunEventChannel(run_id=1, recorder=failing_recorder)
        queue = channel.subscribe()

        with pytest.raises(RuntimeError):
            channel.log("System", "a")

        channel.close()
        assert await drain(queue) == []

    @pytest.mark.asyncio
    async def test_replay_seeds_subscription(self):
        channel = RunEventChannel(run_id=1)
        replay = [RunEvent(kind=EventKind.RUN, run_id=1, status="running")]

        queue = channel.subscribe(replay=replay)
        channel.close()

        events = await drain(queue)
        assert [e.kind for e in events] == [EventKind.RUN]

    @pytest.mark.asyncio
    async def test_subscribe_after_close_ends_immediately(self):
        channel = RunEventChannel(run_id=1)
        channel.close()

        queue = channel.subscribe()

        assert await drain(queue) == []

    @pytest.mark.asyncio
    async def test_full_queue_drops_oldest(self):
        channel = RunEventChannel(run_id=1, maxsize=3)
        queue = channel.subscribe()

        for i in range(5):
            channel.log("System", f"m{i}")

        assert queue.qsize() == 3
        assert queue.get_nowait().message == "m2"

    @pytest.mark.asyncio
    async def test_unsubscribed_queue_gets_nothing(self):
        channel = RunEventChannel(run_id=1)
        queue = channel.subscribe()
        channel.unsubscribe(queue)

        channel.log("System", "a")

        assert queue.empty()

    def test_publish_after_close_is_dropped(self):
        channel = RunEventChannel(run_id=1)
        channel.close()

        event = channel.log("System", "late")

        assert event.sequence is None
        assert channel.closed
