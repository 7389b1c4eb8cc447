"""Unit tests for batch splitting and the batch scheduler."""

import pytest

from harvester_core.domain.models import Lead, RunStatus
from harvester_core.domain.services.batching import BatchResult, BatchScheduler, split_into_batches
from harvester_core.domain.services.events import RunEventChannel
from harvester_core.domain.services.gate import GateTally
from harvester_core.domain.services.runs import RunService
from harvester_core.infra.db import session_scope
from harvester_core.infrastructure.cancellation import CancellationToken
from harvester_core.providers.base import AcquisitionCancelled
from tests.factories import create_run
from tests.fakes import FakeDrafter, apollo_record, make_targets


class TestSplitIntoBatches:
    """Tests for split_into_batches."""

    @pytest.mark.parametrize(
        "count,size,expected",
        [
            (23, 10, [10, 10, 3]),
            (20, 10, [10, 10]),
            (1, 10, [1]),
            (0, 10, []),
            (5, 1, [1, 1, 1, 1, 1]),
        ],
    )
    def test_chunk_sizes(self, count, size, expected):
        batches = split_into_batches(list(range(count)), size)

        assert [len(b) for b in batches] == expected

    def test_preserves_order(self):
        batches = split_into_batches(["a", "b", "c", "d", "e"], 2)

        assert batches == [["a", "b"], ["c", "d"], ["e"]]

    def test_rejects_zero_size(self):
        with pytest.raises(ValueError):
            split_into_batches([1, 2], 0)


class TestBatchResult:
    """Tests for BatchResult."""

    def test_summary_line(self):
        result = BatchResult(number=2, size=10)
        result.apply_tally(GateTally(accepted=4, rejected=3, duplicate=1))

        assert result.summary(3) == "Batch 2/3: accepted 4, rejected 3, duplicate 1, errored 0"

    def test_errored_summary(self):
        result = BatchResult(number=1, size=10, error="ProviderError: boom")

        assert result.errored
        assert result.summary(1).endswith("errored 1")
        assert result.to_dict()["error"] == "ProviderError: boom"


@pytest.fixture
def running_run(sync_session_factory):
    with session_scope(sync_session_factory) as db:
        run = create_run(db, status=RunStatus.RUNNING)
        return run.id


def make_scheduler(adapter, gate, sync_session_factory, run_id, **kwargs) -> BatchScheduler:
    kwargs.setdefault("batch_size", 2)
    kwargs.setdefault("inter_batch_delay", 0)
    return BatchScheduler(
        adapter=adapter,
        gate=gate,
        channel=RunEventChannel(run_id),
        token=kwargs.pop("token", CancellationToken()),
        session_factory=sync_session_factory,
        **kwargs,
    )


class TestBatchScheduler:
    """Tests for BatchScheduler."""

    @pytest.mark.asyncio
    async def test_processes_batches_in_order(
        self, adapter, fake_client, gate, sync_session_factory, running_run
    ):
        for i in range(1, 6):
            fake_client.add_records(
                f"company{i}.com",
                apollo_record(
                    email=f"p{i}@company{i}.com",
                    organization_name=f"company{i}",
                    organization_domain=f"company{i}.com",
                ),
            )
        scheduler = make_scheduler(adapter, gate, sync_session_factory, running_run)

        results = await scheduler.run(running_run, "owner-1", make_targets(5), {})

        assert [r.size for r in results] == [2, 2, 1]
        assert [s["targets"] for s in fake_client.submissions] == [
            ["company1.com", "company2.com"],
            ["company3.com", "company4.com"],
            ["company5.com"],
        ]
        with session_scope(sync_session_factory) as db:
            run = RunService(db).require_run(running_run)
            assert run.batches_total == 3
            assert run.batches_completed == 3
            assert run.accepted_count == 5
            assert run.submitted_count == 5

    @pytest.mark.asyncio
    async def test_errored_batch_does_not_stop_the_run(
        self, adapter, fake_client, gate, sync_session_factory, running_run
    ):
        fake_client.failing_submissions = {1}
        fake_client.add_records(
            "company3.com",
            apollo_record(
                email="x@company3.com",
                organization_name="company3",
                organization_domain="company3.com",
            ),
        )
        scheduler = make_scheduler(adapter, gate, sync_session_factory, running_run)

        results = await scheduler.run(running_run, "owner-1", make_targets(3), {})

        assert [r.errored for r in results] == [True, False]
        assert results[1].accepted == 1
        with session_scope(sync_session_factory) as db:
            run = RunService(db).require_run(running_run)
            assert run.errored_count == 1
            assert run.batches_completed == 2

    @pytest.mark.asyncio
    async def test_cancel_stops_remaining_batches(
        self, adapter, fake_client, gate, sync_session_factory, running_run
    ):
        token = CancellationToken()
        fake_client.on_submit = lambda number: token.cancel() if number == 1 else None
        scheduler = make_scheduler(adapter, gate, sync_session_factory, running_run, token=token)

        with pytest.raises(AcquisitionCancelled):
            await scheduler.run(running_run, "owner-1", make_targets(4), {})

        assert len(fake_client.submissions) == 1
        assert scheduler.results == []

    @pytest.mark.asyncio
    async def test_drafts_messages_and_skips_failures(
        self, adapter, fake_client, gate, sync_session_factory, running_run
    ):
        fake_client.add_records(
            "company1.com",
            apollo_record(
                email="ok@company1.com",
                organization_name="company1",
                organization_domain="company1.com",
            ),
            apollo_record(
                first_name="Bo",
                email="bad@company1.com",
                organization_name="company1",
                organization_domain="company1.com",
            ),
        )
        drafter = FakeDrafter(failing_emails=("bad@company1.com",))
        scheduler = make_scheduler(adapter, gate, sync_session_factory, running_run, drafter=drafter)

        results = await scheduler.run(running_run, "owner-1", make_targets(1), {})

        assert results[0].accepted == 2
        assert results[0].drafted == 1
        with session_scope(sync_session_factory) as db:
            messages = {
                lead.email: lead.outreach_message for lead in db.query(Lead).order_by(Lead.id).all()
            }
        assert messages["ok@company1.com"].startswith("Hi Ada")
        assert messages["bad@company1.com"] is None

    @pytest.mark.asyncio
    async def test_per_batch_idempotency_keys(
        self, adapter, fake_client, gate, sync_session_factory, running_run
    ):
        from dataclasses import replace

        keyed = adapter.with_config(replace(adapter.config, idempotency_key="run-9"))
        scheduler = make_scheduler(keyed, gate, sync_session_factory, running_run)

        await scheduler.run(running_run, "owner-1", make_targets(3), {})

        assert [s["idempotency_key"] for s in fake_client.submissions] == [
            "run-9_batch_1",
            "run-9_batch_2",
        ]

    @pytest.mark.asyncio
    async def test_run_filters_reject_after_provider(
        self, adapter, fake_client, gate, sync_session_factory, running_run
    ):
        fake_client.add_records(
            "company1.com",
            apollo_record(
                email="ceo@company1.com",
                organization_name="company1",
                organization_domain="company1.com",
                position="CEO",
            ),
            apollo_record(
                first_name="Hal",
                email="hal@company1.com",
                organization_name="company1",
                organization_domain="company1.com",
                position="HR Manager",
            ),
            apollo_record(
                first_name="Ivy",
                email="ivy@elsewhere.com",
                organization_name="Elsewhere",
                organization_domain="elsewhere.com",
                position="CEO",
            ),
        )
        scheduler = make_scheduler(adapter, gate, sync_session_factory, running_run)

        results = await scheduler.run(
            running_run, "owner-1", make_targets(1), {"excluded_functions": ["HR / Recruiting"]}
        )

        assert (results[0].found, results[0].accepted, results[0].rejected) == (3, 1, 2)
        with session_scope(sync_session_factory) as db:
            assert [lead.email for lead in db.query(Lead).all()] == ["ceo@company1.com"]
            assert RunService(db).require_run(running_run).rejected_count == 2

    @pytest.mark.asyncio
    async def test_domain_match_off_keeps_other_domains(
        self, adapter, fake_client, gate, sync_session_factory, running_run
    ):
        fake_client.add_records(
            "company1.com",
            apollo_record(
                email="ivy@elsewhere.com",
                organization_name="Elsewhere",
                organization_domain="elsewhere.com",
            ),
        )
        scheduler = make_scheduler(adapter, gate, sync_session_factory, running_run)

        results = await scheduler.run(
            running_run, "owner-1", make_targets(1), {"require_domain_match": False}
        )

        assert results[0].accepted == 1
