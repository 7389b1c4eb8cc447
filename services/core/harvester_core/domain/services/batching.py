"""Batch scheduler.

Splits a run's targets into fixed-size chunks and processes them strictly
one after another, with a cancellable delay in between. For each chunk:

    acquire -> gate -> persist accepted -> draft messages -> summary log

The gate gets the run's ContactRules for each chunk, so contacts from a
domain the chunk did not ask for are rejected along with excluded
functions and industries.

A chunk that fails at the provider (ProviderError, including schema
mismatches, or ProviderTimeoutError) is logged with its error detail,
counted as errored, and the scheduler moves on to the next chunk.
Cancellation is checked at every chunk boundary and propagates as
AcquisitionCancelled.
"""

from dataclasses import dataclass
from typing import Any, Optional, Sequence, TypeVar

from sqlalchemy.orm import Session, sessionmaker

from harvester_core.domain.models import Lead, LogLevel
from harvester_core.domain.services.collaborators import MessageDrafter
from harvester_core.domain.services.events import RunEventChannel
from harvester_core.domain.services.gate import ContactRules, GateTally, LeadStore, ValidationGate
from harvester_core.domain.services.runs import RunService
from harvester_core.domain.services.stages import (
    CONTACT_FINDING,
    MESSAGE_DRAFTING,
    PERSISTENCE,
)
from harvester_core.infra.db import session_scope
from harvester_core.infrastructure.cancellation import CancellationToken
from harvester_core.observability.logging import RunContext, StructuredLogger, get_logger
from harvester_core.providers.adapter import ProviderAdapter
from harvester_core.providers.base import (
    AcquisitionCancelled,
    CanonicalContact,
    ProviderError,
    ProviderTimeoutError,
    TargetOrganization,
)

logger = get_logger(__name__)

T = TypeVar("T")


def split_into_batches(items: Sequence[T], size: int) -> list[list[T]]:
    """Split items into ceil(N/size) chunks in input order, each at most `size`."""
    if size < 1:
        raise ValueError("Batch size must be at least 1")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


@dataclass
class BatchResult:
    """Outcome of one chunk."""

    number: int
    size: int
    found: int = 0
    accepted: int = 0
    rejected: int = 0
    duplicate: int = 0
    drafted: int = 0
    error: Optional[str] = None

    @property
    def errored(self) -> bool:
        return self.error is not None

    def apply_tally(self, tally: GateTally) -> None:
        self.accepted = tally.accepted
        self.rejected = tally.rejected
        self.duplicate = tally.duplicate

    def summary(self, total: int) -> str:
        return (
            f"Batch {self.number}/{total}: accepted {self.accepted}, "
            f"rejected {self.rejected}, duplicate {self.duplicate}, "
            f"errored {1 if self.errored else 0}"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch": self.number,
            "size": self.size,
            "found": self.found,
            "accepted": self.accepted,
            "rejected": self.rejected,
            "duplicate": self.duplicate,
            "drafted": self.drafted,
            "error": self.error,
        }


class BatchScheduler:
    """Runs a target list through the provider one chunk at a time."""

    def __init__(
        self,
        adapter: ProviderAdapter,
        gate: ValidationGate,
        channel: RunEventChannel,
        token: CancellationToken,
        session_factory: Optional[sessionmaker[Session]] = None,
        batch_size: int = 10,
        inter_batch_delay: float = 2.0,
        drafter: Optional[MessageDrafter] = None,
        context: Optional[RunContext] = None,
    ):
        self.adapter = adapter
        self.gate = gate
        self.channel = channel
        self.token = token
        self.session_factory = session_factory
        self.batch_size = batch_size
        self.inter_batch_delay = inter_batch_delay
        self.drafter = drafter
        self.context = context or RunContext(run_id=channel.run_id)
        self.results: list[BatchResult] = []
        # Emails accepted so far in this run
        self.seen: set[str] = set()

    async def run(
        self,
        run_id: int,
        owner_id: str,
        targets: list[TargetOrganization],
        filters: dict[str, Any],
    ) -> list[BatchResult]:
        """Process every chunk.

        Raises:
            AcquisitionCancelled: If the token fires; `results` keeps the
                chunks finished so far.
        """
        batches = split_into_batches(targets, self.batch_size)
        total = len(batches)

        with session_scope(self.session_factory) as db:
            RunService(db).set_batches_total(run_id, total)

        self.channel.log(
            CONTACT_FINDING,
            f"Searching {len(targets)} organizations in {total} batches of up to {self.batch_size}",
        )
        exclusions = ContactRules.from_filters(filters)
        if exclusions.excluded_functions:
            functions = ", ".join(exclusions.excluded_functions)
            self.channel.log(CONTACT_FINDING, f"Excluding functions: {functions}")
        if exclusions.excluded_industries:
            industries = ", ".join(exclusions.excluded_industries)
            self.channel.log(CONTACT_FINDING, f"Excluding industries: {industries}")

        for number, batch in enumerate(batches, start=1):
            if self.token.cancelled:
                raise AcquisitionCancelled(f"Cancelled before batch {number}/{total}")

            result = await self._run_batch(run_id, owner_id, number, total, batch, filters)
            self.results.append(result)

            if number < total and await self.token.sleep(self.inter_batch_delay):
                raise AcquisitionCancelled(f"Cancelled after batch {number}/{total}")

        return self.results

    async def _run_batch(
        self,
        run_id: int,
        owner_id: str,
        number: int,
        total: int,
        batch: list[TargetOrganization],
        filters: dict[str, Any],
    ) -> BatchResult:
        batch_log = logger.bind(self.context.for_batch(number))
        result = BatchResult(number=number, size=len(batch))
        adapter = self.adapter.with_config(self.adapter.config.for_batch(number))

        names = ", ".join(t.name for t in batch[:5])
        if len(batch) > 5:
            names += f" and {len(batch) - 5} more"
        self.channel.log(CONTACT_FINDING, f"Batch {number}/{total}: searching {names}")

        try:
            contacts = await adapter.acquire(batch, filters, self.token)
        except (ProviderError, ProviderTimeoutError) as e:
            result.error = f"{type(e).__name__}: {e}"
            batch_log.warning(f"Batch failed: {result.error}")
            self.channel.log(
                CONTACT_FINDING,
                f"Batch {number}/{total} failed: {result.error}",
                level=LogLevel.ERROR,
            )
            self._record(run_id, result)
            self.channel.log(PERSISTENCE, result.summary(total), level=LogLevel.WARNING)
            return result

        result.found = len(contacts)
        self.channel.log(
            CONTACT_FINDING, f"Batch {number}/{total}: provider returned {len(contacts)} contacts"
        )

        with session_scope(self.session_factory) as db:
            tally = self.gate.process(
                contacts,
                owner_id,
                LeadStore(db),
                self.seen,
                run_id=run_id,
                rules=ContactRules.from_filters(filters, batch),
            )
            accepted = [(d.lead.id, d.contact) for d in tally.accepted_decisions]
        result.apply_tally(tally)

        if tally.reasons:
            reasons = ", ".join(f"{k} {v}" for k, v in sorted(tally.reasons.items()))
            batch_log.info(f"Gate reasons: {reasons}")

        if self.drafter is not None and accepted:
            result.drafted = await self._draft_messages(number, total, accepted, batch_log)

        self._record(run_id, result)
        self.channel.log(PERSISTENCE, result.summary(total))
        return result

    async def _draft_messages(
        self,
        number: int,
        total: int,
        accepted: list[tuple[int, CanonicalContact]],
        batch_log: StructuredLogger,
    ) -> int:
        """Draft outreach for accepted leads. Drafting failures never fail the batch."""
        self.channel.log(
            MESSAGE_DRAFTING, f"Batch {number}/{total}: drafting messages for {len(accepted)} leads"
        )
        drafted = 0
        for lead_id, contact in accepted:
            if self.token.cancelled:
                break
            try:
                message = await self.drafter.draft(contact)
            except Exception as e:
                batch_log.warning(f"Drafting failed for lead {lead_id}: {type(e).__name__}: {e}")
                continue
            if not message:
                continue
            with session_scope(self.session_factory) as db:
                db.query(Lead).filter(Lead.id == lead_id).update(
                    {Lead.outreach_message: message}, synchronize_session=False
                )
            drafted += 1

        if drafted < len(accepted):
            self.channel.log(
                MESSAGE_DRAFTING,
                f"Batch {number}/{total}: drafted {drafted} of {len(accepted)} messages",
                level=LogLevel.WARNING,
            )
        return drafted

    def _record(self, run_id: int, result: BatchResult) -> None:
        with session_scope(self.session_factory) as db:
            RunService(db).record_batch(
                run_id,
                submitted=result.size,
                found=result.found,
                accepted=result.accepted,
                rejected=result.rejected,
                duplicate=result.duplicate,
                errored=result.errored,
            )
