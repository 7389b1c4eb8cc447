"""Run orchestrator.

Owns the lifecycle of acquisition runs:

    PENDING -> RUNNING -> {COMPLETED, FAILED, CANCELLED}

`start` creates the run and returns at once with a handle whose event feed
carries the run event, every log event and finally a status event. The
work itself happens in a background asyncio task (inline mode) or on the
Celery worker (worker mode, see `execute`).

Cancellation is cooperative: `cancel` sets the persisted flag and the
in-process token, and the run becomes CANCELLED once in-flight work
observes it. `force_fail` is the escape hatch for runs stuck inside a call
that does not observe the token.

Terminal transitions and their final log line are written in one
transaction, so a follower that sees a terminal run has also seen its last
log entry.
"""

import asyncio
from dataclasses import dataclass, field, replace
from typing import Any, AsyncIterator, Callable, Optional

from sqlalchemy.orm import Session, sessionmaker

from harvester_core.config import Settings, get_settings
from harvester_core.domain.domains import clean_domain
from harvester_core.domain.models import LogLevel, Run, RunLogEntry, RunStatus
from harvester_core.domain.services.batching import BatchScheduler
from harvester_core.domain.services.collaborators import MessageDrafter, TargetResolver
from harvester_core.domain.services.events import RunEvent, RunEventChannel
from harvester_core.domain.services.gate import ValidationGate
from harvester_core.domain.services.runs import RunNotFoundError, RunService
from harvester_core.domain.services.stages import DISCOVERY, PERSISTENCE, PROFILING, SYSTEM
from harvester_core.infra.db import session_scope
from harvester_core.infrastructure.cancellation import CancellationToken
from harvester_core.observability.logging import RunContext, get_logger
from harvester_core.providers.adapter import ProviderAdapter, ProviderConfig
from harvester_core.providers.base import AcquisitionCancelled, TargetOrganization

logger = get_logger(__name__)


class RequestError(Exception):
    """The request itself cannot be carried out (no targets, no resolver, ...)."""

    pass


class DispatchError(Exception):
    """A created run could not be handed to the worker queue."""

    def __init__(self, run_id: int, cause: Exception):
        super().__init__(f"Run {run_id} could not be queued: {type(cause).__name__}: {cause}")
        self.run_id = run_id


@dataclass
class RunRequest:
    """A caller's request to acquire contacts."""

    owner_id: str
    organizations: list[TargetOrganization] = field(default_factory=list)
    prompt: Optional[str] = None
    filters: dict[str, Any] = field(default_factory=dict)
    idempotency_key: Optional[str] = None

    def validate(self) -> None:
        """Raises RequestError if the request names no targets at all."""
        if not self.owner_id:
            raise RequestError("owner_id is required")
        if not self.organizations and not (self.prompt and self.prompt.strip()):
            raise RequestError("Either organizations or a search prompt is required")

    def target_spec(self) -> dict[str, Any]:
        return {
            "prompt": self.prompt,
            "organizations": [o.to_dict() for o in self.organizations],
        }


@dataclass
class RunHandle:
    """Returned by `start`: the run ID and its live event feed."""

    run_id: int
    created: bool
    events: AsyncIterator[RunEvent]


def clean_targets(organizations: list[TargetOrganization]) -> list[TargetOrganization]:
    """Normalize domains, fill in websites and drop duplicate or empty targets."""
    seen: set[str] = set()
    targets = []
    for org in organizations:
        name = (org.name or "").strip()
        domain = clean_domain(org.domain) or clean_domain(org.website)
        if not name and not domain:
            continue
        key = domain or name.lower()
        if key in seen:
            continue
        seen.add(key)
        website = org.website or (f"https://{domain}" if domain else None)
        targets.append(
            TargetOrganization(
                name=name or domain,
                domain=domain,
                website=website,
                profile=org.profile,
                fit_score=org.fit_score,
            )
        )
    return targets


class RunOrchestrator:
    """Starts, supervises and stops acquisition runs."""

    def __init__(
        self,
        adapter: ProviderAdapter,
        session_factory: Optional[sessionmaker[Session]] = None,
        settings: Optional[Settings] = None,
        gate: Optional[ValidationGate] = None,
        resolver: Optional[TargetResolver] = None,
        drafter: Optional[MessageDrafter] = None,
        dispatcher: Optional[Callable[[int], Any]] = None,
    ):
        """Initialize the orchestrator.

        Args:
            adapter: Provider adapter; its config supplies the poll budget.
            session_factory: Session factory, defaults to the app's.
            settings: Settings, defaults to `get_settings()`.
            gate: Validation gate, defaults to one built from settings.
            resolver: Optional prompt -> targets collaborator.
            drafter: Optional outreach message collaborator.
            dispatcher: Queues a run on the worker. When set, `start` hands
                runs to it instead of executing them in-process.
        """
        self.adapter = adapter
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.gate = gate or ValidationGate.from_settings(self.settings)
        self.resolver = resolver
        self.drafter = drafter
        self.dispatcher = dispatcher

        self._channels: dict[int, RunEventChannel] = {}
        self._tokens: dict[int, CancellationToken] = {}
        self._tasks: dict[int, asyncio.Task] = {}

    # -------------------------------------------------------------------------
    # Control surface
    # -------------------------------------------------------------------------

    async def start(self, request: RunRequest) -> RunHandle:
        """Create a run and begin executing it.

        A repeated start with the same (owner_id, idempotency_key) returns a
        handle on the existing run, replaying its log, without scheduling it
        again.

        Raises:
            RequestError: If the request names no targets at all.
            DispatchError: If the run could not be queued; the run is failed
                first so the idempotency key does not resolve to a run that
                never starts.
        """
        request.validate()

        with session_scope(self.session_factory) as db:
            service = RunService(db)
            run, created = service.create_run_or_get(
                owner_id=request.owner_id,
                filters=request.filters,
                target_spec=request.target_spec(),
                idempotency_key=request.idempotency_key,
            )
            run_id = run.id

        if not created:
            logger.info("Start matched an existing run", context=RunContext(run_id=run_id))
            return RunHandle(run_id=run_id, created=False, events=self.follow(run_id))

        if self.dispatcher is not None:
            try:
                self.dispatcher(run_id)
            except Exception as e:
                self._fail_dispatch(run_id, e)
                raise DispatchError(run_id, e) from e
            logger.info("Run queued for worker", context=RunContext(run_id=run_id))
            return RunHandle(run_id=run_id, created=True, events=self.follow(run_id))

        with session_scope(self.session_factory) as db:
            RunService(db).mark_running(run_id)
            run = RunService(db).require_run(run_id)

        channel = self._open_channel(run_id)
        queue = channel.subscribe(replay=[RunEvent.for_run(run)])
        token = self._open_token(run_id)

        task = asyncio.create_task(self._execute(run_id, channel, token))
        self._tasks[run_id] = task
        task.add_done_callback(lambda t: self._task_done(run_id, t))

        return RunHandle(run_id=run_id, created=True, events=channel.iterate(queue))

    async def execute(self, run_id: int) -> Optional[str]:
        """Run a pending run to completion in this process.

        Returns:
            The run's final status, or None if the run was not pending.
        """
        with session_scope(self.session_factory) as db:
            claimed = RunService(db).mark_running(run_id)
        if not claimed:
            logger.warning("Run is not pending, skipping", context=RunContext(run_id=run_id))
            return None

        channel = self._open_channel(run_id)
        token = self._open_token(run_id)
        return await self._execute(run_id, channel, token)

    def status(self, run_id: int) -> Run:
        """Get a run snapshot.

        Raises:
            RunNotFoundError: If the run does not exist.
        """
        with session_scope(self.session_factory) as db:
            return RunService(db).require_run(run_id)

    def logs(self, run_id: int, after_sequence: int = 0) -> list[RunLogEntry]:
        """Get a run's log entries after a sequence number.

        Raises:
            RunNotFoundError: If the run does not exist.
        """
        with session_scope(self.session_factory) as db:
            service = RunService(db)
            service.require_run(run_id)
            return service.list_logs(run_id, after_sequence=after_sequence)

    def cancel(self, run_id: int) -> bool:
        """Request cooperative cancellation.

        Returns:
            True if the request was accepted, False if the run is already
            terminal.

        Raises:
            RunNotFoundError: If the run does not exist.
        """
        with session_scope(self.session_factory) as db:
            service = RunService(db)
            accepted = service.request_cancel(run_id)
            entry = None
            if accepted:
                entry = service.append_log(run_id, SYSTEM, "Cancellation requested")

        if entry is not None:
            self._deliver(run_id, entry)

        token = self._tokens.get(run_id)
        if accepted and token is not None:
            token.cancel("cancel requested")
        return accepted

    def force_fail(self, run_id: int, reason: str) -> bool:
        """Fail a run regardless of in-flight work.

        Idempotent: on a terminal run nothing changes and False is returned.

        Raises:
            RunNotFoundError: If the run does not exist.
        """
        with session_scope(self.session_factory) as db:
            service = RunService(db)
            changed = service.force_fail(run_id, reason)
            entry = None
            if changed:
                entry = service.append_log(
                    run_id, SYSTEM, f"Run force-failed: {reason}", level=LogLevel.ERROR
                )

        if entry is not None:
            self._deliver(run_id, entry)
            logger.warning(f"Run force-failed: {reason}", context=RunContext(run_id=run_id))

        token = self._tokens.get(run_id)
        if token is not None:
            token.cancel("force-failed")
        return changed

    async def follow(self, run_id: int, after_sequence: int = 0) -> AsyncIterator[RunEvent]:
        """Replay a run's persisted log, then tail it until the run is terminal.

        Raises:
            RunNotFoundError: If the run does not exist.
        """
        with session_scope(self.session_factory) as db:
            run = RunService(db).require_run(run_id)
        yield RunEvent.for_run(run)

        last_sequence = after_sequence
        while True:
            with session_scope(self.session_factory) as db:
                service = RunService(db)
                run = service.require_run(run_id)
                entries = service.list_logs(run_id, after_sequence=last_sequence)

            for entry in entries:
                last_sequence = entry.sequence
                yield RunEvent.from_log_entry(entry)

            if run.is_terminal:
                yield RunEvent.for_status(run)
                return

            await asyncio.sleep(self.settings.feed_poll_interval_seconds)

    async def join(self, run_id: int) -> None:
        """Wait for an in-process run task to finish."""
        task = self._tasks.get(run_id)
        if task is not None:
            await asyncio.shield(task)

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def _execute(
        self,
        run_id: int,
        channel: RunEventChannel,
        token: CancellationToken,
    ) -> str:
        """Drive one run from RUNNING to a terminal status."""
        status = RunStatus.COMPLETED
        error: Optional[str] = None
        final_message = "Run completed"
        scheduler: Optional[BatchScheduler] = None
        context = RunContext(run_id=run_id, provider=self.adapter.provider_id)

        try:
            with session_scope(self.session_factory) as db:
                run = RunService(db).require_run(run_id)
                owner_id = run.owner_id
                filters = dict(run.filters_json or {})
                target_spec = dict(run.target_spec_json or {})
                provider_key = run.idempotency_key or f"run-{run_id}"
            context.owner_id = owner_id

            logger.info("Run started", context=context)
            channel.log(SYSTEM, "Run started")

            targets = await self._resolve_targets(target_spec, filters, channel, token)

            adapter = self.adapter.with_config(
                replace(self.adapter.config, idempotency_key=provider_key)
            )
            scheduler = BatchScheduler(
                adapter=adapter,
                gate=self.gate,
                channel=channel,
                token=token,
                session_factory=self.session_factory,
                batch_size=self.settings.batch_size,
                inter_batch_delay=self.settings.inter_batch_delay_seconds,
                drafter=self.drafter,
                context=context,
            )
            results = await scheduler.run(run_id, owner_id, targets, filters)

            errored = sum(1 for r in results if r.errored)
            accepted = sum(r.accepted for r in results)
            final_message = f"Run completed: {accepted} leads accepted"
            if errored:
                final_message += f", {errored} of {len(results)} batches errored"

        except AcquisitionCancelled as e:
            status = RunStatus.CANCELLED
            final_message = "Run cancelled"
            logger.info(f"Run cancelled: {e}", context=context)

        except RequestError as e:
            status = RunStatus.FAILED
            error = str(e)
            final_message = f"Run failed: {e}"
            logger.warning(f"Run failed: {e}", context=context)

        except Exception as e:
            status = RunStatus.FAILED
            error = f"{type(e).__name__}: {e}"
            final_message = f"Run failed: {error}"
            logger.error("Run failed with unexpected error", context=context, exc_info=True)

        output = {"batches": [r.to_dict() for r in scheduler.results]} if scheduler else None
        return self._finish(run_id, channel, status, final_message, error, output)

    def _task_done(self, run_id: int, task: asyncio.Task) -> None:
        self._tasks.pop(run_id, None)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                f"Run task ended with an error: {type(error).__name__}: {error}",
                context=RunContext(run_id=run_id),
                exc_info=error,
            )

    def _fail_dispatch(self, run_id: int, error: Exception) -> None:
        """Fail a run whose hand-off to the worker queue raised."""
        reason = f"{type(error).__name__}: {error}"
        with session_scope(self.session_factory) as db:
            service = RunService(db)
            if service.finish(run_id, RunStatus.FAILED, error=f"Dispatch failed: {reason}"):
                service.append_log(
                    run_id,
                    SYSTEM,
                    f"Run failed: could not queue run: {reason}",
                    level=LogLevel.ERROR,
                )
        logger.error(f"Run could not be queued: {reason}", context=RunContext(run_id=run_id))

    def _finish(
        self,
        run_id: int,
        channel: RunEventChannel,
        status: str,
        message: str,
        error: Optional[str],
        output: Optional[dict[str, Any]],
    ) -> str:
        """Write the terminal transition, publish the status event, close the feed."""
        try:
            with session_scope(self.session_factory) as db:
                service = RunService(db)
                finished = service.finish(run_id, status, error=error, output=output)
                entry = None
                if finished:
                    level = LogLevel.ERROR if status == RunStatus.FAILED else LogLevel.INFO
                    stage = PERSISTENCE if status == RunStatus.COMPLETED else SYSTEM
                    entry = service.append_log(run_id, stage, message, level=level)
                run = service.require_run(run_id)

            if entry is not None:
                channel.publish(RunEvent.from_log_entry(entry))
            channel.publish(RunEvent.for_status(run))
            return run.status
        finally:
            channel.close()
            self._channels.pop(run_id, None)
            self._tokens.pop(run_id, None)

    async def _resolve_targets(
        self,
        target_spec: dict[str, Any],
        filters: dict[str, Any],
        channel: RunEventChannel,
        token: CancellationToken,
    ) -> list[TargetOrganization]:
        """Turn the stored target request into a clean target list.

        Raises:
            RequestError: If a prompt has no resolver or nothing usable remains.
        """
        organizations = [
            TargetOrganization(**org) for org in target_spec.get("organizations") or []
        ]
        prompt = (target_spec.get("prompt") or "").strip()

        if organizations:
            channel.log(DISCOVERY, f"Using {len(organizations)} provided organizations")
        elif prompt:
            if self.resolver is None:
                raise RequestError("A search prompt requires a target resolver")
            channel.log(DISCOVERY, f"Searching for organizations matching: {prompt}")
            organizations = await self.resolver.resolve(prompt, filters)
            if token.cancelled:
                raise AcquisitionCancelled("Cancelled during discovery")
            channel.log(DISCOVERY, f"Found {len(organizations)} candidate organizations")

        targets = clean_targets(organizations)
        if not targets:
            raise RequestError("No valid target organizations")

        without_domain = sum(1 for t in targets if not t.domain)
        message = f"{len(targets)} organizations ready for contact search"
        if without_domain:
            message += f" ({without_domain} without a usable domain)"
        channel.log(PROFILING, message)
        return targets

    # -------------------------------------------------------------------------
    # Plumbing
    # -------------------------------------------------------------------------

    def _open_channel(self, run_id: int) -> RunEventChannel:
        channel = RunEventChannel(
            run_id,
            recorder=self._record_event,
            maxsize=self.settings.event_channel_size,
        )
        self._channels[run_id] = channel
        return channel

    def _open_token(self, run_id: int) -> CancellationToken:
        token = CancellationToken(
            check=lambda: self._cancel_requested(run_id),
            check_interval=self.settings.feed_poll_interval_seconds,
        )
        self._tokens[run_id] = token
        return token

    def _record_event(self, event: RunEvent) -> RunEvent:
        """Persist a log event and return it with its sequence."""
        with session_scope(self.session_factory) as db:
            entry = RunService(db).append_log(
                event.run_id, event.stage or SYSTEM, event.message or "", level=event.level
            )
            return RunEvent.from_log_entry(entry)

    def _cancel_requested(self, run_id: int) -> bool:
        with session_scope(self.session_factory) as db:
            return RunService(db).is_cancel_requested(run_id)

    def _deliver(self, run_id: int, entry: RunLogEntry) -> None:
        channel = self._channels.get(run_id)
        if channel is not None:
            channel.publish(RunEvent.from_log_entry(entry))


def build_provider_config(settings: Settings, idempotency_key: Optional[str] = None) -> ProviderConfig:
    """Provider config from settings."""
    return ProviderConfig(
        poll_interval_seconds=settings.provider_poll_interval_seconds,
        max_poll_attempts=settings.provider_poll_max_attempts,
        idempotency_key=idempotency_key,
    )


def build_orchestrator(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker[Session]] = None,
    dispatcher: Optional[Callable[[int], Any]] = None,
    resolver: Optional[TargetResolver] = None,
    drafter: Optional[MessageDrafter] = None,
) -> RunOrchestrator:
    """Build an orchestrator backed by the Apify Apollo domain scraper."""
    from harvester_core.domain.services.normalizer import Normalizer
    from harvester_core.providers.apify import APOLLO_DOMAIN_MAPPING, ApifyClient

    settings = settings or get_settings()
    client = ApifyClient(
        api_token=settings.apify_api_token or "",
        actor_id=settings.apify_actor_id,
        base_url=settings.apify_base_url,
        timeout=settings.apify_request_timeout,
        max_results=settings.apify_max_results,
        max_cost=settings.apify_max_cost,
    )
    adapter = ProviderAdapter(
        client=client,
        config=build_provider_config(settings),
        normalizer=Normalizer(APOLLO_DOMAIN_MAPPING),
    )
    return RunOrchestrator(
        adapter=adapter,
        session_factory=session_factory,
        settings=settings,
        resolver=resolver,
        drafter=drafter,
        dispatcher=dispatcher,
    )


__all__ = [
    "build_orchestrator",
    "MessageDrafter",
    "RequestError",
    "RunHandle",
    "RunNotFoundError",
    "RunOrchestrator",
    "RunRequest",
    "TargetResolver",
    "build_provider_config",
    "clean_targets",
]
