"""Run ledger service for Harvester.

Provides run creation with idempotency, status transitions, counters and
the append-only run log. Every transition and counter update is a
conditional UPDATE on a non-terminal status, so once a run is completed,
failed or cancelled nothing here can change it again.
"""

import traceback
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Union

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DBSession

from harvester_core.domain.models import (
    ACTIVE_RUN_STATUSES,
    TERMINAL_RUN_STATUSES,
    LogLevel,
    Run,
    RunLogEntry,
    RunStatus,
)
from harvester_core.domain.services.stages import canonical_stage

# Maximum length for error messages
MAX_ERROR_LENGTH = 5000

# Attempts at claiming the next log sequence under a concurrent writer
MAX_SEQUENCE_ATTEMPTS = 3


class RunNotFoundError(Exception):
    """Raised when a run ID does not exist."""

    def __init__(self, run_id: int):
        super().__init__(f"Run {run_id} not found")
        self.run_id = run_id


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class RunService:
    """Service for run ledger operations."""

    def __init__(self, db: DBSession):
        """Initialize the run service.

        Args:
            db: SQLAlchemy database session.
        """
        self.db = db

    # -------------------------------------------------------------------------
    # Creation and lookup
    # -------------------------------------------------------------------------

    def create_run_or_get(
        self,
        owner_id: str,
        filters: dict[str, Any],
        target_spec: dict[str, Any],
        idempotency_key: Optional[str] = None,
    ) -> tuple[Run, bool]:
        """Create a pending run, or return the existing one for this key.

        Returns:
            Tuple of (Run, created) where created is False if a run with the
            same (owner_id, idempotency_key) already existed.
        """
        if idempotency_key:
            existing = self.get_run_by_idempotency_key(owner_id, idempotency_key)
            if existing is not None:
                return existing, False

        run = Run(
            owner_id=owner_id,
            status=RunStatus.PENDING,
            filters_json=filters,
            target_spec_json=target_spec,
            idempotency_key=idempotency_key,
        )

        try:
            with self.db.begin_nested():
                self.db.add(run)
                self.db.flush()
        except IntegrityError:
            # Lost a race with a concurrent start using the same key
            existing = self.get_run_by_idempotency_key(owner_id, idempotency_key)
            if existing is None:
                raise
            return existing, False

        return run, True

    def get_run(self, run_id: int) -> Optional[Run]:
        """Get a run by ID, reloading it if the session already holds it."""
        return self.db.query(Run).populate_existing().filter(Run.id == run_id).first()

    def require_run(self, run_id: int) -> Run:
        """Get a run by ID.

        Raises:
            RunNotFoundError: If the run does not exist.
        """
        run = self.get_run(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    def get_run_by_idempotency_key(self, owner_id: str, idempotency_key: str) -> Optional[Run]:
        return (
            self.db.query(Run)
            .filter(Run.owner_id == owner_id, Run.idempotency_key == idempotency_key)
            .first()
        )

    # -------------------------------------------------------------------------
    # Status transitions
    # -------------------------------------------------------------------------

    def mark_running(self, run_id: int) -> bool:
        """Transition pending -> running. Returns True if this call claimed the run."""
        result = (
            self.db.query(Run)
            .filter(Run.id == run_id, Run.status == RunStatus.PENDING)
            .update(
                {
                    Run.status: RunStatus.RUNNING,
                    Run.started_at: _utcnow(),
                    Run.updated_at: _utcnow(),
                },
                synchronize_session=False,
            )
        )
        self.db.flush()
        return result > 0

    def set_batches_total(self, run_id: int, batches_total: int) -> bool:
        result = (
            self.db.query(Run)
            .filter(Run.id == run_id, Run.status.in_(ACTIVE_RUN_STATUSES))
            .update(
                {
                    Run.batches_total: batches_total,
                    Run.updated_at: _utcnow(),
                },
                synchronize_session=False,
            )
        )
        self.db.flush()
        return result > 0

    def record_batch(
        self,
        run_id: int,
        submitted: int,
        found: int = 0,
        accepted: int = 0,
        rejected: int = 0,
        duplicate: int = 0,
        errored: bool = False,
    ) -> bool:
        """Add one batch's counters to the run's aggregates."""
        result = (
            self.db.query(Run)
            .filter(Run.id == run_id, Run.status.in_(ACTIVE_RUN_STATUSES))
            .update(
                {
                    Run.batches_completed: Run.batches_completed + 1,
                    Run.submitted_count: Run.submitted_count + submitted,
                    Run.found_count: Run.found_count + found,
                    Run.accepted_count: Run.accepted_count + accepted,
                    Run.rejected_count: Run.rejected_count + rejected,
                    Run.duplicate_count: Run.duplicate_count + duplicate,
                    Run.errored_count: Run.errored_count + (1 if errored else 0),
                    Run.updated_at: _utcnow(),
                },
                synchronize_session=False,
            )
        )
        self.db.flush()
        return result > 0

    def finish(
        self,
        run_id: int,
        status: str,
        error: Optional[Union[str, Exception]] = None,
        output: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Move an active run to a terminal status.

        Returns:
            True if the transition happened, False if the run was already
            terminal (for example after a force-fail).
        """
        if status not in TERMINAL_RUN_STATUSES:
            raise ValueError(f"Not a terminal status: {status}")

        values: dict[Any, Any] = {
            Run.status: status,
            Run.ended_at: _utcnow(),
            Run.updated_at: _utcnow(),
        }
        if error is not None:
            values[Run.error_message] = self.serialize_error(error)
        if output is not None:
            values[Run.output_json] = output

        result = (
            self.db.query(Run)
            .filter(Run.id == run_id, Run.status.in_(ACTIVE_RUN_STATUSES))
            .update(values, synchronize_session=False)
        )
        self.db.flush()
        return result > 0

    def force_fail(self, run_id: int, reason: str) -> bool:
        """Fail an active run regardless of in-flight work.

        A no-op on terminal runs.

        Raises:
            RunNotFoundError: If the run does not exist.
        """
        self.require_run(run_id)
        return self.finish(run_id, RunStatus.FAILED, error=reason or "Force-failed")

    def request_cancel(self, run_id: int) -> bool:
        """Set the cooperative cancel flag on an active run.

        Returns:
            True if the flag was set, False if the run is already terminal.

        Raises:
            RunNotFoundError: If the run does not exist.
        """
        self.require_run(run_id)
        result = (
            self.db.query(Run)
            .filter(Run.id == run_id, Run.status.in_(ACTIVE_RUN_STATUSES))
            .update(
                {Run.cancel_requested: True, Run.updated_at: _utcnow()},
                synchronize_session=False,
            )
        )
        self.db.flush()
        return result > 0

    def is_cancel_requested(self, run_id: int) -> bool:
        """Check the persisted flag, also True once the run is terminal."""
        row = (
            self.db.query(Run.cancel_requested, Run.status)
            .filter(Run.id == run_id)
            .first()
        )
        if row is None:
            return True
        return bool(row.cancel_requested) or row.status in TERMINAL_RUN_STATUSES

    def fail_stale_runs(self, max_age_minutes: int) -> list[int]:
        """Fail active runs with no activity for max_age_minutes.

        Activity is any status change, batch or log entry, all of which bump
        `updated_at`. Pending runs that never got claimed are swept too.

        Returns:
            IDs of the runs that were failed.
        """
        cutoff = _utcnow() - timedelta(minutes=max_age_minutes)
        stale = (
            self.db.query(Run.id)
            .filter(Run.status.in_(ACTIVE_RUN_STATUSES), Run.updated_at < cutoff)
            .order_by(Run.id)
            .all()
        )

        failed = []
        for (run_id,) in stale:
            if self.finish(
                run_id,
                RunStatus.FAILED,
                error=f"No progress for {max_age_minutes} minutes",
            ):
                self.append_log(
                    run_id,
                    "System",
                    f"Marked failed after {max_age_minutes} minutes without progress",
                    level=LogLevel.ERROR,
                )
                failed.append(run_id)
        return failed

    # -------------------------------------------------------------------------
    # Run log
    # -------------------------------------------------------------------------

    def append_log(
        self,
        run_id: int,
        stage: str,
        message: str,
        level: str = LogLevel.INFO,
    ) -> RunLogEntry:
        """Append a log entry with the next sequence number.

        Every entry counts as activity on the run. Entries whose stage
        resolves to a known stage also advance the run's current stage.
        """
        last_error: Optional[IntegrityError] = None
        for _ in range(MAX_SEQUENCE_ATTEMPTS):
            sequence = self._next_sequence(run_id)
            entry = RunLogEntry(
                run_id=run_id,
                sequence=sequence,
                stage=stage,
                message=message,
                level=level,
                created_at=_utcnow(),
            )
            try:
                with self.db.begin_nested():
                    self.db.add(entry)
                    self.db.flush()
            except IntegrityError as e:
                last_error = e
                continue
            break
        else:
            raise last_error

        values: dict[Any, Any] = {Run.updated_at: _utcnow()}
        stage_name = canonical_stage(stage)
        if stage_name is not None:
            values[Run.current_stage] = stage_name
        self.db.query(Run).filter(Run.id == run_id).update(values, synchronize_session=False)
        self.db.flush()

        return entry

    def _next_sequence(self, run_id: int) -> int:
        current = (
            self.db.query(func.max(RunLogEntry.sequence))
            .filter(RunLogEntry.run_id == run_id)
            .scalar()
        )
        return (current or 0) + 1

    def list_logs(
        self,
        run_id: int,
        after_sequence: int = 0,
        limit: Optional[int] = None,
    ) -> list[RunLogEntry]:
        """List log entries in sequence order, after the given sequence."""
        query = (
            self.db.query(RunLogEntry)
            .filter(RunLogEntry.run_id == run_id, RunLogEntry.sequence > after_sequence)
            .order_by(RunLogEntry.sequence.asc())
        )
        if limit:
            query = query.limit(limit)
        return query.all()

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def serialize_error(
        self,
        error: Union[str, Exception],
        include_traceback: bool = False,
    ) -> str:
        """Serialize an error to a string suitable for storage.

        Args:
            error: The error message or exception.
            include_traceback: Whether to include traceback.

        Returns:
            Serialized error string (truncated if too long).
        """
        if isinstance(error, str):
            error_str = error
        elif isinstance(error, Exception):
            if include_traceback:
                error_str = "".join(traceback.format_exception(error))
            else:
                error_str = f"{type(error).__name__}: {error}"
        else:
            error_str = str(error)

        if len(error_str) > MAX_ERROR_LENGTH:
            error_str = error_str[: MAX_ERROR_LENGTH - 3] + "..."

        return error_str
