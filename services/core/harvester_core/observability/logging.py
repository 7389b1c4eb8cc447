"""Structured logging for Harvester services.

Every log line can carry the run it was emitted for. Run fields travel as
`extra` on the LogRecord and the JSON formatter groups them under a `run`
key, so a log pipeline can filter one run's lines across the API process and
the worker.

Usage:
    logger = get_logger(__name__)
    logger.info("Run started", context=RunContext(run_id=7, owner_id="acme"))

    batch_logger = logger.bind(RunContext(run_id=7).for_batch(2))
    batch_logger.warning("Batch failed")
"""

import json
import logging
import sys
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Union


DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_SERVICE_NAME = "harvester"

# Record attributes that belong to a run and are grouped under "run"
RUN_FIELDS = ("run_id", "owner_id", "batch", "provider")

# Chatty libraries kept at WARNING unless the service runs at DEBUG
QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "celery.app.trace")

# Logger instances by name
_loggers: dict[str, "StructuredLogger"] = {}


def _json_safe(value: Any) -> Any:
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        return str(value)


class JsonFormatter(logging.Formatter):
    """Formats records as one JSON object per line."""

    # Standard LogRecord attributes, never copied as extra fields
    RESERVED_FIELDS = frozenset(
        logging.LogRecord("", 0, "", 0, "", (), None).__dict__
    ) | {"message", "asctime", "taskName"}

    def __init__(self, service_name: str = DEFAULT_SERVICE_NAME):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
        }

        if record.levelno >= logging.WARNING:
            entry["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            entry["exception"] = "".join(traceback.format_exception(*record.exc_info))

        run: dict[str, Any] = {}
        for key, value in record.__dict__.items():
            if key in self.RESERVED_FIELDS or key.startswith("_"):
                continue
            if key in RUN_FIELDS:
                run[key] = _json_safe(value)
            else:
                entry[key] = _json_safe(value)
        if run:
            entry["run"] = run

        return json.dumps(entry)


@dataclass
class RunContext:
    """The run (and batch in flight, if any) a log line is emitted for."""

    run_id: Optional[int] = None
    owner_id: Optional[str] = None
    batch: Optional[int] = None
    provider: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    def for_batch(self, batch: int) -> "RunContext":
        """Copy scoped to one batch."""
        return RunContext(
            run_id=self.run_id,
            owner_id=self.owner_id,
            batch=batch,
            provider=self.provider,
            extra=dict(self.extra),
        )

    def to_dict(self) -> dict[str, Any]:
        """Set fields only, plus `extra`."""
        result: dict[str, Any] = {
            key: getattr(self, key) for key in RUN_FIELDS if getattr(self, key) not in (None, "")
        }
        result.update(self.extra)
        return result


class StructuredLogger:
    """Wraps a stdlib logger with run context and structured fields.

    A logger can be bound to a RunContext; per-call contexts and keyword
    fields are layered on top of the bound one.
    """

    def __init__(self, name: str, context: Optional[RunContext] = None):
        self.name = name
        self.context = context
        self._logger = logging.getLogger(name)

    def bind(self, context: RunContext) -> "StructuredLogger":
        """Return a logger for the same name that always carries `context`."""
        return StructuredLogger(self.name, context=context)

    def _log(
        self,
        level: int,
        msg: str,
        context: Optional[RunContext] = None,
        exc_info: Union[bool, BaseException] = False,
        **fields: Any,
    ) -> None:
        if not self._logger.isEnabledFor(level):
            return
        extra: dict[str, Any] = {}
        for ctx in (self.context, context):
            if ctx is not None:
                extra.update(ctx.to_dict())
        extra.update(fields)
        self._logger.log(level, msg, exc_info=exc_info, extra=extra)

    def debug(self, msg: str, context: Optional[RunContext] = None, **fields: Any) -> None:
        self._log(logging.DEBUG, msg, context, **fields)

    def info(self, msg: str, context: Optional[RunContext] = None, **fields: Any) -> None:
        self._log(logging.INFO, msg, context, **fields)

    def warning(self, msg: str, context: Optional[RunContext] = None, **fields: Any) -> None:
        self._log(logging.WARNING, msg, context, **fields)

    def error(
        self,
        msg: str,
        context: Optional[RunContext] = None,
        exc_info: Union[bool, BaseException] = False,
        **fields: Any,
    ) -> None:
        self._log(logging.ERROR, msg, context, exc_info=exc_info, **fields)


def get_logger(name: str) -> StructuredLogger:
    """Get the (cached, unbound) structured logger for a module."""
    if name not in _loggers:
        _loggers[name] = StructuredLogger(name)
    return _loggers[name]


def configure_logging(
    level: str = DEFAULT_LOG_LEVEL,
    json_format: bool = True,
    service_name: str = DEFAULT_SERVICE_NAME,
) -> None:
    """Install a single stdout handler on the root logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_format: JSON lines if True, plain text otherwise.
        service_name: Value of the `service` field in JSON lines.
    """
    numeric_level = getattr(logging, level.upper())

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    if json_format:
        handler.setFormatter(JsonFormatter(service_name=service_name))
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric_level)

    quiet_level = numeric_level if numeric_level <= logging.DEBUG else logging.WARNING
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)
