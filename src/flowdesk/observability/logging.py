"""Structured JSON-lines logging for flowdesk sessions.

Library modules only ever call ``logging.getLogger(__name__)``. The CLI calls
``setup_structured_logging`` once per session and ``shutdown_logging`` when
the command ends. Records go through a ``QueueHandler`` and are written by a
``QueueListener`` thread, so file I/O never runs on the event loop. Each line
carries the session id, the fields bound with ``correlation_scope``
(workspace, command category), the ``extra`` mapping under ``fields``, and
secret-looking values redacted.
"""

from __future__ import annotations

import contextvars
import copy
import json
import logging
import logging.handlers
import queue
import re
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Final

_REDACTED: Final[str] = "***REDACTED***"
_LOG_FILENAME: Final[str] = "flowdesk.jsonl"

_SENSITIVE_KEY_TERMS: Final[tuple[str, ...]] = (
    "secret",
    "token",
    "password",
    "api_key",
    "apikey",
    "authorization",
    "credential",
)
_SENSITIVE_ASSIGNMENT: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(api[_-]?key|token|password|secret|authorization)\b\s*([:=])\s*([^\s,;]+)"
)
_BEARER_TOKEN: Final[re.Pattern[str]] = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*")

_STANDARD_RECORD_FIELDS: Final[frozenset[str]] = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__.keys()
    | {"message", "asctime", "taskName", "correlation"}
)

_TRACEBACK_FORMATTER: Final[logging.Formatter] = logging.Formatter()

_CORRELATION: contextvars.ContextVar[tuple[tuple[str, str], ...]] = contextvars.ContextVar(
    "flowdesk_log_correlation", default=()
)

_active: StructuredLoggingHandle | None = None


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    session_id: str
    base_log_dir: Path | str = Path("logs")
    logger_name: str = "flowdesk"
    level: str = "INFO"
    log_to_stderr: bool = False
    redact_secrets: bool = True


def logging_config_from_settings(
    observability: Mapping[str, Any],
    *,
    session_id: str,
) -> LoggingConfig:
    """Build a ``LoggingConfig`` from the validated ``[observability]`` section."""

    return LoggingConfig(
        session_id=session_id,
        base_log_dir=observability.get("log_dir", "logs"),
        level=str(observability.get("log_level", "INFO")),
        log_to_stderr=bool(observability.get("log_to_stderr", False)),
        redact_secrets=bool(observability.get("redact_secrets", True)),
    )


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Bind correlation fields for log records in scope; ``None`` unbinds a key."""

    state = dict(_CORRELATION.get())
    for key, value in fields.items():
        if value is None:
            state.pop(key, None)
        else:
            state[key] = str(value)
    token = _CORRELATION.set(tuple(state.items()))
    try:
        yield
    finally:
        _CORRELATION.reset(token)


class _CorrelatingQueueHandler(logging.handlers.QueueHandler):
    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        record = copy.copy(record)
        # The listener thread cannot see this task's contextvars.
        record.correlation = dict(_CORRELATION.get())
        record.msg = record.getMessage()
        record.args = None
        if record.exc_info:
            record.exc_text = _TRACEBACK_FORMATTER.formatException(record.exc_info)
            record.exc_info = None
        return record


class _JsonLineFormatter(logging.Formatter):
    def __init__(self, *, session_id: str, redact: bool) -> None:
        super().__init__()
        self._session_id = session_id
        self._redact = redact

    def format(self, record: logging.LogRecord) -> str:
        event: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "session_id": self._session_id,
        }
        event.update(getattr(record, "correlation", {}))

        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _STANDARD_RECORD_FIELDS and not key.startswith("_")
        }
        if extras:
            event["fields"] = extras
        if record.exc_text:
            event["exception"] = record.exc_text

        if self._redact:
            event = _redact(event, key=None)
        return json.dumps(event, sort_keys=True, default=str, ensure_ascii=False)


@dataclass(slots=True)
class StructuredLoggingHandle:
    logger: logging.Logger
    log_path: Path
    listener: logging.handlers.QueueListener
    queue_handler: logging.Handler
    sinks: tuple[logging.Handler, ...]
    previous_propagate: bool
    is_shutdown: bool = False

    def shutdown(self) -> None:
        if self.is_shutdown:
            return
        # stop() drains every queued record before returning.
        self.listener.stop()
        self.logger.removeHandler(self.queue_handler)
        self.logger.propagate = self.previous_propagate
        for sink in self.sinks:
            sink.close()
        self.is_shutdown = True


def setup_structured_logging(config: LoggingConfig) -> StructuredLoggingHandle:
    """Configure queue-backed JSON logging; replaces any active setup."""

    global _active
    if _active is not None:
        _active.shutdown()
        _active = None

    session_id = config.session_id.strip()
    if not session_id or Path(session_id).name != session_id:
        raise ValueError(f"invalid logging session id {config.session_id!r}")
    level = logging.getLevelName(config.level.strip().upper())
    if not isinstance(level, int):
        raise ValueError(f"unsupported logging level {config.level!r}")

    session_dir = Path(config.base_log_dir) / session_id
    session_dir.mkdir(parents=True, exist_ok=True)
    log_path = session_dir / _LOG_FILENAME

    formatter = _JsonLineFormatter(session_id=session_id, redact=config.redact_secrets)
    sinks: list[logging.Handler] = [logging.FileHandler(log_path, encoding="utf-8")]
    if config.log_to_stderr:
        sinks.append(logging.StreamHandler())
    for sink in sinks:
        sink.setFormatter(formatter)

    logger = logging.getLogger(config.logger_name)
    previous_propagate = logger.propagate
    logger.setLevel(level)
    logger.propagate = False
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()

    log_queue: queue.SimpleQueue[logging.LogRecord] = queue.SimpleQueue()
    queue_handler = _CorrelatingQueueHandler(log_queue)
    listener = logging.handlers.QueueListener(log_queue, *sinks)
    listener.start()
    logger.addHandler(queue_handler)

    _active = StructuredLoggingHandle(
        logger=logger,
        log_path=log_path,
        listener=listener,
        queue_handler=queue_handler,
        sinks=tuple(sinks),
        previous_propagate=previous_propagate,
    )
    return _active


def shutdown_logging(handle: StructuredLoggingHandle | None = None) -> None:
    global _active
    resolved = handle if handle is not None else _active
    if resolved is None:
        return
    resolved.shutdown()
    if _active is resolved:
        _active = None


def _redact(value: Any, *, key: str | None) -> Any:
    if key is not None and any(term in key.lower() for term in _SENSITIVE_KEY_TERMS):
        return _REDACTED
    if isinstance(value, str):
        text = _SENSITIVE_ASSIGNMENT.sub(lambda m: f"{m.group(1)}{m.group(2)}{_REDACTED}", value)
        return _BEARER_TOKEN.sub(f"Bearer {_REDACTED}", text)
    if isinstance(value, Mapping):
        return {str(k): _redact(v, key=str(k)) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_redact(item, key=None) for item in value]
    return value


__all__ = [
    "LoggingConfig",
    "StructuredLoggingHandle",
    "correlation_scope",
    "logging_config_from_settings",
    "setup_structured_logging",
    "shutdown_logging",
]
