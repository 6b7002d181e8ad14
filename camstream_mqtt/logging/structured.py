"""
Structured JSON logging.

Each record becomes one JSON line so worker, remote-session and MQTT events
can be filtered by ``event`` in a log aggregator:

    {"timestamp": "...", "level": "INFO", "component": "worker",
     "event": "worker.state.changed", "message": "Worker loading → ready",
     "metadata": {"from": "loading", "to": "ready"}}

The event fields ride on the LogRecord (``extra``); JSONFormatter renders
them, so records stay ordinary ``logging`` records for any other handler.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .events import LogEvent


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'component': getattr(record, 'component', record.name),
            'event': getattr(record, 'event', None),
            'message': record.getMessage(),
        }
        metadata = getattr(record, 'metadata', None)
        if metadata:
            entry['metadata'] = metadata
        if record.exc_info and record.exc_info[1] is not None:
            error = record.exc_info[1]
            entry['exception'] = {'type': type(error).__name__, 'message': str(error)}
        return json.dumps(entry, default=str)


class StructuredLogger:
    """
    Typed-event facade over a stdlib logger named ``camstream.<component>``.

    ``context`` is merged into every record's metadata; ``bind`` derives a
    logger with extra context (e.g. the service id) sharing the same handler.
    """

    def __init__(
        self,
        component: str,
        level: int = logging.INFO,
        context: Optional[Dict[str, Any]] = None
    ):
        self.component = component
        self.context = dict(context or {})
        self.logger = logging.getLogger(f"camstream.{component}")
        self.logger.setLevel(level)

        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(JSONFormatter())
            self.logger.addHandler(handler)
            self.logger.propagate = False

    def bind(self, **context: Any) -> 'StructuredLogger':
        child = StructuredLogger.__new__(StructuredLogger)
        child.component = self.component
        child.context = {**self.context, **context}
        child.logger = self.logger
        return child

    def log(
        self,
        level: int,
        event: LogEvent,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
        exc_info: Optional[BaseException] = None
    ) -> None:
        if not self.logger.isEnabledFor(level):
            return
        merged = {**self.context, **(metadata or {})}
        self.logger.log(
            level,
            message,
            exc_info=exc_info,
            extra={'component': self.component, 'event': event.value, 'metadata': merged},
        )

    def debug(self, event: LogEvent, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        self.log(logging.DEBUG, event, message, metadata)

    def info(self, event: LogEvent, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        self.log(logging.INFO, event, message, metadata)

    def warning(self, event: LogEvent, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        self.log(logging.WARNING, event, message, metadata)

    def error(
        self,
        event: LogEvent,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
        exc_info: Optional[BaseException] = None
    ) -> None:
        self.log(logging.ERROR, event, message, metadata, exc_info)


def create_logger(
    component: str,
    level: int = logging.INFO,
    **context: Any
) -> StructuredLogger:
    """
    Example:
        >>> events = create_logger("remote", service_id="cam_01")
        >>> events.info(LogEvent.REMOTE_STATE_CHANGED, "Remote disabled → initializing")
    """
    return StructuredLogger(component=component, level=level, context=context)
