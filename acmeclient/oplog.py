"""Structured operation logging.

Every protocol operation reports an :class:`OperationEvent` and every failure an :class:`ExceptionEvent`.
Both are emitted as regular :mod:`logging` records whose *extra* attributes carry the structured fields,
and are handed to any sinks registered via :meth:`OperationLog.add_sink`, e.g. a persistence layer.
"""

import contextlib
import json
import logging
import traceback
import typing
from dataclasses import dataclass, field
from datetime import datetime, timezone

from acmeclient.util import PerformanceMeasure

# Attributes of a plain LogRecord, everything else is treated as an extra field.
_STANDARD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None)).keys()
) | {"message", "asctime"}


@dataclass
class OperationEvent:
    operation: str
    message: str
    level: int = logging.INFO
    duration_ms: typing.Optional[float] = None
    context: dict = field(default_factory=dict)
    success: bool = True


@dataclass
class ExceptionEvent:
    exception_class: str
    message: str
    stack_trace: str
    operation: typing.Optional[str] = None
    entity_type: typing.Optional[str] = None
    entity_id: typing.Optional[str] = None
    http_url: typing.Optional[str] = None
    http_method: typing.Optional[str] = None
    http_status_code: typing.Optional[int] = None
    context: dict = field(default_factory=dict)


Sink = typing.Callable[[typing.Union[OperationEvent, ExceptionEvent]], None]


class OperationLog:
    """Emits structured operation and exception events.

    :param name: Name of the logger the events are written to.
    """

    def __init__(self, name: str = "acmeclient.operations"):
        self._logger = logging.getLogger(name)
        self._sinks: typing.List[Sink] = []

    def add_sink(self, sink: Sink) -> None:
        """Registers a callable that receives every emitted event.

        :param sink: The callable.
        """
        self._sinks.append(sink)

    def operation(
        self,
        operation: str,
        message: str,
        *,
        level: int = logging.INFO,
        duration_ms: float = None,
        success: bool = True,
        **context,
    ) -> OperationEvent:
        """Emits an operation event.

        :param operation: Name of the operation, e.g. *acme_request*.
        :param message: Human readable description.
        :param level: The log level.
        :param duration_ms: Time the operation took in milliseconds.
        :param success: Whether the operation succeeded.
        :param context: Additional fields such as *url*, *method* or *attempt*.
        :return: The emitted event.
        """
        event = OperationEvent(
            operation=operation,
            message=message,
            level=level,
            duration_ms=duration_ms,
            context=context,
            success=success,
        )
        self._logger.log(
            level,
            message,
            extra={
                "operation": operation,
                "duration_ms": duration_ms,
                "context": context,
                "success": success,
            },
        )
        self._dispatch(event)
        return event

    def exception(
        self,
        exc: BaseException,
        *,
        operation: str = None,
        entity_type: str = None,
        entity_id: typing.Any = None,
        http_url: str = None,
        http_method: str = None,
        http_status_code: int = None,
        level: int = logging.ERROR,
        **context,
    ) -> ExceptionEvent:
        """Emits an exception event for the given exception.

        The HTTP status code defaults to the exception's *status* attribute if it has one.

        :return: The emitted event.
        """
        if http_status_code is None:
            http_status_code = getattr(exc, "status", None)

        event = ExceptionEvent(
            exception_class=type(exc).__name__,
            message=str(exc),
            stack_trace="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
            operation=operation,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            http_url=http_url,
            http_method=http_method,
            http_status_code=http_status_code,
            context=context,
        )
        self._logger.log(
            level,
            "%s failed: %s",
            operation or "operation",
            exc,
            exc_info=(type(exc), exc, exc.__traceback__),
            extra={
                "operation": operation,
                "exception_class": event.exception_class,
                "entity_type": entity_type,
                "entity_id": event.entity_id,
                "http_url": http_url,
                "http_method": http_method,
                "http_status_code": http_status_code,
                "context": context,
                "success": False,
            },
        )
        self._dispatch(event)
        return event

    @contextlib.asynccontextmanager
    async def measure(
        self,
        operation: str,
        message: str,
        *,
        entity_type: str = None,
        entity_id: typing.Any = None,
        **context,
    ):
        """Times the enclosed block and emits an operation event on success or an exception event on failure.

        The yielded context :class:`dict` may be extended inside the block, its contents are added to the event.
        Exceptions are re-raised after they have been reported.
        """
        measure = PerformanceMeasure()
        try:
            async with measure:
                yield context
        except Exception as e:
            self.exception(
                e,
                operation=operation,
                entity_type=entity_type,
                entity_id=entity_id,
                duration_ms=measure.duration_ms,
                **context,
            )
            raise

        self.operation(operation, message, duration_ms=measure.duration_ms, **context)

    def _dispatch(self, event) -> None:
        for sink in self._sinks:
            sink(event)


class StructuredFormatter(logging.Formatter):
    """JSON-lines formatter.

    Every record becomes a single JSON object containing the standard fields plus any *extra* attributes,
    which includes the fields of operation and exception events.
    """

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()

        data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
        }

        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_") and value is not None:
                data.setdefault(key, value)

        if record.exc_info and record.exc_info[0] is not None:
            data["exception"] = self.formatException(record.exc_info)

        return json.dumps(data, default=str)

