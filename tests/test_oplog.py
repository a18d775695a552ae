import json
import logging
import sys

import pytest

from acmeclient.client.exceptions import RateLimitError
from acmeclient.oplog import ExceptionEvent, OperationEvent, OperationLog, StructuredFormatter


@pytest.fixture
def events():
    return []


@pytest.fixture
def oplog(events):
    oplog = OperationLog("acmeclient.tests.operations")
    oplog.add_sink(events.append)
    return oplog


def test_operation(oplog, events, caplog):
    with caplog.at_level(logging.INFO, logger="acmeclient.tests.operations"):
        event = oplog.operation("nonce_fetch", "Fetched new nonce", duration_ms=2.0, url="https://acme.test/nonce")

    assert events == [event]
    assert event.success
    assert event.context == {"url": "https://acme.test/nonce"}

    record = caplog.records[-1]
    assert record.operation == "nonce_fetch"
    assert record.duration_ms == 2.0
    assert record.context == {"url": "https://acme.test/nonce"}


def test_exception_defaults_to_error_status(oplog, events):
    error = RateLimitError("slow down", status=429)
    event = oplog.exception(error, operation="acme_request", entity_type="order", entity_id=1, attempt=2)

    assert events == [event]
    assert event.exception_class == "RateLimitError"
    assert event.message == "slow down"
    assert event.http_status_code == 429
    assert event.entity_id == "1"
    assert event.context == {"attempt": 2}


@pytest.mark.asyncio
async def test_measure(oplog, events):
    async with oplog.measure("order_create", "Created order", entity_type="order") as context:
        context["order_url"] = "https://acme.test/order/1"

    (event,) = events
    assert isinstance(event, OperationEvent)
    assert event.context == {"order_url": "https://acme.test/order/1"}
    assert event.duration_ms >= 0


@pytest.mark.asyncio
async def test_measure_failure(oplog, events):
    with pytest.raises(ValueError):
        async with oplog.measure("order_create", "Created order", entity_type="order", entity_id="abc"):
            raise ValueError("boom")

    (event,) = events
    assert isinstance(event, ExceptionEvent)
    assert event.operation == "order_create"
    assert event.entity_type == "order"
    assert event.entity_id == "abc"
    assert "ValueError: boom" in event.stack_trace
    assert "duration_ms" in event.context


def test_structured_formatter():
    try:
        raise ValueError("boom")
    except ValueError:
        record = logging.getLogger("test").makeRecord(
            "test",
            logging.ERROR,
            __file__,
            1,
            "Failed %s",
            ("request",),
            exc_info=sys.exc_info(),
            extra={"operation": "acme_request", "http_status_code": 500, "entity_id": None},
        )

    line = json.loads(StructuredFormatter().format(record))

    assert line["message"] == "Failed request"
    assert line["level"] == "ERROR"
    assert line["operation"] == "acme_request"
    assert line["http_status_code"] == 500
    assert "entity_id" not in line
    assert "ValueError: boom" in line["exception"]
