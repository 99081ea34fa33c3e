import logging

from svc_swap.config import settings
from svc_swap.logging import RequestContextFilter, request_id_var


def _record() -> logging.LogRecord:
    return logging.LogRecord("t", logging.INFO, __file__, 1, "hello", None, None)


def test_filter_stamps_current_request_id():
    token = request_id_var.set("rid-1")
    try:
        record = _record()
        assert RequestContextFilter().filter(record)
    finally:
        request_id_var.reset(token)

    assert record.request_id == "rid-1"
    assert record.service == settings.SERVICE_NAME


def test_filter_keeps_explicit_request_id():
    record = _record()
    record.request_id = "explicit"
    RequestContextFilter().filter(record)
    assert record.request_id == "explicit"


def test_filter_outside_a_request():
    record = _record()
    RequestContextFilter().filter(record)
    assert record.request_id is None
