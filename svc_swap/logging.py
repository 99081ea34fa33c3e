from __future__ import annotations

import logging
import os
from contextvars import ContextVar
from typing import Optional

from pythonjsonlogger import jsonlogger

from svc_swap.config import settings

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


class RequestContextFilter(logging.Filter):
    """Stamps service name and the current request id onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.service = settings.SERVICE_NAME
        if not getattr(record, "request_id", None):
            record.request_id = request_id_var.get()
        return True


def configure_logging() -> None:
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    # uvicorn --reload and repeated create_app() calls
    if any(isinstance(h.formatter, jsonlogger.JsonFormatter) for h in root.handlers):
        return

    handler = logging.StreamHandler()
    handler.setFormatter(
        jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(service)s %(request_id)s %(message)s")
    )
    handler.addFilter(RequestContextFilter())
    root.addHandler(handler)

    for noisy, env in (
        ("httpx", "HTTPX_LOG_LEVEL"),
        ("uvicorn.access", "UVICORN_ACCESS_LOG_LEVEL"),
        ("azure", "AZURE_LOG_LEVEL"),
    ):
        logging.getLogger(noisy).setLevel(os.getenv(env, "WARNING"))
