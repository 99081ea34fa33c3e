from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from svc_swap.logging import request_id_var

logger = logging.getLogger("api.access")

REQUEST_ID_HEADER = "X-Request-Id"


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tags the request (and every log line written while serving it) with a request id."""

    async def dispatch(self, request: Request, call_next):
        rid = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = rid
        token = request_id_var.set(rid)
        started = time.perf_counter()
        try:
            resp = await call_next(request)
        finally:
            request_id_var.reset(token)

        resp.headers[REQUEST_ID_HEADER] = rid
        logger.info(
            "request_completed",
            extra={
                "request_id": rid,
                "method": request.method,
                "path": request.url.path,
                "status_code": resp.status_code,
                "duration_ms": round((time.perf_counter() - started) * 1000, 1),
            },
        )
        return resp
