from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from svc_swap.domain.errors import RateLimitExceededError, SwapError

logger = logging.getLogger(__name__)


def http_error(e: SwapError) -> HTTPException:
    """Domain error -> HTTPException with the stable {success, error, code} detail."""
    headers = None
    if isinstance(e, RateLimitExceededError):
        headers = e.result.headers()
    return HTTPException(status_code=e.status_code, detail=e.to_detail(), headers=headers)


def bad_request(message: str, code: str = "INVALID_REQUEST") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"success": False, "error": message, "code": code},
    )


def not_found(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={"success": False, "error": message, "code": "NOT_FOUND"},
    )


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = first.get("msg") or "invalid request"
    logger.info("request_validation_failed", extra={"path": request.url.path, "errors": len(errors)})
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": {
                "success": False,
                "error": f"{where}: {message}" if where else message,
                "code": "INVALID_REQUEST",
                "errors": [{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in errors],
            }
        },
    )


def install_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
