from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from svc_swap.api.deps import AuthUser, get_face_swap_orchestrator, get_optional_user
from svc_swap.api.errors import http_error
from svc_swap.domain.errors import ProcessingError, SwapError
from svc_swap.domain.models import FaceSwapRequest, FaceSwapResponse
from svc_swap.services.face_swap_orchestrator import FaceSwapOrchestrator
from svc_swap.services.rate_limiter import get_client_ip

router = APIRouter()

logger = logging.getLogger("api.face_swap")

GUEST_TRIAL_HEADER = "X-Guest-Trial"
GUEST_SESSION_HEADER = "X-Guest-Session"


def _is_guest_trial(request: Request, req: FaceSwapRequest) -> bool:
    # both the body flag and the header are required
    return req.is_guest_trial and request.headers.get(GUEST_TRIAL_HEADER, "").strip() == "1"


def _guest_session(request: Request) -> Optional[str]:
    """Client-chosen id echoed back as faceSwapId. Never used for the trial quota."""
    return (request.headers.get(GUEST_SESSION_HEADER) or "").strip() or None


@router.post("/process", response_model=FaceSwapResponse, response_model_by_alias=True)
async def process_face_swap(
    req: FaceSwapRequest,
    request: Request,
    user: Optional[AuthUser] = Depends(get_optional_user),
    orchestrator: FaceSwapOrchestrator = Depends(get_face_swap_orchestrator),
) -> FaceSwapResponse:
    guest = _is_guest_trial(request, req)
    if not guest and user is None:
        raise HTTPException(status_code=401, detail="missing_token")

    try:
        if guest:
            # one trial per client IP, whatever session header the client sends
            outcome = await orchestrator.process_guest(
                req,
                get_client_ip(request.headers),
                session_id=_guest_session(request),
            )
        else:
            outcome = await orchestrator.process_authenticated(req, user.user_id)
    except SwapError as e:
        raise http_error(e)
    except Exception as e:
        logger.exception("face_swap_unhandled_error", extra={"guest": guest, "error": str(e)})
        raise http_error(ProcessingError(reason=type(e).__name__))

    return FaceSwapResponse(
        result_image=outcome.result_image,
        face_swap_id=outcome.face_swap_id,
        credits_remaining=outcome.credits_remaining,
        resized=outcome.resized,
    )
