from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import asyncpg
from fastapi import APIRouter, Depends, HTTPException, Query, Request

from svc_swap.api.deps import AuthUser, get_current_user, get_optional_user, get_storage
from svc_swap.api.errors import bad_request, http_error, not_found
from svc_swap.db import get_pool
from svc_swap.domain.enums import FaceSwapStatus, GallerySort, LikeAction
from svc_swap.domain.errors import RateLimitExceededError
from svc_swap.domain.models import GalleryItem, LikeRequest, PublishRequest
from svc_swap.repos.face_swaps_repo import FaceSwapsRepo
from svc_swap.repos.gallery_repo import GalleryRepo
from svc_swap.services import gallery
from svc_swap.services import rate_limiter as rl
from svc_swap.services.azure_storage_service import AzureStorageService

router = APIRouter()

logger = logging.getLogger("api.gallery")


@router.post("/publish")
async def publish(
    body: PublishRequest,
    user: AuthUser = Depends(get_current_user),
    pool: asyncpg.Pool = Depends(get_pool),
) -> Dict[str, Any]:
    face_swap_id = str(body.face_swap_id)
    swap = await FaceSwapsRepo(pool).get(face_swap_id)
    if not swap:
        raise not_found("Face swap not found")
    if swap.get("user_id") != user.user_id:
        raise HTTPException(
            status_code=403,
            detail={"success": False, "error": "Not authorized", "code": "FORBIDDEN"},
        )

    repo = GalleryRepo(pool)
    if not body.is_public:
        await repo.unpublish(face_swap_id)
        logger.info("gallery_unpublished", extra={"face_swap_id": face_swap_id, "user_id": user.user_id})
        return {"success": True, "message": "Unpublished from gallery"}

    if swap.get("status") != FaceSwapStatus.completed.value or not swap.get("result_image_url"):
        raise bad_request("Only completed face swaps with a stored image can be published", code="NOT_PUBLISHABLE")

    item_id = await repo.publish(
        face_swap=swap,
        display_name=(body.display_name or "").strip() or gallery.DEFAULT_DISPLAY_NAME,
        caption=body.caption or None,
    )
    logger.info("gallery_published", extra={"face_swap_id": face_swap_id, "gallery_item_id": item_id})
    return {"success": True, "galleryItemId": item_id, "message": "Published to gallery"}


@router.get("/public")
async def list_public(
    sort_by: GallerySort = Query(GallerySort.recent, alias="sortBy"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    style: Optional[str] = Query(None),
    template_title: Optional[str] = Query(None, alias="templateTitle"),
    storage: AzureStorageService = Depends(get_storage),
    pool: asyncpg.Pool = Depends(get_pool),
) -> Dict[str, Any]:
    rows = await GalleryRepo(pool).list_public(
        style=style,
        template_title=template_title,
        featured_only=sort_by == GallerySort.featured,
        max_rows=gallery.CANDIDATE_LIMIT,
    )
    items = [GalleryItem.model_validate(r) for r in rows]
    return gallery.page(items, storage.sign_read_url, sort_by=sort_by, limit=limit, offset=offset)


@router.post("/like")
async def like(
    body: LikeRequest,
    request: Request,
    user: Optional[AuthUser] = Depends(get_optional_user),
    pool: asyncpg.Pool = Depends(get_pool),
) -> Dict[str, Any]:
    user_id = user.user_id if user else None
    limited = await rl.rate_limiter.check(rl.GALLERY_LIKE, rl.get_rate_limit_identifier(request.headers, user_id))
    if not limited.allowed:
        raise http_error(RateLimitExceededError(limited, "Too many likes. Please try again later."))

    # anonymous likes count once per client IP
    liker = user_id or f"ip:{rl.get_client_ip(request.headers)}"
    item_id = str(body.gallery_item_id)
    repo = GalleryRepo(pool)

    if body.action == LikeAction.like:
        changed = await repo.like(item_id, liker)
    else:
        changed = await repo.unlike(item_id, liker)
    if not changed and not await repo.exists(item_id):
        raise not_found("Gallery item not found")

    return {"success": True, "action": body.action.value, "changed": changed}
