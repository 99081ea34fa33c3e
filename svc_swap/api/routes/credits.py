from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import asyncpg
from fastapi import APIRouter, Depends, Query

from svc_swap.api.deps import AuthUser, get_current_user, get_storage
from svc_swap.config import settings
from svc_swap.db import get_pool
from svc_swap.domain.models import (
    CreditBalance,
    CreditPackage,
    CreditTransaction,
    FaceSwapRecord,
    GuestTransferRequest,
)
from svc_swap.repos.credit_packages_repo import CreditPackagesRepo
from svc_swap.repos.credit_transactions_repo import CreditTransactionsRepo
from svc_swap.repos.face_swaps_repo import FaceSwapsRepo
from svc_swap.repos.users_repo import UsersRepo
from svc_swap.services.azure_storage_service import AzureStorageService
from svc_swap.services.face_swap_orchestrator import DEFAULT_STYLE

router = APIRouter()

logger = logging.getLogger("api.credits")


def _page(key: str, items: List[Dict[str, Any]], rows: List[Dict[str, Any]], limit: int) -> Dict[str, Any]:
    # a full page means there may be more; the cursor is the last row id
    return {
        "success": True,
        key: items,
        "hasMore": len(rows) == limit,
        "nextCursor": rows[-1]["id"] if rows else None,
    }


@router.get("/credits/balance", response_model=CreditBalance, response_model_by_alias=True)
async def get_balance(
    user: AuthUser = Depends(get_current_user),
    pool: asyncpg.Pool = Depends(get_pool),
) -> CreditBalance:
    """First call for a user creates the account with the welcome credits."""
    row = await UsersRepo(pool).ensure_user_with_welcome_credits(
        user.user_id,
        user.email,
        settings.WELCOME_CREDITS,
        CreditTransactionsRepo(pool),
    )
    return CreditBalance(credits=int(row.get("credits") or 0), user_id=user.user_id)


@router.get("/credits/packages")
async def list_packages(pool: asyncpg.Pool = Depends(get_pool)) -> Dict[str, Any]:
    rows = await CreditPackagesRepo(pool).list_active()
    return {"packages": [CreditPackage.model_validate(r).model_dump(by_alias=True) for r in rows]}


@router.get("/transactions")
async def list_transactions(
    limit: int = Query(50, ge=1, le=200),
    start_after: Optional[str] = Query(None, alias="startAfter"),
    user: AuthUser = Depends(get_current_user),
    pool: asyncpg.Pool = Depends(get_pool),
) -> Dict[str, Any]:
    rows = await CreditTransactionsRepo(pool).list_for_user(user.user_id, limit=limit, start_after=start_after)
    items = [CreditTransaction.model_validate(r).model_dump(by_alias=True, mode="json") for r in rows]
    return _page("transactions", items, rows, limit)


@router.get("/history")
async def list_history(
    limit: int = Query(20, ge=1, le=100),
    start_after: Optional[str] = Query(None, alias="startAfter"),
    user: AuthUser = Depends(get_current_user),
    storage: AzureStorageService = Depends(get_storage),
    pool: asyncpg.Pool = Depends(get_pool),
) -> Dict[str, Any]:
    rows = await FaceSwapsRepo(pool).list_completed_for_user(user.user_id, limit=limit, start_after=start_after)
    items = []
    for r in rows:
        rec = FaceSwapRecord.model_validate(r)
        items.append(
            {
                "faceSwapId": rec.id,
                "resultImageUrl": storage.sign_read_url(rec.result_image_url),
                "style": rec.style,
                "templateId": rec.template_id,
                "templateTitle": rec.template_title,
                "isGuestTransfer": rec.is_guest_transfer,
                "createdAt": rec.created_at.isoformat() if rec.created_at else None,
                "completedAt": rec.completed_at.isoformat() if rec.completed_at else None,
            }
        )
    return _page("history", items, rows, limit)


@router.post("/history/transfer-guest")
async def transfer_guest_swap(
    body: GuestTransferRequest,
    user: AuthUser = Depends(get_current_user),
    storage: AzureStorageService = Depends(get_storage),
    pool: asyncpg.Pool = Depends(get_pool),
) -> Dict[str, Any]:
    """Adopt the guest trial result into the caller's history. No credits move."""
    repo = FaceSwapsRepo(pool)
    face_swap_id = await repo.new_id()

    result_ref: Optional[str] = None
    if storage.configured:
        try:
            result_ref = await storage.upload_face_swap_result(body.result_image, user.user_id, face_swap_id)
        except Exception:
            # the record is still created; it just has no stored image
            logger.exception("guest_transfer_upload_failed", extra={"user_id": user.user_id, "face_swap_id": face_swap_id})

    await repo.insert_transferred(
        face_swap_id,
        user_id=user.user_id,
        style=body.style or DEFAULT_STYLE,
        template_title=body.template_title,
        result_image_url=result_ref,
        created_at=body.created_at,
    )
    logger.info("guest_face_swap_transferred", extra={"user_id": user.user_id, "face_swap_id": face_swap_id})
    return {"success": True, "faceSwapId": face_swap_id, "message": "Guest face swap transferred successfully"}
