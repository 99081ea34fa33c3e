from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import asyncpg
from fastapi import APIRouter, Depends, Query

from svc_swap.api.deps import AuthUser, get_optional_user, require_admin
from svc_swap.api.errors import not_found
from svc_swap.db import get_pool
from svc_swap.domain.models import (
    ScreenerQuestion,
    ScreenerQuestionPatch,
    ScreenerQuestionsPage,
    ScreenerQuestionWrite,
)
from svc_swap.repos.screener_questions_repo import ScreenerQuestionsRepo
from svc_swap.repos.user_profiles_repo import UserProfilesRepo

router = APIRouter()

logger = logging.getLogger("api.screener_questions")


def select_questions(
    questions: List[ScreenerQuestion],
    answered: List[str],
    *,
    limit: int,
    include_answered: bool = False,
) -> ScreenerQuestionsPage:
    """Active, unanswered questions in order, first `limit` of them. include_answered returns everything."""
    pending = questions
    if not include_answered:
        done = set(answered)
        pending = [q for q in questions if q.is_active and q.id not in done]

    return ScreenerQuestionsPage(
        questions=pending[:limit],
        total_available=len(pending),
        answered_count=len(answered),
        has_more=len(pending) > limit,
    )


def _write_fields(body: ScreenerQuestionWrite) -> Dict[str, Any]:
    fields = body.model_dump()
    fields["translations"] = {
        lang: tr.model_dump(by_alias=True) for lang, tr in body.translations.items()
    }
    return fields


def _question(row: Dict[str, Any]) -> Dict[str, Any]:
    return ScreenerQuestion.model_validate(row).model_dump(by_alias=True, mode="json")


@router.get("", response_model=ScreenerQuestionsPage, response_model_by_alias=True)
async def list_screener_questions(
    limit: int = Query(3, ge=1, le=100),
    include_answered: bool = Query(False, alias="includeAnswered"),
    user: Optional[AuthUser] = Depends(get_optional_user),
    pool: asyncpg.Pool = Depends(get_pool),
) -> ScreenerQuestionsPage:
    answered: List[str] = []
    if user is not None:
        profile = await UserProfilesRepo(pool).get_profile(user.user_id)
        if profile:
            answered = list(profile.get("answered_questions") or [])

    # the unfiltered list is an admin view
    include_all = include_answered and user is not None and user.is_admin

    rows = await ScreenerQuestionsRepo(pool).list_ordered()
    questions = [ScreenerQuestion.model_validate(r) for r in rows]
    return select_questions(questions, answered, limit=limit, include_answered=include_all)


@router.post("")
async def create_screener_question(
    body: ScreenerQuestionWrite,
    admin: AuthUser = Depends(require_admin),
    pool: asyncpg.Pool = Depends(get_pool),
) -> Dict[str, Any]:
    row = await ScreenerQuestionsRepo(pool).create(_write_fields(body), created_by=admin.user_id)
    logger.info("screener_question_created", extra={"question_id": row.get("id"), "admin": admin.user_id})
    return {"success": True, "questionId": row.get("id"), "question": _question(row)}


@router.put("/{question_id}")
async def replace_screener_question(
    question_id: str,
    body: ScreenerQuestionWrite,
    admin: AuthUser = Depends(require_admin),
    pool: asyncpg.Pool = Depends(get_pool),
) -> Dict[str, Any]:
    row = await ScreenerQuestionsRepo(pool).replace(question_id, _write_fields(body))
    if not row:
        raise not_found("Question not found")
    logger.info("screener_question_updated", extra={"question_id": question_id, "admin": admin.user_id})
    return {"success": True, "questionId": question_id, "question": _question(row)}


@router.patch("/{question_id}")
async def patch_screener_question(
    question_id: str,
    body: ScreenerQuestionPatch,
    admin: AuthUser = Depends(require_admin),
    pool: asyncpg.Pool = Depends(get_pool),
) -> Dict[str, Any]:
    row = await ScreenerQuestionsRepo(pool).patch(question_id, is_active=body.is_active, order=body.order)
    if not row:
        raise not_found("Question not found")
    return {"success": True, "questionId": question_id, "question": _question(row)}


@router.delete("/{question_id}")
async def delete_screener_question(
    question_id: str,
    admin: AuthUser = Depends(require_admin),
    pool: asyncpg.Pool = Depends(get_pool),
) -> Dict[str, Any]:
    deleted = await ScreenerQuestionsRepo(pool).delete(question_id)
    if not deleted:
        raise not_found("Question not found")
    logger.info("screener_question_deleted", extra={"question_id": question_id, "admin": admin.user_id})
    return {"success": True, "questionId": question_id}
