from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import asyncpg
from fastapi import APIRouter, Depends

from svc_swap.api.deps import AuthUser, get_current_user
from svc_swap.api.errors import bad_request, not_found
from svc_swap.db import get_pool
from svc_swap.domain.enums import FavoriteAction
from svc_swap.domain.models import (
    PreferencesRequest,
    ProfileActivityRequest,
    ScreenerAnswersRequest,
    UserProfile,
)
from svc_swap.repos.screener_questions_repo import ScreenerQuestionsRepo
from svc_swap.repos.user_profiles_repo import UserProfilesRepo

router = APIRouter()

logger = logging.getLogger("api.user_profile")

# last segment of a dotted answer key -> profile column
ANSWER_KEY_PREFERENCES = {
    "bodyType": "preferred_body_type",
    "occasions": "preferred_occasions",
    "mood": "preferred_mood",
    "stylePreference": "preferred_style",
}

# screener question category -> profile column
QUESTION_CATEGORY_PREFERENCES = {
    "preferences": "preferred_body_type",
    "occasions": "preferred_occasions",
    "mood": "preferred_mood",
    "style": "preferred_style",
}


def preferences_from_answers(
    answers: Dict[str, List[str]],
    categories_by_id: Optional[Dict[str, Optional[str]]] = None,
) -> Dict[str, List[str]]:
    """
    Answers keyed by question id map through that question's category;
    dotted keys ("survey.screener.questions.bodyType") map by their last
    segment. Anything else only counts as answered.
    """
    categories_by_id = categories_by_id or {}
    out: Dict[str, List[str]] = {}
    for key, selected in answers.items():
        column = QUESTION_CATEGORY_PREFERENCES.get(categories_by_id.get(key) or "")
        if column is None:
            column = ANSWER_KEY_PREFERENCES.get(key.split(".")[-1])
        if not column or not selected:
            continue
        bucket = out.setdefault(column, [])
        for value in selected:
            if value not in bucket:
                bucket.append(value)
    return out


@router.get("/profile")
async def get_profile(
    user: AuthUser = Depends(get_current_user),
    pool: asyncpg.Pool = Depends(get_pool),
) -> Dict[str, Any]:
    row = await UserProfilesRepo(pool).get_profile(user.user_id)
    if not row:
        return {"profile": None, "message": "Profile not found"}
    return {"profile": UserProfile.model_validate(row).model_dump(by_alias=True, mode="json")}


@router.post("/profile")
async def save_preferences(
    body: PreferencesRequest,
    user: AuthUser = Depends(get_current_user),
    pool: asyncpg.Pool = Depends(get_pool),
) -> Dict[str, Any]:
    prefs = body.provided()
    if not prefs:
        raise bad_request("At least one preference is required")

    repo = UserProfilesRepo(pool)
    is_first_time = (await repo.get_profile(user.user_id)) is None
    await repo.upsert_preferences(user.user_id, prefs)
    logger.info("profile_preferences_saved", extra={"user_id": user.user_id, "fields": sorted(prefs)})

    resp: Dict[str, Any] = {"success": True, "message": "Profile saved"}
    if is_first_time:
        resp["isFirstTime"] = True
    return resp


@router.patch("/profile")
async def track_activity(
    body: ProfileActivityRequest,
    user: AuthUser = Depends(get_current_user),
    pool: asyncpg.Pool = Depends(get_pool),
) -> Dict[str, Any]:
    repo = UserProfilesRepo(pool)
    if (await repo.get_profile(user.user_id)) is None:
        raise not_found("Profile not found. Create the profile first.")

    if body.viewed_template_id:
        await repo.add_viewed_template(user.user_id, body.viewed_template_id)
    if body.used_template_id:
        await repo.append_used_template(user.user_id, body.used_template_id)
    if body.favorite_template_id:
        if body.action == FavoriteAction.remove:
            await repo.remove_favorite(user.user_id, body.favorite_template_id)
        else:
            await repo.add_favorite(user.user_id, body.favorite_template_id)

    return {"success": True, "message": "Profile updated"}


@router.post("/screener-answers")
async def save_screener_answers(
    body: ScreenerAnswersRequest,
    user: AuthUser = Depends(get_current_user),
    pool: asyncpg.Pool = Depends(get_pool),
) -> Dict[str, Any]:
    question_ids = list(body.answers.keys())
    categories = await ScreenerQuestionsRepo(pool).categories_by_id(question_ids)
    prefs = preferences_from_answers(body.answers, categories)
    await UserProfilesRepo(pool).record_screener_answers(user.user_id, question_ids, prefs)
    logger.info(
        "screener_answers_saved",
        extra={"user_id": user.user_id, "answered": len(question_ids), "preferences": sorted(prefs)},
    )
    return {"success": True, "answeredCount": len(question_ids)}
