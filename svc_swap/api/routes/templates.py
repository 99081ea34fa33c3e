from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import asyncpg
from fastapi import APIRouter, Depends, Query, Request

from svc_swap.api.deps import AuthUser, get_optional_user, get_storage
from svc_swap.api.errors import http_error
from svc_swap.config import settings
from svc_swap.db import get_pool
from svc_swap.domain.enums import RecommendationMode
from svc_swap.domain.errors import RateLimitExceededError
from svc_swap.domain.models import UserProfile
from svc_swap.repos.brand_configs_repo import BrandConfigsRepo
from svc_swap.repos.templates_repo import TemplatesRepo
from svc_swap.repos.user_profiles_repo import UserProfilesRepo
from svc_swap.services import rate_limiter as rl
from svc_swap.services.azure_storage_service import AzureStorageService
from svc_swap.services.template_catalog import (
    filter_by_domain,
    list_templates,
    sign_template_images,
    template_from_row,
)

router = APIRouter()

logger = logging.getLogger("api.templates")


@router.get("")
async def get_templates(
    request: Request,
    mode: RecommendationMode = Query(RecommendationMode.all),
    occasion: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    brand_name: Optional[str] = Query(None, alias="brandName"),
    user: Optional[AuthUser] = Depends(get_optional_user),
    storage: AzureStorageService = Depends(get_storage),
    pool: asyncpg.Pool = Depends(get_pool),
) -> Dict[str, Any]:
    limited = await rl.rate_limiter.check(
        rl.API_GENERAL,
        rl.get_rate_limit_identifier(request.headers, user.user_id if user else None),
    )
    if not limited.allowed:
        raise http_error(RateLimitExceededError(limited))

    domain: Optional[str] = None
    brand = brand_name or settings.DEFAULT_BRAND_NAME
    if brand:
        row = await BrandConfigsRepo(pool).find_active_by_name(brand)
        if row:
            domain = row.get("domain")
        else:
            logger.info("brand_not_found", extra={"brand_name": brand})

    rows = await TemplatesRepo(pool).list_active()
    templates = [
        sign_template_images(t, storage.sign_read_url)
        for t in filter_by_domain([template_from_row(r) for r in rows], domain)
    ]

    profile: Optional[UserProfile] = None
    if mode == RecommendationMode.recommended and user is not None:
        profile_row = await UserProfilesRepo(pool).get_profile(user.user_id)
        if profile_row:
            profile = UserProfile.model_validate(profile_row)

    return list_templates(
        templates,
        mode=mode,
        occasion=occasion,
        search=search,
        limit=limit,
        profile=profile,
        authenticated=user is not None,
    )
