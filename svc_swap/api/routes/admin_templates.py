from __future__ import annotations

import logging
from typing import Any, Dict, List

import asyncpg
from fastapi import APIRouter, Depends, HTTPException, Request

from svc_swap.api.deps import AuthUser, get_storage, get_template_analyzer, require_admin
from svc_swap.api.errors import bad_request, http_error, not_found
from svc_swap.db import get_pool
from svc_swap.domain.errors import RateLimitExceededError
from svc_swap.domain.models import (
    AnalyzeTemplateRequest,
    Template,
    TemplateCreateRequest,
    TemplateSlot,
    TemplateUpdateRequest,
)
from svc_swap.repos.templates_repo import TemplatesRepo
from svc_swap.services import rate_limiter as rl
from svc_swap.services.azure_storage_service import AzureStorageService
from svc_swap.services.image_io import ImageFetchError
from svc_swap.services.template_analyzer import TemplateAnalysisError, TemplateAnalyzer
from svc_swap.services.template_catalog import sign_template_images

router = APIRouter()

logger = logging.getLogger("api.admin_templates")


def _upload_failed(e: Exception) -> HTTPException:
    return HTTPException(
        status_code=500,
        detail={"success": False, "error": f"Template image upload failed: {e}", "code": "UPLOAD_FAILED"},
    )


async def _check_upload_rate(request: Request, admin: AuthUser) -> None:
    result = await rl.rate_limiter.check(rl.IMAGE_UPLOAD, rl.get_rate_limit_identifier(request.headers, admin.user_id))
    if not result.allowed:
        raise http_error(RateLimitExceededError(result))


def _slots_payload(slots: List[TemplateSlot]) -> List[Dict[str, Any]]:
    return [s.model_dump(by_alias=True, mode="json", exclude_none=True) for s in slots]


def _template(row: Dict[str, Any], storage: AzureStorageService) -> Dict[str, Any]:
    template = sign_template_images(Template.model_validate(row), storage.sign_read_url)
    return template.model_dump(by_alias=True, mode="json")


@router.get("/templates")
async def list_all_templates(
    admin: AuthUser = Depends(require_admin),
    storage: AzureStorageService = Depends(get_storage),
    pool: asyncpg.Pool = Depends(get_pool),
) -> Dict[str, Any]:
    rows = await TemplatesRepo(pool).list_all()
    return {"templates": [_template(r, storage) for r in rows]}


@router.post("/templates")
async def create_template(
    body: TemplateCreateRequest,
    request: Request,
    admin: AuthUser = Depends(require_admin),
    storage: AzureStorageService = Depends(get_storage),
    pool: asyncpg.Pool = Depends(get_pool),
) -> Dict[str, Any]:
    await _check_upload_rate(request, admin)

    repo = TemplatesRepo(pool)
    template_id = await repo.new_id()

    try:
        image_url = await storage.upload_template_image(template_id, body.image_data)
        variant_urls = [
            await storage.upload_template_image(template_id, img, variant=i)
            for i, img in enumerate(body.variant_image_data)
        ]
    except Exception as e:
        logger.exception("template_image_upload_failed", extra={"template_id": template_id})
        raise _upload_failed(e)

    fields: Dict[str, Any] = {
        "title": body.title,
        "description": body.description,
        "image_url": image_url,
        "variant_image_urls": variant_urls,
        "prompt": body.prompt,
        "categories": body.categories,
        "metadata": body.metadata.model_dump(by_alias=True, mode="json", exclude_none=True),
        "is_active": body.is_active,
        "is_premium": body.is_premium,
        "website_url": body.website_url,
        "face_count": max(1, len(body.slots)),
        "slots": _slots_payload(body.slots),
    }
    row = await repo.create(template_id, fields, created_by=admin.user_id)
    logger.info("template_created", extra={"template_id": template_id, "title": body.title, "admin": admin.user_id})
    return {"success": True, "templateId": template_id, "template": _template(row, storage)}


@router.put("/templates/{template_id}")
async def update_template(
    template_id: str,
    body: TemplateUpdateRequest,
    admin: AuthUser = Depends(require_admin),
    storage: AzureStorageService = Depends(get_storage),
    pool: asyncpg.Pool = Depends(get_pool),
) -> Dict[str, Any]:
    repo = TemplatesRepo(pool)
    if (await repo.get(template_id)) is None:
        raise not_found("Template not found")

    fields: Dict[str, Any] = {}
    provided = body.model_dump(exclude_unset=True)
    for name in ("title", "description", "prompt", "categories", "is_active", "is_premium", "website_url"):
        if name in provided:
            fields[name] = provided[name]
    if body.metadata is not None:
        fields["metadata"] = body.metadata.model_dump(by_alias=True, mode="json", exclude_none=True)
    if body.slots is not None:
        fields["slots"] = _slots_payload(body.slots)
        fields["face_count"] = max(1, len(body.slots))

    if body.image_data:
        try:
            fields["image_url"] = await storage.upload_template_image(template_id, body.image_data)
        except Exception as e:
            logger.exception("template_image_upload_failed", extra={"template_id": template_id})
            raise _upload_failed(e)

    row = await repo.update(template_id, fields)
    if not row:
        raise not_found("Template not found")
    logger.info("template_updated", extra={"template_id": template_id, "fields": sorted(fields)})
    return {"success": True, "templateId": template_id, "template": _template(row, storage)}


@router.delete("/templates/{template_id}")
async def delete_template(
    template_id: str,
    admin: AuthUser = Depends(require_admin),
    storage: AzureStorageService = Depends(get_storage),
    pool: asyncpg.Pool = Depends(get_pool),
) -> Dict[str, Any]:
    repo = TemplatesRepo(pool)
    if (await repo.get(template_id)) is None:
        raise not_found("Template not found")

    if storage.configured:
        await storage.delete_template_images(template_id)
    await repo.delete(template_id)
    logger.info("template_deleted", extra={"template_id": template_id, "admin": admin.user_id})
    return {"success": True, "templateId": template_id}


@router.post("/analyze-template")
async def analyze_template(
    body: AnalyzeTemplateRequest,
    request: Request,
    admin: AuthUser = Depends(require_admin),
    analyzer: TemplateAnalyzer = Depends(get_template_analyzer),
) -> Dict[str, Any]:
    await _check_upload_rate(request, admin)
    try:
        analysis = await analyzer.analyze(body.image_data)
    except ImageFetchError as e:
        raise bad_request(f"Could not load image: {e}", code="IMAGE_FETCH_FAILED")
    except TemplateAnalysisError as e:
        raise HTTPException(
            status_code=500,
            detail={"success": False, "error": str(e), "code": "ANALYSIS_FAILED"},
        )
    return {"success": True, "analysis": analysis}
