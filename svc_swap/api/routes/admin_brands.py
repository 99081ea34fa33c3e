from __future__ import annotations

import logging
from typing import Any, Dict

import asyncpg
from fastapi import APIRouter, Depends, HTTPException

from svc_swap.api.deps import AuthUser, get_storage, require_admin
from svc_swap.api.errors import bad_request, not_found
from svc_swap.db import get_pool
from svc_swap.domain.models import BrandConfig, BrandConfigWrite
from svc_swap.repos.brand_configs_repo import BrandConfigsRepo
from svc_swap.services.azure_storage_service import AzureStorageService

router = APIRouter()

logger = logging.getLogger("api.admin_brands")


def _brand(row: Dict[str, Any], storage: AzureStorageService) -> Dict[str, Any]:
    brand = BrandConfig.model_validate(row)
    brand.logo = storage.sign_read_url(brand.logo)
    brand.favicon = storage.sign_read_url(brand.favicon)
    return brand.model_dump(by_alias=True, mode="json")


def _domain_taken(domain: str) -> HTTPException:
    return HTTPException(
        status_code=409,
        detail={"success": False, "error": f"Brand configuration already exists for {domain}", "code": "DOMAIN_EXISTS"},
    )


async def _store_logo(storage: AzureStorageService, key: str, body: BrandConfigWrite) -> Dict[str, Any]:
    fields = body.model_dump(exclude={"logo_data"})
    if body.logo_data:
        try:
            fields["logo"] = await storage.upload_brand_asset(key, "logo", body.logo_data)
        except Exception as e:
            logger.exception("brand_logo_upload_failed", extra={"brand": key})
            raise HTTPException(
                status_code=500,
                detail={"success": False, "error": f"Logo upload failed: {e}", "code": "UPLOAD_FAILED"},
            )
    return fields


@router.get("/brands")
async def list_brands(
    admin: AuthUser = Depends(require_admin),
    storage: AzureStorageService = Depends(get_storage),
    pool: asyncpg.Pool = Depends(get_pool),
) -> Dict[str, Any]:
    rows = await BrandConfigsRepo(pool).list_all()
    return {"brands": [_brand(r, storage) for r in rows]}


@router.post("/brands")
async def create_brand(
    body: BrandConfigWrite,
    admin: AuthUser = Depends(require_admin),
    storage: AzureStorageService = Depends(get_storage),
    pool: asyncpg.Pool = Depends(get_pool),
) -> Dict[str, Any]:
    if not body.logo and not body.logo_data:
        raise bad_request("Missing required fields: domain, name, logoData")

    repo = BrandConfigsRepo(pool)
    if await repo.find_by_domain(body.domain):
        raise _domain_taken(body.domain)

    fields = await _store_logo(storage, body.domain.replace(".", "-"), body)
    try:
        row = await repo.create(fields)
    except asyncpg.UniqueViolationError:
        raise _domain_taken(body.domain)

    logger.info("brand_created", extra={"brand_id": row.get("id"), "domain": body.domain, "admin": admin.user_id})
    return {"success": True, "brandId": row.get("id"), "brand": _brand(row, storage)}


@router.put("/brands/{brand_id}")
async def update_brand(
    brand_id: str,
    body: BrandConfigWrite,
    admin: AuthUser = Depends(require_admin),
    storage: AzureStorageService = Depends(get_storage),
    pool: asyncpg.Pool = Depends(get_pool),
) -> Dict[str, Any]:
    repo = BrandConfigsRepo(pool)
    existing = await repo.find_by_domain(body.domain)
    if existing and existing.get("id") != brand_id:
        raise _domain_taken(body.domain)

    fields = await _store_logo(storage, body.domain.replace(".", "-"), body)
    row = await repo.update(brand_id, fields)
    if not row:
        raise not_found("Brand not found")

    logger.info("brand_updated", extra={"brand_id": brand_id, "admin": admin.user_id})
    return {"success": True, "brandId": brand_id, "brand": _brand(row, storage)}


@router.delete("/brands/{brand_id}")
async def delete_brand(
    brand_id: str,
    admin: AuthUser = Depends(require_admin),
    pool: asyncpg.Pool = Depends(get_pool),
) -> Dict[str, Any]:
    if not await BrandConfigsRepo(pool).delete(brand_id):
        raise not_found("Brand not found")
    logger.info("brand_deleted", extra={"brand_id": brand_id, "admin": admin.user_id})
    return {"success": True, "brandId": brand_id}
