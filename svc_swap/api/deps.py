from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import asyncpg
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from svc_swap.config import settings
from svc_swap.db import get_pool
from svc_swap.repos.templates_repo import TemplatesRepo
from svc_swap.repos.user_profiles_repo import UserProfilesRepo
from svc_swap.security import decode_access_jwt
from svc_swap.services.azure_storage_service import AzureStorageService
from svc_swap.services.credit_ledger import PostgresCreditLedger
from svc_swap.services.face_swap_orchestrator import FaceSwapOrchestrator
from svc_swap.services.image_reconciler import ImageReconciler
from svc_swap.services.providers.router import FaceSwapProviderRouter
from svc_swap.services.rate_limiter import rate_limiter
from svc_swap.services.template_analyzer import TemplateAnalyzer

bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthUser:
    user_id: str
    email: Optional[str] = None
    roles: List[str] = field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        if "admin" in self.roles:
            return True
        return bool(self.email) and self.email.lower() in settings.admin_emails


def _user_from_claims(claims: Dict[str, Any]) -> AuthUser:
    sub = claims.get("sub")
    if not sub:
        raise HTTPException(status_code=401, detail="missing_sub")
    roles = claims.get("roles") or []
    if isinstance(roles, str):
        roles = [roles]
    return AuthUser(user_id=str(sub), email=claims.get("email"), roles=[str(r) for r in roles])


def get_current_claims(creds: HTTPAuthorizationCredentials = Depends(bearer)) -> dict:
    """Extract and validate JWT claims"""
    if not creds or not creds.credentials:
        raise HTTPException(status_code=401, detail="missing_token")
    try:
        return decode_access_jwt(creds.credentials)
    except Exception:
        raise HTTPException(status_code=401, detail="invalid_token")


def get_current_user(claims: dict = Depends(get_current_claims)) -> AuthUser:
    return _user_from_claims(claims)


def get_optional_user(creds: HTTPAuthorizationCredentials = Depends(bearer)) -> Optional[AuthUser]:
    """Same as get_current_user, but anonymous callers get None instead of a 401."""
    if not creds or not creds.credentials:
        return None
    try:
        claims = decode_access_jwt(creds.credentials)
    except ValueError:
        return None
    if not claims.get("sub"):
        return None
    return _user_from_claims(claims)


def require_admin(user: AuthUser = Depends(get_current_user)) -> AuthUser:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="admin_required")
    return user


# ------------------------------------------------------------------------------
# Process-wide services
# ------------------------------------------------------------------------------

_storage: Optional[AzureStorageService] = None
_orchestrator: Optional[FaceSwapOrchestrator] = None


def get_storage() -> AzureStorageService:
    global _storage
    if _storage is None:
        _storage = AzureStorageService()
    return _storage


def get_template_analyzer() -> TemplateAnalyzer:
    return TemplateAnalyzer()


async def get_face_swap_orchestrator(pool: asyncpg.Pool = Depends(get_pool)) -> FaceSwapOrchestrator:
    """One orchestrator per process so background usage updates outlive the request."""
    global _orchestrator
    if _orchestrator is None:
        storage = get_storage()
        _orchestrator = FaceSwapOrchestrator(
            ledger=PostgresCreditLedger(pool),
            backend=FaceSwapProviderRouter(storage),
            reconciler=ImageReconciler(),
            store=storage,
            usage_counter=TemplatesRepo(pool),
            usage_history=UserProfilesRepo(pool),
            limiter=rate_limiter,
            cost_per_swap=settings.CREDITS_PER_FACE_SWAP,
        )
    return _orchestrator


async def drain_background_work() -> None:
    if _orchestrator is not None:
        await _orchestrator.drain()
