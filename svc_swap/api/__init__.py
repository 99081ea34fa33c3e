from __future__ import annotations

from fastapi import APIRouter

from .health import router as health_router
from .routes.admin_brands import router as admin_brands_router
from .routes.admin_templates import router as admin_templates_router
from .routes.credits import router as credits_router
from .routes.face_swap import router as face_swap_router
from .routes.gallery import router as gallery_router
from .routes.screener_questions import router as screener_questions_router
from .routes.templates import router as templates_router
from .routes.user_profile import router as user_profile_router


def build_router() -> APIRouter:
    router = APIRouter()
    router.include_router(health_router, prefix="/api/health", tags=["health"])
    router.include_router(face_swap_router, prefix="/api/face-swap", tags=["face-swap"])
    router.include_router(templates_router, prefix="/api/templates", tags=["templates"])
    router.include_router(screener_questions_router, prefix="/api/screener-questions", tags=["screener"])
    router.include_router(user_profile_router, prefix="/api/user", tags=["user"])
    router.include_router(credits_router, prefix="/api", tags=["credits"])
    router.include_router(gallery_router, prefix="/api/gallery", tags=["gallery"])
    router.include_router(admin_templates_router, prefix="/api/admin", tags=["admin-templates"])
    router.include_router(admin_brands_router, prefix="/api/admin", tags=["admin-brands"])
    return router
