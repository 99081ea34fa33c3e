from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from svc_swap.domain.enums import RecommendationMode
from svc_swap.domain.models import Template, UserProfile
from svc_swap.services import recommendation_engine as engine

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "trending"

# stored blob ref -> readable url
Signer = Callable[[Optional[str]], Optional[str]]

# occasions that double as browse categories
OCCASION_CATEGORIES = ("new-year", "birthday", "wedding", "casual", "professional", "date", "party")


def ensure_categories(categories: Sequence[str], occasions: Sequence[str]) -> List[str]:
    """Stored categories win; otherwise "trending" plus any occasion that is also a category."""
    if categories:
        return list(categories)
    out = [DEFAULT_CATEGORY]
    for occasion in occasions:
        if occasion in OCCASION_CATEGORIES and occasion not in out:
            out.append(occasion)
    return out


def template_from_row(row: Dict[str, Any]) -> Template:
    template = Template.model_validate(row)
    template.categories = ensure_categories(template.categories, template.metadata.occasion)
    return template


def sign_template_images(template: Template, sign: Signer) -> Template:
    return template.model_copy(
        update={
            "image_url": sign(template.image_url) or "",
            "variant_image_urls": [sign(u) or u for u in template.variant_image_urls],
            "thumbnail_url": sign(template.thumbnail_url),
        }
    )


def filter_by_domain(templates: Sequence[Template], domain: Optional[str]) -> List[Template]:
    """Brand view: the brand's own templates plus shared ones (no websiteUrl)."""
    if not domain:
        return list(templates)
    return [t for t in templates if not t.website_url or t.website_url == domain]


def _dump(templates: Sequence[Template]) -> List[Dict[str, Any]]:
    return [t.model_dump(by_alias=True, mode="json") for t in templates]


def list_templates(
    templates: Sequence[Template],
    *,
    mode: RecommendationMode = RecommendationMode.all,
    occasion: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = 50,
    profile: Optional[UserProfile] = None,
    authenticated: bool = False,
) -> Dict[str, Any]:
    """
    Listing precedence: search, then occasion, then mode.

    `recommended` needs an authenticated caller (the profile may still be
    missing); anonymous callers get trending instead.
    """
    if search:
        return {"templates": _dump(engine.search_templates(templates, search)[:limit])}

    if occasion:
        return {"templates": _dump(engine.get_templates_by_occasion(templates, occasion)[:limit])}

    if mode == RecommendationMode.trending:
        return {"templates": _dump(engine.get_trending_templates(templates, limit=limit))}

    if mode == RecommendationMode.recommended:
        if not authenticated:
            logger.info("recommendations_without_auth_fallback_trending")
            return {"templates": _dump(engine.get_trending_templates(templates, limit=limit))}

        ranked = engine.recommend_templates(templates, profile, limit=limit)
        return {
            "templates": _dump([r.template for r in ranked]),
            "scores": [
                {
                    "templateId": r.template.id,
                    "score": r.score,
                    "breakdown": r.breakdown.model_dump(by_alias=True),
                }
                for r in ranked
            ],
        }

    by_usage = sorted(templates, key=lambda t: t.usage_count or 0, reverse=True)
    return {"templates": _dump(by_usage[:limit])}
