from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from svc_swap.domain.enums import GallerySort
from svc_swap.domain.models import GalleryItem
from svc_swap.services.template_catalog import Signer

DEFAULT_DISPLAY_NAME = "Anonymous"

# newest public items considered for one listing
CANDIDATE_LIMIT = 500


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def trending_score(item: GalleryItem, now: datetime) -> float:
    """
    likes * 2 + views + recency bonus. The bonus starts at 100 and loses two
    points per hour since publishing, never going below zero.
    """
    hours = (_aware(now) - _aware(item.published_at)).total_seconds() / 3600
    return item.likes * 2 + item.views + max(0.0, 100 - hours * 2)


def sort_gallery(items: Sequence[GalleryItem], sort_by: GallerySort, now: Optional[datetime] = None) -> List[GalleryItem]:
    recent = sorted(items, key=lambda i: _aware(i.published_at), reverse=True)
    if sort_by == GallerySort.popular:
        return sorted(recent, key=lambda i: i.likes, reverse=True)
    if sort_by == GallerySort.featured:
        return [i for i in recent if i.is_featured]
    if sort_by == GallerySort.trending:
        now = now or datetime.now(timezone.utc)
        return sorted(recent, key=lambda i: trending_score(i, now), reverse=True)
    return recent


def public_view(item: GalleryItem, sign: Signer) -> Dict[str, Any]:
    """Owner id, face swap id and likers stay private."""
    return {
        "id": item.id,
        "imageUrl": sign(item.image_url) or "",
        "thumbnailUrl": sign(item.thumbnail_url),
        "templateTitle": item.template_title,
        "style": item.style,
        "displayName": item.display_name or DEFAULT_DISPLAY_NAME,
        "caption": item.caption,
        "likes": item.likes,
        "views": item.views,
        "isFeatured": item.is_featured,
        "publishedAt": _aware(item.published_at).isoformat(),
    }


def page(
    items: Sequence[GalleryItem],
    sign: Signer,
    *,
    sort_by: GallerySort = GallerySort.recent,
    limit: int = 20,
    offset: int = 0,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    ordered = sort_gallery(items, sort_by, now)
    chunk = ordered[offset:offset + limit]
    return {
        "success": True,
        "items": [public_view(i, sign) for i in chunk],
        "pagination": {
            "total": len(ordered),
            "limit": limit,
            "offset": offset,
            "hasMore": offset + len(chunk) < len(ordered),
        },
    }
