from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence

from svc_swap.domain.models import ScoreBreakdown, Template, TemplateScore, UserProfile

# Caps per sub-score; they sum to 100.
RECOMMENDATION_WEIGHTS = {
    "exact_match": 25.0,
    "partial_match": 10.0,
    "popularity": 15.0,
    "quality": 15.0,
    "behavioral": 20.0,
    "novelty": 15.0,
}

POPULARITY_REFERENCE_USES = 1000
DEFAULT_QUALITY_SCORE = 50.0
HISTORY_SATURATION = 10
NOVELTY_RECOVERY_DAYS = 30.0


def _any_in(wanted: Iterable[str], available: Sequence[str]) -> bool:
    return any(w in available for w in (wanted or []))


def _as_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def exact_match_score(template: Template, profile: UserProfile) -> float:
    cap = RECOMMENDATION_WEIGHTS["exact_match"]
    meta = template.metadata
    score = 0.0
    if _any_in(profile.preferred_occasions, meta.occasion):
        score += cap * 0.4
    if _any_in(profile.preferred_mood, meta.mood):
        score += cap * 0.3
    if _any_in(profile.preferred_style, meta.style):
        score += cap * 0.3
    return score


def partial_match_score(template: Template, profile: UserProfile) -> float:
    cap = RECOMMENDATION_WEIGHTS["partial_match"]
    meta = template.metadata
    score = 0.0

    if _any_in(profile.preferred_body_type, meta.body_type):
        score += cap * 0.5

    # palette affinity: energetic->vibrant takes precedence over relaxed->pastel
    moods = profile.preferred_mood or []
    if "energetic" in moods and "vibrant" in meta.color_palette:
        score += cap * 0.3
    elif "relaxed" in moods and "pastel" in meta.color_palette:
        score += cap * 0.3

    if "casual" in (profile.preferred_occasions or []) and "outdoor" in meta.setting:
        score += cap * 0.2

    return score


def popularity_score(template: Template) -> float:
    usage = max(template.usage_count or 0, 0)
    return min(usage / POPULARITY_REFERENCE_USES, 1.0) * RECOMMENDATION_WEIGHTS["popularity"]


def quality_score(template: Template) -> float:
    q = template.metadata.quality_score
    if q is None:
        q = DEFAULT_QUALITY_SCORE
    q = min(max(float(q), 0.0), 100.0)
    return (q / 100.0) * RECOMMENDATION_WEIGHTS["quality"]


def behavioral_score(template: Template, profile: UserProfile) -> float:
    cap = RECOMMENDATION_WEIGHTS["behavioral"]
    score = 0.0
    history = len(profile.used_templates or [])
    if history > 0:
        score += cap * 0.5 * min(history / HISTORY_SATURATION, 1.0)
    if template.id in (profile.favorite_templates or []):
        score += cap * 0.5
    return score


def last_used_at(template_id: str, profile: UserProfile) -> Optional[datetime]:
    stamps = [_as_utc(u.timestamp) for u in (profile.used_templates or []) if u.template_id == template_id]
    return max(stamps) if stamps else None


def novelty_score(template: Template, profile: UserProfile, *, now: Optional[datetime] = None) -> float:
    cap = RECOMMENDATION_WEIGHTS["novelty"]
    last = last_used_at(template.id, profile)
    if last is None:
        return cap

    now = _as_utc(now or datetime.now(timezone.utc))
    days = (now - last).total_seconds() / 86400.0
    factor = min(max(days, 0.0) / NOVELTY_RECOVERY_DAYS, 1.0)
    return factor * cap


def score_template(
    template: Template,
    profile: Optional[UserProfile],
    *,
    now: Optional[datetime] = None,
) -> TemplateScore:
    """
    Relevance of one template for one user, 0..100.

    Without a profile only popularity and quality contribute.
    """
    if profile is None:
        breakdown = ScoreBreakdown(
            popularity=popularity_score(template),
            quality=quality_score(template),
        )
    else:
        breakdown = ScoreBreakdown(
            exact_match=exact_match_score(template, profile),
            partial_match=partial_match_score(template, profile),
            popularity=popularity_score(template),
            quality=quality_score(template),
            behavioral=behavioral_score(template, profile),
            novelty=novelty_score(template, profile, now=now),
        )
    return TemplateScore(template=template, score=breakdown.total(), breakdown=breakdown)


def recommend_templates(
    templates: Sequence[Template],
    profile: Optional[UserProfile],
    *,
    limit: Optional[int] = None,
    min_score: float = 0.0,
    only_active: bool = True,
    exclude_premium: bool = False,
    now: Optional[datetime] = None,
) -> List[TemplateScore]:
    candidates = list(templates)
    if only_active:
        candidates = [t for t in candidates if t.is_active]
    if exclude_premium:
        candidates = [t for t in candidates if not t.is_premium]

    scored = [score_template(t, profile, now=now) for t in candidates]
    qualified = [s for s in scored if s.score >= min_score]

    # sorted() is stable: equal scores keep catalogue order
    ranked = sorted(qualified, key=lambda s: s.score, reverse=True)
    return ranked[:limit] if limit else ranked


def get_trending_templates(
    templates: Sequence[Template],
    *,
    limit: int = 10,
    time_window_days: int = 7,
) -> List[Template]:
    # time_window_days is accepted for API compatibility; ranking is by lifetime usage.
    active = [t for t in templates if t.is_active]
    return sorted(active, key=lambda t: t.usage_count or 0, reverse=True)[:limit]


def get_templates_by_occasion(templates: Sequence[Template], occasion: str) -> List[Template]:
    return [t for t in templates if t.is_active and occasion in t.metadata.occasion]


def search_templates(templates: Sequence[Template], query: str) -> List[Template]:
    q = (query or "").lower()
    out: List[Template] = []
    for t in templates:
        if not t.is_active:
            continue
        if (
            q in t.title.lower()
            or q in t.description.lower()
            or any(q in tag.lower() for tag in t.metadata.tags)
        ):
            out.append(t)
    return out
