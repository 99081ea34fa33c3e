from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from svc_swap.domain.enums import (
    FaceSwapStatus,
    FavoriteAction,
    LikeAction,
    ProviderName,
    SlotType,
    TransactionType,
)

# Languages every screener question must be translated into.
REQUIRED_SCREENER_LANGUAGES = ("es", "en")


class CamelModel(BaseModel):
    """Wire models speak camelCase; python code uses snake_case."""

    model_config = ConfigDict(extra="ignore", alias_generator=to_camel, populate_by_name=True)


def _is_image_ref(value: str) -> bool:
    v = (value or "").strip()
    return v.startswith("data:image/") or v.startswith("http://") or v.startswith("https://")


# ============================================================================
# TEMPLATES
# ============================================================================


class TemplateSlot(CamelModel):
    type: SlotType = SlotType.person
    label: Optional[str] = None
    position: int = 0


class TemplateMetadata(CamelModel):
    body_type: List[str] = Field(default_factory=list)
    skin_tone: List[str] = Field(default_factory=list)
    hair_length: List[str] = Field(default_factory=list)

    style: List[str] = Field(default_factory=list)
    mood: List[str] = Field(default_factory=list)
    color_palette: List[str] = Field(default_factory=list)

    occasion: List[str] = Field(default_factory=list)
    setting: List[str] = Field(default_factory=list)
    framing: Optional[str] = None
    lighting: Optional[str] = None

    popularity_score: Optional[float] = Field(default=None, ge=0, le=100)
    quality_score: Optional[float] = Field(default=None, ge=0, le=100)

    tags: List[str] = Field(default_factory=list)
    age_range: List[str] = Field(default_factory=list)
    gender: List[str] = Field(default_factory=list)


class Template(CamelModel):
    id: str
    title: str = ""
    description: str = ""

    image_url: str = ""
    variant_image_urls: List[str] = Field(default_factory=list)
    thumbnail_url: Optional[str] = None

    prompt: str = ""
    categories: List[str] = Field(default_factory=list)
    metadata: TemplateMetadata = Field(default_factory=TemplateMetadata)

    is_active: bool = True
    is_premium: bool = False

    usage_count: int = 0
    average_rating: Optional[float] = None

    website_url: Optional[str] = None
    face_count: int = 1
    slots: List[TemplateSlot] = Field(default_factory=list)

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by: Optional[str] = None


class TemplateCreateRequest(CamelModel):
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    image_data: str = Field(..., min_length=1)
    variant_image_data: List[str] = Field(default_factory=list)
    prompt: str = Field(..., min_length=1)
    metadata: TemplateMetadata
    categories: List[str] = Field(default_factory=list)
    is_active: bool = True
    is_premium: bool = False
    website_url: Optional[str] = None
    slots: List[TemplateSlot] = Field(default_factory=list)

    @field_validator("image_data")
    @classmethod
    def _image_data_is_image(cls, v: str) -> str:
        if not _is_image_ref(v):
            raise ValueError("imageData must be a data:image/... URL or an http(s) URL")
        return v


class TemplateUpdateRequest(CamelModel):
    """Partial update; only provided fields are written."""

    title: Optional[str] = None
    description: Optional[str] = None
    image_data: Optional[str] = None
    prompt: Optional[str] = None
    metadata: Optional[TemplateMetadata] = None
    categories: Optional[List[str]] = None
    is_active: Optional[bool] = None
    is_premium: Optional[bool] = None
    website_url: Optional[str] = None
    slots: Optional[List[TemplateSlot]] = None


class ScoreBreakdown(CamelModel):
    exact_match: float = 0.0
    partial_match: float = 0.0
    popularity: float = 0.0
    quality: float = 0.0
    behavioral: float = 0.0
    novelty: float = 0.0

    def total(self) -> float:
        return (
            self.exact_match
            + self.partial_match
            + self.popularity
            + self.quality
            + self.behavioral
            + self.novelty
        )


class TemplateScore(CamelModel):
    template: Template
    score: float
    breakdown: ScoreBreakdown


# ============================================================================
# USER PROFILE
# ============================================================================


class UsedTemplate(CamelModel):
    template_id: str
    timestamp: datetime


class UserProfile(CamelModel):
    user_id: str

    preferred_body_type: List[str] = Field(default_factory=list)
    preferred_occasions: List[str] = Field(default_factory=list)
    preferred_mood: List[str] = Field(default_factory=list)
    preferred_style: List[str] = Field(default_factory=list)

    viewed_templates: List[str] = Field(default_factory=list)
    used_templates: List[UsedTemplate] = Field(default_factory=list)
    favorite_templates: List[str] = Field(default_factory=list)
    answered_questions: List[str] = Field(default_factory=list)

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PreferencesRequest(CamelModel):
    preferred_body_type: Optional[List[str]] = None
    preferred_occasions: Optional[List[str]] = None
    preferred_mood: Optional[List[str]] = None
    preferred_style: Optional[List[str]] = None

    def provided(self) -> Dict[str, List[str]]:
        return {k: v for k, v in self.model_dump().items() if v is not None}


class ProfileActivityRequest(CamelModel):
    viewed_template_id: Optional[str] = None
    used_template_id: Optional[str] = None
    favorite_template_id: Optional[str] = None
    action: FavoriteAction = FavoriteAction.add


class ScreenerAnswersRequest(CamelModel):
    answers: Dict[str, List[str]]

    @field_validator("answers")
    @classmethod
    def _answers_not_empty(cls, v: Dict[str, List[str]]) -> Dict[str, List[str]]:
        if not v:
            raise ValueError("answers must contain at least one question")
        return v


# ============================================================================
# SCREENER QUESTIONS
# ============================================================================


class QuestionTranslation(CamelModel):
    label: str = ""
    options: Dict[str, str] = Field(default_factory=dict)


class ScreenerQuestion(CamelModel):
    id: str
    order: int = 0
    multi_select: bool = False
    category: Optional[str] = None
    option_keys: List[str] = Field(default_factory=list)
    translations: Dict[str, QuestionTranslation] = Field(default_factory=dict)
    is_active: bool = True
    target_gender: Optional[str] = None
    min_usage_count: Optional[int] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ScreenerQuestionWrite(CamelModel):
    """
    Full body for create/replace. Every option key must be labelled in every
    required language.
    """

    multi_select: bool = False
    category: Optional[str] = None
    option_keys: List[str]
    translations: Dict[str, QuestionTranslation]
    target_gender: Optional[str] = None
    min_usage_count: Optional[int] = Field(default=None, ge=0)
    is_active: bool = True

    @model_validator(mode="after")
    def _check_translations(self) -> "ScreenerQuestionWrite":
        if not self.option_keys:
            raise ValueError("optionKeys is required and must be a non-empty array")
        if len(set(self.option_keys)) != len(self.option_keys):
            raise ValueError("optionKeys must be unique")

        for lang in REQUIRED_SCREENER_LANGUAGES:
            tr = self.translations.get(lang)
            if tr is None:
                raise ValueError(f"translations must include {', '.join(REQUIRED_SCREENER_LANGUAGES)}")
            if not tr.label.strip():
                raise ValueError(f"translations.{lang}.label is required")

        for lang, tr in self.translations.items():
            missing = [k for k in self.option_keys if not (tr.options.get(k) or "").strip()]
            if missing:
                raise ValueError(f"translations.{lang}.options is missing keys: {', '.join(missing)}")
        return self


class ScreenerQuestionPatch(CamelModel):
    is_active: Optional[bool] = None
    order: Optional[int] = None

    @model_validator(mode="after")
    def _something_to_patch(self) -> "ScreenerQuestionPatch":
        if self.is_active is None and self.order is None:
            raise ValueError("provide isActive and/or order")
        return self


class ScreenerQuestionsPage(CamelModel):
    questions: List[ScreenerQuestion]
    total_available: int
    answered_count: int
    has_more: bool


# ============================================================================
# FACE SWAP / LEDGER
# ============================================================================


class FaceSwapRequest(CamelModel):
    source_image: str = Field(..., min_length=1)
    target_image: str = Field(..., min_length=1)
    style: Optional[str] = None
    template_title: Optional[str] = None
    template_id: Optional[str] = None

    is_guest_trial: bool = False
    is_group_swap: bool = False
    face_index: Optional[int] = Field(default=None, ge=0)
    total_faces: Optional[int] = Field(default=None, ge=1)
    slot_type: Optional[SlotType] = None
    slot_label: Optional[str] = None
    # overrides FACE_SWAP_PROVIDER for this request
    provider: Optional[ProviderName] = None

    @field_validator("source_image", "target_image")
    @classmethod
    def _must_be_image_ref(cls, v: str) -> str:
        if not _is_image_ref(v):
            raise ValueError("must be a data:image/... URL or an http(s) URL")
        return v.strip()

    @model_validator(mode="after")
    def _group_fields(self) -> "FaceSwapRequest":
        if self.is_group_swap and self.total_faces is not None and self.face_index is not None:
            if self.face_index >= self.total_faces:
                raise ValueError("faceIndex must be < totalFaces")
        return self


class FaceSwapResponse(CamelModel):
    success: bool = True
    result_image: str
    face_swap_id: Optional[str] = None
    credits_remaining: Optional[int] = None
    resized: bool = False


class CreditTransaction(CamelModel):
    id: str
    user_id: str
    type: TransactionType
    credits: int
    balance_before: int
    balance_after: int
    description: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    face_swap_id: Optional[str] = None
    created_at: Optional[datetime] = None


class FaceSwapRecord(CamelModel):
    id: str
    user_id: str
    status: FaceSwapStatus
    style: str = "natural"
    template_id: Optional[str] = None
    template_title: Optional[str] = None
    credits_used: int = 0
    transaction_id: Optional[str] = None
    result_image_url: Optional[str] = None
    error_message: Optional[str] = None
    is_guest_transfer: bool = False
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class CreditBalance(CamelModel):
    credits: int
    user_id: str


class CreditPackage(CamelModel):
    package_id: str
    name: str
    credits: int
    # cents
    price_usd: int = Field(alias="priceUSD")
    stripe_price_id: Optional[str] = None
    stripe_product_id: Optional[str] = None
    description: Optional[str] = None
    popular: bool = False


class GuestTransferRequest(CamelModel):
    """A guest trial result claimed into the caller's history after sign-in."""

    result_image: str = Field(..., min_length=1)
    style: Optional[str] = None
    template_title: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator("result_image")
    @classmethod
    def _result_is_image(cls, v: str) -> str:
        if not v.strip().startswith("data:image/"):
            raise ValueError("resultImage must be a data:image/... URL")
        return v.strip()


# ============================================================================
# BRANDS
# ============================================================================


class BrandConfig(CamelModel):
    id: str
    name: str
    domain: str
    logo: Optional[str] = None
    favicon: Optional[str] = None
    theme_id: Optional[str] = None
    custom_colors: Dict[str, str] = Field(default_factory=dict)
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class BrandConfigWrite(CamelModel):
    name: str = Field(..., min_length=1)
    domain: str = Field(..., min_length=1)
    logo: Optional[str] = None
    # inline or remote image; uploaded to blob storage and stored as `logo`
    logo_data: Optional[str] = None
    favicon: Optional[str] = None
    theme_id: Optional[str] = None
    custom_colors: Dict[str, str] = Field(default_factory=dict)
    is_active: bool = True

    @field_validator("domain")
    @classmethod
    def _normalize_domain(cls, v: str) -> str:
        d = v.strip().lower()
        for prefix in ("https://", "http://"):
            if d.startswith(prefix):
                d = d[len(prefix):]
        return d.rstrip("/")


class AnalyzeTemplateRequest(CamelModel):
    image_data: str = Field(..., min_length=1)

    @field_validator("image_data")
    @classmethod
    def _image_data_is_image(cls, v: str) -> str:
        if not _is_image_ref(v):
            raise ValueError("imageData must be a data:image/... URL or an http(s) URL")
        return v


# ============================================================================
# GALLERY
# ============================================================================


class GalleryItem(CamelModel):
    id: str
    face_swap_id: str
    user_id: str
    image_url: str = ""
    thumbnail_url: Optional[str] = None
    template_title: Optional[str] = None
    style: Optional[str] = None
    display_name: str = "Anonymous"
    caption: Optional[str] = None
    likes: int = 0
    views: int = 0
    liked_by: List[str] = Field(default_factory=list)
    is_public: bool = True
    is_moderated: bool = False
    is_featured: bool = False
    published_at: datetime
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PublishRequest(CamelModel):
    face_swap_id: UUID
    is_public: bool
    caption: Optional[str] = Field(default=None, max_length=500)
    display_name: Optional[str] = Field(default=None, max_length=80)


class LikeRequest(CamelModel):
    gallery_item_id: UUID
    action: LikeAction
