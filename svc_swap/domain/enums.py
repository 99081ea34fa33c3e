from __future__ import annotations

from enum import Enum


class ProviderName(str, Enum):
    gemini = "gemini"
    replicate = "replicate"
    wavespeed_face = "wavespeed-face"
    wavespeed_hair_face = "wavespeed-hair-face"


class FaceSwapStatus(str, Enum):
    processing = "processing"
    completed = "completed"
    failed = "failed"


class TransactionType(str, Enum):
    purchase = "purchase"
    usage = "usage"
    bonus = "bonus"


class SlotType(str, Enum):
    person = "person"
    woman = "woman"
    man = "man"
    girl = "girl"
    boy = "boy"
    baby = "baby"
    pet = "pet"


class RecommendationMode(str, Enum):
    all = "all"
    trending = "trending"
    recommended = "recommended"


class FavoriteAction(str, Enum):
    add = "add"
    remove = "remove"


class GallerySort(str, Enum):
    recent = "recent"
    popular = "popular"
    featured = "featured"
    trending = "trending"


class LikeAction(str, Enum):
    like = "like"
    unlike = "unlike"
