from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol


@dataclass
class FaceSwapInput:
    target_image: str  # template scene; data URL or remote URL
    source_image: str  # user's face; data URL or remote URL
    prompt: str = ""
    is_group_swap: bool = False
    face_index: Optional[int] = None
    total_faces: Optional[int] = None
    slot_type: Optional[str] = None
    slot_label: Optional[str] = None
    provider: Optional[str] = None  # per-request override of the configured backend


@dataclass
class FaceSwapResult:
    result_image: str  # always a base64 data URL
    provider: str = ""
    meta: Dict[str, Any] = field(default_factory=dict)


class FaceSwapProvider(Protocol):
    provider_name: str

    async def swap(self, data: FaceSwapInput) -> FaceSwapResult:
        ...


class TempImageStager(Protocol):
    """Makes an image reachable by a public URL (remote URLs pass through)."""

    async def upload_temp_image(self, image: str, prefix: str) -> str:
        ...
