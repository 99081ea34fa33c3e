from __future__ import annotations

import logging
from typing import Dict, Optional

from svc_swap.config import settings
from svc_swap.domain.enums import ProviderName
from svc_swap.domain.errors import ProviderError
from svc_swap.services.providers.base import (
    FaceSwapInput,
    FaceSwapProvider,
    FaceSwapResult,
    TempImageStager,
)
from svc_swap.services.providers.gemini_provider import GeminiFaceSwapProvider
from svc_swap.services.providers.replicate_provider import ReplicateFaceSwapProvider
from svc_swap.services.providers.wavespeed_provider import (
    wavespeed_face_provider,
    wavespeed_hair_face_provider,
)

logger = logging.getLogger(__name__)


def pick_provider(configured: Optional[str]) -> ProviderName:
    """Map a configuration value to a provider; unknown values fall back to gemini."""
    raw = (configured or ProviderName.gemini.value).strip().lower()
    try:
        return ProviderName(raw)
    except ValueError:
        logger.warning("unknown_face_swap_provider_fallback", extra={"configured": raw, "fallback": "gemini"})
        return ProviderName.gemini


def build_provider(name: ProviderName, stager: TempImageStager) -> FaceSwapProvider:
    if name == ProviderName.replicate:
        return ReplicateFaceSwapProvider(stager=stager)
    if name == ProviderName.wavespeed_face:
        return wavespeed_face_provider(stager)
    if name == ProviderName.wavespeed_hair_face:
        return wavespeed_hair_face_provider(stager)
    return GeminiFaceSwapProvider()


class FaceSwapProviderRouter:
    """
    One switchpoint for face swap backends.

    settings/env:
      - FACE_SWAP_PROVIDER = gemini | replicate | wavespeed-face | wavespeed-hair-face
    """

    def __init__(
        self,
        stager: TempImageStager,
        *,
        configured: Optional[str] = None,
        providers: Optional[Dict[ProviderName, FaceSwapProvider]] = None,
    ) -> None:
        self.stager = stager
        self.configured = configured if configured is not None else settings.FACE_SWAP_PROVIDER
        self._providers: Dict[ProviderName, FaceSwapProvider] = dict(providers or {})

    def get(self, name: ProviderName) -> FaceSwapProvider:
        if name not in self._providers:
            self._providers[name] = build_provider(name, self.stager)
        return self._providers[name]

    async def perform_face_swap(self, data: FaceSwapInput) -> FaceSwapResult:
        name = pick_provider(data.provider or self.configured)
        provider = self.get(name)
        logger.info(
            "face_swap_provider_selected",
            extra={
                "provider": name.value,
                "source": "request" if data.provider else "settings",
                "is_group_swap": data.is_group_swap,
                "face_index": data.face_index,
            },
        )
        try:
            return await provider.swap(data)
        except ProviderError:
            raise
        except Exception as e:
            logger.exception("face_swap_provider_failed", extra={"provider": name.value})
            raise ProviderError("PROVIDER_ERROR", str(e) or type(e).__name__, provider=name.value) from e
