from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from svc_swap.config import settings
from svc_swap.domain.errors import ProviderError
from svc_swap.services import image_io
from svc_swap.services.providers.base import FaceSwapInput, FaceSwapResult, TempImageStager

logger = logging.getLogger(__name__)

WAVESPEED_API_ERROR = "WAVESPEED_API_ERROR"
WAVESPEED_NO_OUTPUT = "WAVESPEED_NO_OUTPUT"


class WaveSpeedFaceSwapProvider:
    """
    Dedicated swap model; no prompt, synchronous, no internal retry.
    Inputs must be public URLs, so inline images are staged first.
    """

    def __init__(
        self,
        *,
        provider_name: str,
        endpoint: str,
        stager: TempImageStager,
        temp_prefix: str,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.provider_name = provider_name
        self.endpoint = endpoint.strip("/")
        self.stager = stager
        self.temp_prefix = temp_prefix
        self.api_key = settings.WAVESPEED_API_KEY if api_key is None else api_key
        self.base = (base_url or settings.WAVESPEED_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.PROVIDER_TIMEOUT_SECONDS
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    def build_body(self, data: FaceSwapInput, target_url: str, source_url: str) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "image": target_url,
            "face_image": source_url,
            "enable_sync_mode": True,
        }
        if data.is_group_swap and data.face_index is not None:
            body["target_index"] = data.face_index
        return body

    async def swap(self, data: FaceSwapInput) -> FaceSwapResult:
        if not self.api_key:
            raise ProviderError("PROVIDER_NOT_CONFIGURED", "WAVESPEED_API_KEY not configured", provider=self.provider_name)

        target_url = await self.stager.upload_temp_image(data.target_image, f"{self.temp_prefix}-target")
        source_url = await self.stager.upload_temp_image(data.source_image, f"{self.temp_prefix}-source")

        if data.is_group_swap:
            logger.info(
                "wavespeed_group_swap",
                extra={
                    "provider": self.provider_name,
                    "face_index": data.face_index or 0,
                    "total_faces": data.total_faces,
                },
            )

        url = f"{self.base}/{self.endpoint}"
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                r = await client.post(url, headers=self._headers(), json=self.build_body(data, target_url, source_url))
            except httpx.HTTPError as e:
                raise ProviderError(WAVESPEED_API_ERROR, f"transport error: {e}", provider=self.provider_name) from e

            if r.status_code >= 400:
                logger.error(
                    "wavespeed_api_error",
                    extra={"provider": self.provider_name, "status_code": r.status_code, "body": r.text[:500]},
                )
                raise ProviderError(
                    WAVESPEED_API_ERROR,
                    f"WaveSpeed API error: {r.status_code} - {r.text[:200]}",
                    provider=self.provider_name,
                )

            payload = r.json()
            outputs = ((payload or {}).get("data") or {}).get("outputs") or []
            result_url = outputs[0] if outputs else None
            if not result_url:
                logger.error("wavespeed_no_output", extra={"provider": self.provider_name})
                raise ProviderError(WAVESPEED_NO_OUTPUT, "WaveSpeed returned no output image", provider=self.provider_name)

            try:
                content, ct = await image_io.fetch_bytes(str(result_url), client=client)
            except image_io.ImageFetchError as e:
                raise ProviderError("IMAGE_FETCH_FAILED", str(e), provider=self.provider_name) from e

        return FaceSwapResult(
            result_image=image_io.to_data_url(content, ct or "image/png"),
            provider=self.provider_name,
            meta={"provider_url": result_url},
        )


def wavespeed_face_provider(stager: TempImageStager, **kwargs) -> WaveSpeedFaceSwapProvider:
    """Face-only swap (no hair)."""
    return WaveSpeedFaceSwapProvider(
        provider_name="wavespeed-face",
        endpoint="image-face-swap-pro",
        stager=stager,
        temp_prefix="wsf",
        **kwargs,
    )


def wavespeed_hair_face_provider(stager: TempImageStager, **kwargs) -> WaveSpeedFaceSwapProvider:
    """Face and hair swapped together."""
    return WaveSpeedFaceSwapProvider(
        provider_name="wavespeed-hair-face",
        endpoint="image-head-swap",
        stager=stager,
        temp_prefix="ws",
        **kwargs,
    )
