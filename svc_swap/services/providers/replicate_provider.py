from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from svc_swap.config import settings
from svc_swap.domain.errors import ProviderError
from svc_swap.services import image_io
from svc_swap.services.providers.base import FaceSwapInput, FaceSwapResult, TempImageStager

logger = logging.getLogger(__name__)

REPLICATE_API_ERROR = "REPLICATE_API_ERROR"
REPLICATE_NO_OUTPUT = "REPLICATE_NO_OUTPUT"

_TERMINAL = ("succeeded", "failed", "canceled")


def _extract_output_url(output: Any) -> Optional[str]:
    if isinstance(output, str):
        return output
    if isinstance(output, list) and output:
        return _extract_output_url(output[0])
    if isinstance(output, dict):
        return output.get("url") or output.get("image")
    return None


class ReplicateFaceSwapProvider:
    """
    codeplugtech/face-swap on Replicate. Needs public URLs; the model has no
    target-index input, so group swaps run against the most prominent face.
    """

    provider_name = "replicate"

    def __init__(
        self,
        *,
        stager: TempImageStager,
        api_token: Optional[str] = None,
        version: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        poll_interval_seconds: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.stager = stager
        self.api_token = settings.REPLICATE_API_TOKEN if api_token is None else api_token
        self.version = version or settings.REPLICATE_FACE_SWAP_VERSION
        self.base = (base_url or settings.REPLICATE_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.PROVIDER_TIMEOUT_SECONDS
        self.poll_interval_seconds = poll_interval_seconds
        self._sleep = sleep
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
            "Prefer": "wait",
        }

    async def _wait_for_prediction(self, client: httpx.AsyncClient, prediction: Dict[str, Any]) -> Dict[str, Any]:
        deadline = time.monotonic() + self.timeout
        while prediction.get("status") not in _TERMINAL:
            if time.monotonic() > deadline:
                raise ProviderError(REPLICATE_API_ERROR, "prediction timed out", provider=self.provider_name)
            get_url = (prediction.get("urls") or {}).get("get")
            if not get_url:
                raise ProviderError(REPLICATE_API_ERROR, "prediction has no poll url", provider=self.provider_name)
            await self._sleep(self.poll_interval_seconds)
            r = await client.get(get_url, headers=self._headers())
            if r.status_code >= 400:
                raise ProviderError(REPLICATE_API_ERROR, f"poll failed {r.status_code}", provider=self.provider_name)
            prediction = r.json()
        return prediction

    async def swap(self, data: FaceSwapInput) -> FaceSwapResult:
        if not self.api_token:
            raise ProviderError("PROVIDER_NOT_CONFIGURED", "REPLICATE_API_TOKEN not configured", provider=self.provider_name)

        target_url = await self.stager.upload_temp_image(data.target_image, "rep-target")
        source_url = await self.stager.upload_temp_image(data.source_image, "rep-source")

        if data.is_group_swap:
            logger.info(
                "replicate_group_swap_without_target_index",
                extra={"face_index": data.face_index, "total_faces": data.total_faces},
            )

        body = {
            "version": self.version,
            "input": {"swap_image": source_url, "input_image": target_url},
        }

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                r = await client.post(f"{self.base}/predictions", headers=self._headers(), json=body)
            except httpx.HTTPError as e:
                raise ProviderError(REPLICATE_API_ERROR, f"transport error: {e}", provider=self.provider_name) from e

            if r.status_code >= 400:
                logger.error("replicate_api_error", extra={"status_code": r.status_code, "body": r.text[:500]})
                raise ProviderError(
                    REPLICATE_API_ERROR,
                    f"Replicate API error: {r.status_code} - {r.text[:200]}",
                    provider=self.provider_name,
                )

            prediction = await self._wait_for_prediction(client, r.json())
            if prediction.get("status") != "succeeded":
                raise ProviderError(
                    REPLICATE_API_ERROR,
                    f"prediction {prediction.get('status')}: {prediction.get('error')}",
                    provider=self.provider_name,
                )

            result_url = _extract_output_url(prediction.get("output"))
            if not result_url:
                raise ProviderError(REPLICATE_NO_OUTPUT, "Replicate returned no output image", provider=self.provider_name)

            try:
                content, ct = await image_io.fetch_bytes(result_url, client=client)
            except image_io.ImageFetchError as e:
                raise ProviderError("IMAGE_FETCH_FAILED", str(e), provider=self.provider_name) from e

        return FaceSwapResult(
            result_image=image_io.to_data_url(content, ct or "image/png"),
            provider=self.provider_name,
            meta={"provider_url": result_url, "prediction_id": prediction.get("id")},
        )
