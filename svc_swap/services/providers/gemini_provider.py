from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from svc_swap.config import settings
from svc_swap.domain.errors import ProviderError
from svc_swap.services import image_io
from svc_swap.services.providers.base import FaceSwapInput, FaceSwapResult

logger = logging.getLogger(__name__)

GEMINI_API_ERROR = "GEMINI_API_ERROR"
GEMINI_NO_IMAGE = "GEMINI_NO_IMAGE"

CRITICAL_INSTRUCTIONS = (
    "CRITICAL INSTRUCTIONS:\n"
    "- The FIRST image is the template/reference scene. The SECOND image is the user's face.\n"
    "- ONLY replace the face. Keep EVERYTHING else from the template PIXEL-PERFECT: exact same crop, "
    "framing, zoom level, camera angle, pose, body position, outfit, accessories, background, and all "
    "objects in the scene.\n"
    "- Use the user's natural skin tone and hairstyle from the second image, adapted to the template's "
    "lighting.\n"
    "- Do NOT keep the template's hair or skin tone. Use the user's.\n"
    "- The output image MUST have the EXACT same framing and field of view as the template. Do NOT zoom "
    "in, zoom out, crop differently, or shift the composition. Every element must be in the same "
    "position as the template."
)


def build_slot_instructions(data: FaceSwapInput) -> str:
    """Natural-language stand-in for a target index on group swaps."""
    if not data.is_group_swap or not data.slot_type:
        return ""

    if data.slot_type == "pet":
        label = data.slot_label or "pet/animal"
        return (
            "\n\nSPECIAL INSTRUCTION: The second image contains a PET (animal). "
            f"Replace the {label} in the template with the pet from the second image. "
            "Maintain the pet's natural appearance, breed characteristics, and coloring. "
            "Place the pet in the same position and scale as the original."
        )

    subject = data.slot_label or data.slot_type
    face_no = (data.face_index or 0) + 1
    return (
        f"\n\nCONTEXT: This is face {face_no} of {data.total_faces} in a group swap. "
        f"The subject for this slot is: {subject} (type: {data.slot_type}). "
        "Replace this specific subject's face in the template with the face from the second image."
    )


def build_gemini_prompt(data: FaceSwapInput) -> str:
    return f"{data.prompt}\n\n{CRITICAL_INSTRUCTIONS}{build_slot_instructions(data)}"


class _GeminiAttemptFailed(Exception):
    def __init__(self, reason: str, detail: str = ""):
        super().__init__(detail or reason)
        self.reason = reason


def _first_part(data: Dict[str, Any], key: str) -> Optional[Dict[str, Any]]:
    candidates = data.get("candidates") or []
    if not candidates:
        return None
    parts = ((candidates[0] or {}).get("content") or {}).get("parts") or []
    for p in parts:
        if isinstance(p, dict) and p.get(key):
            return p
    return None


class GeminiFaceSwapProvider:
    """
    Prompt-driven generative swap. The backend sometimes answers with text
    instead of an image, so each call is retried up to `max_attempts` times
    with a fixed `retry_delay_seconds` pause.
    """

    provider_name = "gemini"

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        max_attempts: Optional[int] = None,
        retry_delay_seconds: Optional[float] = None,
        timeout: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = settings.GEMINI_API_KEY if api_key is None else api_key
        self.model = model or settings.GEMINI_MODEL
        self.base = (base_url or settings.GEMINI_BASE_URL).rstrip("/")
        self.max_attempts = max(1, max_attempts or settings.GEMINI_MAX_ATTEMPTS)
        self.retry_delay_seconds = (
            settings.GEMINI_RETRY_DELAY_SECONDS if retry_delay_seconds is None else retry_delay_seconds
        )
        self.timeout = timeout or settings.PROVIDER_TIMEOUT_SECONDS
        self._sleep = sleep
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def _inline(self, image: str, client: httpx.AsyncClient) -> Dict[str, str]:
        try:
            data_url = await image_io.ensure_data_url(image, client=client)
        except image_io.ImageFetchError as e:
            raise ProviderError("IMAGE_FETCH_FAILED", str(e), provider=self.provider_name) from e
        mime, payload = image_io.split_data_url(data_url)
        return {"data": payload, "mimeType": mime}

    async def build_payload(self, data: FaceSwapInput, client: httpx.AsyncClient) -> Dict[str, Any]:
        target = await self._inline(data.target_image, client)
        source = await self._inline(data.source_image, client)
        return {
            "contents": [
                {
                    "parts": [
                        {"text": build_gemini_prompt(data)},
                        {"inlineData": target},
                        {"inlineData": source},
                    ]
                }
            ],
            "generationConfig": {"responseModalities": ["IMAGE"]},
        }

    async def _attempt(self, client: httpx.AsyncClient, payload: Dict[str, Any], attempt: int) -> str:
        url = f"{self.base}/models/{self.model}:generateContent"
        try:
            r = await client.post(url, params={"key": self.api_key}, json=payload)
        except httpx.HTTPError as e:
            raise _GeminiAttemptFailed(GEMINI_API_ERROR, f"transport error: {e}") from e

        if r.status_code >= 400:
            logger.warning(
                "gemini_api_error",
                extra={"attempt": attempt, "status_code": r.status_code, "body": r.text[:500]},
            )
            raise _GeminiAttemptFailed(GEMINI_API_ERROR, f"HTTP {r.status_code}")

        try:
            body = r.json()
        except ValueError as e:
            raise _GeminiAttemptFailed(GEMINI_API_ERROR, f"invalid json: {e}") from e
        if not isinstance(body, dict):
            raise _GeminiAttemptFailed(GEMINI_API_ERROR, f"unexpected json type: {type(body)}")

        text_part = _first_part(body, "text")
        if text_part:
            logger.warning("gemini_returned_text", extra={"attempt": attempt, "text": str(text_part["text"])[:200]})

        candidates = body.get("candidates") or []
        finish_reason = (candidates[0] or {}).get("finishReason") if candidates else None
        if finish_reason and finish_reason != "STOP":
            logger.warning("gemini_finish_reason", extra={"attempt": attempt, "finish_reason": finish_reason})

        image_part = _first_part(body, "inlineData")
        if not image_part:
            raise _GeminiAttemptFailed(GEMINI_NO_IMAGE, "no image part in response")

        inline = image_part["inlineData"]
        mime = inline.get("mimeType") or "image/png"
        return f"data:{mime};base64,{inline.get('data', '')}"

    def _before_sleep(self, retry_state) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.info(
            "gemini_retrying",
            extra={
                "attempt": retry_state.attempt_number,
                "max_attempts": self.max_attempts,
                "reason": getattr(exc, "reason", None),
                "delay_seconds": self.retry_delay_seconds,
            },
        )

    async def swap(self, data: FaceSwapInput) -> FaceSwapResult:
        if not self.api_key:
            raise ProviderError("PROVIDER_NOT_CONFIGURED", "GEMINI_API_KEY not configured", provider=self.provider_name)

        async with self._client() as client:
            payload = await self.build_payload(data, client)

            retrying = AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_fixed(self.retry_delay_seconds),
                retry=retry_if_exception_type(_GeminiAttemptFailed),
                sleep=self._sleep,
                before_sleep=self._before_sleep,
                reraise=True,
            )
            try:
                async for attempt in retrying:
                    with attempt:
                        image = await self._attempt(client, payload, attempt.retry_state.attempt_number)
                        logger.info(
                            "gemini_swap_completed",
                            extra={"attempt": attempt.retry_state.attempt_number, "size": len(image)},
                        )
                        return FaceSwapResult(
                            result_image=image,
                            provider=self.provider_name,
                            meta={"attempts": attempt.retry_state.attempt_number, "model": self.model},
                        )
            except _GeminiAttemptFailed as e:
                raise ProviderError(e.reason, str(e), provider=self.provider_name) from e

        raise ProviderError(GEMINI_NO_IMAGE, "no attempts were made", provider=self.provider_name)
