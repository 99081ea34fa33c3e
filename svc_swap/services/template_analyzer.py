from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from svc_swap.config import settings
from svc_swap.domain.enums import SlotType
from svc_swap.services import image_io

logger = logging.getLogger(__name__)


class TemplateAnalysisError(RuntimeError):
    pass


ANALYZE_PROMPT = """Analyze this face swap template image and return a single JSON OBJECT (not an array) with exactly this structure:

{
  "title": "short descriptive title (max 50 chars)",
  "description": "scene description (max 150 chars)",
  "prompt": "A detailed face swap prompt. It is sent with two images: the FIRST is the TEMPLATE scene, the SECOND is the USER'S FACE. It must recreate the template scene with the user's face, skin tone and hairstyle from the second image.",
  "bodyType": ["athletic", "slim", "curvy", "plus-size", "average"],
  "style": ["elegant", "casual", "professional", "party", "romantic", "edgy", "vintage", "modern"],
  "mood": ["happy", "confident", "relaxed", "energetic", "mysterious", "playful"],
  "occasion": ["new-year", "birthday", "wedding", "casual", "professional", "date", "party"],
  "framing": "close-up" | "medium" | "full-body" | "portrait",
  "lighting": "natural" | "studio" | "dramatic" | "soft" | "neon",
  "colorPalette": ["warm", "cool", "neutral", "vibrant", "pastel"],
  "setting": ["indoor", "outdoor", "studio"],
  "slots": [
    { "type": "person" | "woman" | "man" | "girl" | "boy" | "baby" | "pet", "label": "optional descriptive label" }
  ]
}

For "slots", list EVERY distinct subject left-to-right. Use the most specific type (woman, man, girl, boy, baby, pet) and "person" when gender or age is unclear. A single-person template has exactly one slot. Add labels only for multi-subject templates (e.g. "Dad", "Mom", "Dog").

For "prompt": say the FIRST image is the template and the SECOND is the user's face; describe pose, outfit, background and lighting without fixing hair color or skin tone; replace the face and adapt hairstyle and skin tone to the user's; keep everything else from the template.

Reply ONLY with the JSON object."""

_VALID_SLOT_TYPES = {s.value for s in SlotType}


def parse_analysis_text(text: str) -> Dict[str, Any]:
    """Model output -> dict. Accepts bare JSON, fenced JSON, or a JSON array (first element)."""
    cleaned = (text or "").strip()
    try:
        parsed: Any = json.loads(cleaned)
    except ValueError:
        cleaned = re.sub(r"```(?:json)?", "", cleaned).strip()
        match = re.search(r"\{[\s\S]*\}", cleaned) or re.search(r"\[[\s\S]*\]", cleaned)
        if not match:
            raise TemplateAnalysisError("Failed to parse JSON from model response")
        try:
            parsed = json.loads(match.group(0))
        except ValueError as e:
            raise TemplateAnalysisError(f"Failed to parse JSON from model response: {e}") from e

    if isinstance(parsed, list):
        parsed = parsed[0] if parsed else {}
    if not isinstance(parsed, dict):
        raise TemplateAnalysisError("model response is not a JSON object")
    return parsed


def sanitize_slots(raw: Any) -> List[Dict[str, Any]]:
    if not isinstance(raw, list):
        return [{"type": SlotType.person.value, "position": 0}]

    slots: List[Dict[str, Any]] = []
    for s in raw:
        if not isinstance(s, dict) or s.get("type") not in _VALID_SLOT_TYPES:
            continue
        slot: Dict[str, Any] = {"type": s["type"], "position": len(slots)}
        if s.get("label"):
            slot["label"] = str(s["label"])
        slots.append(slot)
    return slots


class TemplateAnalyzer:
    """AI metadata auto-fill for new templates."""

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = settings.GEMINI_API_KEY if api_key is None else api_key
        self.model = model or settings.GEMINI_ANALYZE_MODEL
        self.base = settings.GEMINI_BASE_URL.rstrip("/")
        self.timeout = timeout or settings.PROVIDER_TIMEOUT_SECONDS
        self._transport = transport

    @retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4.0),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.TransportError)),
    )
    async def _generate(self, client: httpx.AsyncClient, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base}/models/{self.model}:generateContent"
        r = await client.post(url, params={"key": self.api_key}, json=payload)
        if r.status_code >= 400:
            logger.error("template_analysis_api_error", extra={"status_code": r.status_code, "body": r.text[:500]})
            raise TemplateAnalysisError(f"Gemini API error: {r.status_code}")
        return r.json()

    async def analyze(self, image: str) -> Dict[str, Any]:
        if not self.api_key:
            raise TemplateAnalysisError("GEMINI_API_KEY not configured")

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            data_url = await image_io.ensure_data_url(image, client=client)
            mime, b64 = image_io.split_data_url(data_url)
            payload = {
                "contents": [
                    {
                        "parts": [
                            {"text": ANALYZE_PROMPT},
                            {"inline_data": {"mime_type": mime, "data": b64}},
                        ]
                    }
                ],
                "generationConfig": {
                    "temperature": 0.4,
                    "topK": 32,
                    "topP": 0.95,
                    "maxOutputTokens": 4096,
                    "responseMimeType": "application/json",
                },
            }
            body = await self._generate(client, payload)

        parts = (((body.get("candidates") or [{}])[0] or {}).get("content") or {}).get("parts") or []
        # thinking models emit thought parts before the answer; keep the last non-thought text
        text = ""
        for part in parts:
            if isinstance(part, dict) and part.get("text") and not part.get("thought"):
                text = part["text"]

        analysis = parse_analysis_text(text)
        analysis["slots"] = sanitize_slots(analysis.get("slots"))
        logger.info("template_analyzed", extra={"title": analysis.get("title"), "slots": len(analysis["slots"])})
        return analysis
