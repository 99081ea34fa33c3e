import json

import httpx
import pytest

from svc_swap.domain.enums import ProviderName
from svc_swap.domain.errors import ProviderError
from svc_swap.services.providers.base import FaceSwapInput, FaceSwapResult
from svc_swap.services.providers.gemini_provider import (
    GEMINI_API_ERROR,
    GEMINI_NO_IMAGE,
    GeminiFaceSwapProvider,
    build_gemini_prompt,
    build_slot_instructions,
)
from svc_swap.services.providers.replicate_provider import ReplicateFaceSwapProvider
from svc_swap.services.providers.router import FaceSwapProviderRouter, pick_provider
from svc_swap.services.providers.wavespeed_provider import (
    wavespeed_face_provider,
    wavespeed_hair_face_provider,
)
from svc_swap.test.conftest import png_bytes, png_data_url


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def _input(**kwargs) -> FaceSwapInput:
    defaults = dict(target_image=png_data_url(8, 8), source_image=png_data_url(4, 4), prompt="swap it")
    defaults.update(kwargs)
    return FaceSwapInput(**defaults)


def _gemini_text_response():
    return {"candidates": [{"content": {"parts": [{"text": "I cannot do that"}]}, "finishReason": "STOP"}]}


def _gemini_image_response(data="QUJD", mime="image/png"):
    return {"candidates": [{"content": {"parts": [{"inlineData": {"mimeType": mime, "data": data}}]}}]}


def _gemini(handler, sleep, **kwargs) -> GeminiFaceSwapProvider:
    return GeminiFaceSwapProvider(
        api_key="k",
        model="test-model",
        base_url="https://gemini.test/v1beta",
        max_attempts=kwargs.pop("max_attempts", 2),
        retry_delay_seconds=kwargs.pop("retry_delay_seconds", 2.0),
        sleep=sleep,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Gemini
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_gemini_retries_text_then_succeeds():
    """Attempt 1 answers with text, attempt 2 with an image; exactly one delay"""
    responses = [_gemini_text_response(), _gemini_image_response()]
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=responses.pop(0))

    sleep = SleepRecorder()
    result = await _gemini(handler, sleep).swap(_input())

    assert result.result_image == "data:image/png;base64,QUJD"
    assert result.meta["attempts"] == 2
    assert sleep.delays == [2.0]
    assert len(seen) == 2
    assert seen[0].url.params["key"] == "k"
    assert seen[0].url.path.endswith("/models/test-model:generateContent")


@pytest.mark.asyncio
async def test_gemini_gives_up_after_max_attempts():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_gemini_text_response())

    sleep = SleepRecorder()
    with pytest.raises(ProviderError) as exc:
        await _gemini(handler, sleep, max_attempts=3).swap(_input())

    assert exc.value.reason == GEMINI_NO_IMAGE
    assert exc.value.code == "PROVIDER_ERROR"
    assert len(sleep.delays) == 2


@pytest.mark.asyncio
async def test_gemini_http_error_is_api_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    with pytest.raises(ProviderError) as exc:
        await _gemini(handler, SleepRecorder(), max_attempts=1).swap(_input())
    assert exc.value.reason == GEMINI_API_ERROR


@pytest.mark.asyncio
async def test_gemini_payload_has_prompt_and_both_images():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json=_gemini_image_response())

    await _gemini(handler, SleepRecorder()).swap(_input())

    parts = captured["body"]["contents"][0]["parts"]
    assert parts[0]["text"].startswith("swap it")
    assert "CRITICAL INSTRUCTIONS" in parts[0]["text"]
    assert parts[1]["inlineData"]["mimeType"] == "image/png"
    assert parts[2]["inlineData"]["mimeType"] == "image/png"
    assert captured["body"]["generationConfig"]["responseModalities"] == ["IMAGE"]


@pytest.mark.asyncio
async def test_gemini_without_key_is_not_configured():
    provider = GeminiFaceSwapProvider(api_key="", transport=httpx.MockTransport(lambda r: httpx.Response(500)))
    with pytest.raises(ProviderError) as exc:
        await provider.swap(_input())
    assert exc.value.reason == "PROVIDER_NOT_CONFIGURED"


def test_slot_instructions():
    assert build_slot_instructions(_input()) == ""

    group = _input(is_group_swap=True, face_index=1, total_faces=3, slot_type="woman", slot_label="Mom")
    text = build_slot_instructions(group)
    assert "face 2 of 3" in text
    assert "Mom" in text

    pet = _input(is_group_swap=True, face_index=2, total_faces=3, slot_type="pet", slot_label="Dog")
    assert "PET" in build_slot_instructions(pet)
    assert build_gemini_prompt(pet).endswith(build_slot_instructions(pet))


# ---------------------------------------------------------------------------
# WaveSpeed / Replicate
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_wavespeed_face_swap(stager):
    result_png = png_bytes(16, 16)
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            captured["url"] = str(request.url)
            captured["body"] = json.loads(request.content)
            captured["auth"] = request.headers["authorization"]
            return httpx.Response(200, json={"data": {"outputs": ["https://cdn.test/out.png"]}})
        return httpx.Response(200, content=result_png, headers={"content-type": "image/png"})

    provider = wavespeed_face_provider(
        stager, api_key="ws", base_url="https://ws.test/api", transport=httpx.MockTransport(handler)
    )
    result = await provider.swap(_input(is_group_swap=True, face_index=1, total_faces=2))

    assert captured["url"] == "https://ws.test/api/image-face-swap-pro"
    assert captured["auth"] == "Bearer ws"
    assert captured["body"]["enable_sync_mode"] is True
    assert captured["body"]["target_index"] == 1
    assert captured["body"]["image"].startswith("https://blob.test/temp/wsf-target/")
    assert captured["body"]["face_image"].startswith("https://blob.test/temp/wsf-source/")
    assert result.result_image.startswith("data:image/png;base64,")
    assert result.provider == "wavespeed-face"


@pytest.mark.asyncio
async def test_wavespeed_hair_face_no_output(stager):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": {"outputs": []}})

    provider = wavespeed_hair_face_provider(
        stager, api_key="ws", base_url="https://ws.test/api", transport=httpx.MockTransport(handler)
    )
    with pytest.raises(ProviderError) as exc:
        await provider.swap(_input())
    assert exc.value.reason == "WAVESPEED_NO_OUTPUT"
    assert provider.endpoint == "image-head-swap"


@pytest.mark.asyncio
async def test_replicate_polls_until_succeeded(stager):
    result_png = png_bytes(16, 16)
    polls = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            body = json.loads(request.content)
            assert set(body["input"]) == {"swap_image", "input_image"}
            return httpx.Response(
                201,
                json={"id": "p1", "status": "starting", "urls": {"get": "https://rep.test/v1/predictions/p1"}},
            )
        if request.url.host == "rep.test":
            polls.append(request)
            status = "processing" if len(polls) < 2 else "succeeded"
            return httpx.Response(
                200,
                json={
                    "id": "p1",
                    "status": status,
                    "output": "https://cdn.test/r.png" if status == "succeeded" else None,
                    "urls": {"get": "https://rep.test/v1/predictions/p1"},
                },
            )
        return httpx.Response(200, content=result_png, headers={"content-type": "image/png"})

    sleep = SleepRecorder()
    provider = ReplicateFaceSwapProvider(
        stager=stager,
        api_token="r",
        base_url="https://rep.test/v1",
        sleep=sleep,
        transport=httpx.MockTransport(handler),
    )
    result = await provider.swap(_input())

    assert len(polls) == 2
    assert len(sleep.delays) == 2
    assert result.meta["prediction_id"] == "p1"
    assert result.result_image.startswith("data:image/png;base64,")


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "configured, expected",
    [
        ("gemini", ProviderName.gemini),
        ("wavespeed-face", ProviderName.wavespeed_face),
        ("WAVESPEED-HAIR-FACE", ProviderName.wavespeed_hair_face),
        ("replicate", ProviderName.replicate),
        ("fal", ProviderName.gemini),
        ("", ProviderName.gemini),
        (None, ProviderName.gemini),
    ],
)
def test_pick_provider_falls_back_to_gemini(configured, expected):
    assert pick_provider(configured) == expected


class _Fake:
    def __init__(self, name, error=None):
        self.provider_name = name
        self.error = error

    async def swap(self, data):
        if self.error:
            raise self.error
        return FaceSwapResult(result_image="data:image/png;base64,AA", provider=self.provider_name)


@pytest.mark.asyncio
async def test_router_dispatches_to_configured_provider(stager):
    router = FaceSwapProviderRouter(
        stager,
        configured="wavespeed-face",
        providers={ProviderName.wavespeed_face: _Fake("wavespeed-face"), ProviderName.gemini: _Fake("gemini")},
    )
    result = await router.perform_face_swap(_input())
    assert result.provider == "wavespeed-face"


@pytest.mark.asyncio
async def test_router_wraps_unexpected_errors(stager):
    router = FaceSwapProviderRouter(
        stager,
        configured="gemini",
        providers={ProviderName.gemini: _Fake("gemini", error=KeyError("data"))},
    )
    with pytest.raises(ProviderError) as exc:
        await router.perform_face_swap(_input())
    assert exc.value.code == "PROVIDER_ERROR"


@pytest.mark.asyncio
async def test_request_provider_overrides_configured(stager):
    router = FaceSwapProviderRouter(
        stager,
        configured="gemini",
        providers={ProviderName.replicate: _Fake("replicate"), ProviderName.gemini: _Fake("gemini")},
    )
    result = await router.perform_face_swap(_input(provider="replicate"))
    assert result.provider == "replicate"
