import json

import httpx
import pytest

from svc_swap.services.template_analyzer import (
    TemplateAnalysisError,
    TemplateAnalyzer,
    parse_analysis_text,
    sanitize_slots,
)
from svc_swap.test.conftest import png_data_url


@pytest.mark.parametrize(
    "text",
    [
        '{"title": "Beach"}',
        '```json\n{"title": "Beach"}\n```',
        'Here you go: {"title": "Beach"} hope it helps',
        '[{"title": "Beach"}, {"title": "Other"}]',
    ],
)
def test_parse_analysis_text_variants(text):
    assert parse_analysis_text(text)["title"] == "Beach"


def test_parse_analysis_text_rejects_garbage():
    with pytest.raises(TemplateAnalysisError):
        parse_analysis_text("no json here")


def test_sanitize_slots():
    raw = [
        {"type": "woman", "label": "Mom"},
        {"type": "robot"},
        "junk",
        {"type": "pet", "label": "Dog"},
    ]
    assert sanitize_slots(raw) == [
        {"type": "woman", "position": 0, "label": "Mom"},
        {"type": "pet", "position": 1, "label": "Dog"},
    ]
    assert sanitize_slots(None) == [{"type": "person", "position": 0}]


@pytest.mark.asyncio
async def test_analyze_uses_last_non_thought_part():
    answer = {
        "title": "Birthday",
        "occasion": ["birthday"],
        "slots": [{"type": "man"}, {"type": "baby", "label": "Baby"}],
    }
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "candidates": [
                    {
                        "content": {
                            "parts": [
                                {"text": "thinking about it", "thought": True},
                                {"text": json.dumps(answer)},
                            ]
                        }
                    }
                ]
            },
        )

    analyzer = TemplateAnalyzer(api_key="k", transport=httpx.MockTransport(handler))
    result = await analyzer.analyze(png_data_url(8, 8))

    assert result["title"] == "Birthday"
    assert [s["type"] for s in result["slots"]] == ["man", "baby"]
    parts = captured["body"]["contents"][0]["parts"]
    assert parts[1]["inline_data"]["mime_type"] == "image/png"
    assert captured["body"]["generationConfig"]["responseMimeType"] == "application/json"


@pytest.mark.asyncio
async def test_analyze_api_error():
    analyzer = TemplateAnalyzer(api_key="k", transport=httpx.MockTransport(lambda r: httpx.Response(403)))
    with pytest.raises(TemplateAnalysisError):
        await analyzer.analyze(png_data_url(8, 8))


@pytest.mark.asyncio
async def test_analyze_without_key():
    with pytest.raises(TemplateAnalysisError):
        await TemplateAnalyzer(api_key="").analyze(png_data_url(8, 8))
