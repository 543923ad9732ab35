import json

import httpx
import pytest

from pipeline.config import PipelineSettings
from pipeline.errors import LLMGatewayError, LLMResponseValidationError
from pipeline.llm import (
    LLMGateway,
    calculate_cost,
    convert_schema_for_gemini,
    extract_json_text,
)
from pipeline.schemas import LLMSectionResponse, ProductBrief, ReferenceAnalysis, TokenUsage


def openai_settings(**overrides):
    values = {
        "llm_provider": "openai",
        "openai_api_key": "sk-test",
        "retry_attempts": 2,
        "retry_delay": 0.0,
        "validation_retries": 1,
    }
    values.update(overrides)
    return PipelineSettings(**values)


def openai_reply(content: str, usage=None) -> httpx.Response:
    body = {"choices": [{"message": {"content": content}}]}
    if usage is not None:
        body["usage"] = usage
    return httpx.Response(200, json=body)


USAGE = {"prompt_tokens": 1000, "completion_tokens": 500, "total_tokens": 1500}


class Recorder:
    """MockTransport handler replaying a fixed list of responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.pop(0)


def gateway_for(recorder, **overrides) -> LLMGateway:
    return LLMGateway(openai_settings(**overrides), transport=httpx.MockTransport(recorder))


# =============================================================================
# Helpers
# =============================================================================

def test_extract_json_text_strips_fences_and_chatter():
    assert extract_json_text('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert extract_json_text('Sure! {"a": 1}') == '{"a": 1}'
    assert extract_json_text('[1, 2]') == '[1, 2]'


def test_calculate_cost_by_tier():
    settings = PipelineSettings()
    usage = TokenUsage(input_tokens=1_000_000, output_tokens=1_000_000, total_tokens=2_000_000)

    pro = calculate_cost(usage, "pro", settings)
    assert pro.input_cost == pytest.approx(1.25)
    assert pro.output_cost == pytest.approx(10.0)
    assert pro.total_cost == pytest.approx(11.25)

    flash = calculate_cost(usage, "flash", settings)
    assert flash.total_cost == pytest.approx(0.60)


def test_convert_schema_for_gemini_inlines_refs():
    schema = convert_schema_for_gemini(ReferenceAnalysis.model_json_schema())
    assert schema["type"] == "object"
    structure_items = schema["properties"]["structure"]["items"]
    assert "title" in structure_items["properties"]
    assert "$defs" not in json.dumps(schema)


# =============================================================================
# run_json / run_text over a mocked provider
# =============================================================================

@pytest.mark.asyncio
async def test_run_json_parses_fenced_reply_and_prices_usage():
    recorder = Recorder(openai_reply('```json\n{"brand_name": "GlowLab"}\n```', USAGE))
    res = await gateway_for(recorder).run_json("parse", "flash", ProductBrief)

    assert res.data.brand_name == "GlowLab"
    assert res.usage.total_tokens == 1500
    assert res.cost.total_cost == pytest.approx(1500 / 1_000_000 * 0.30)

    sent = json.loads(recorder.requests[0].content)
    assert sent["response_format"] == {"type": "json_object"}
    assert recorder.requests[0].headers["Authorization"] == "Bearer sk-test"


@pytest.mark.asyncio
async def test_run_json_reprompts_on_invalid_json():
    recorder = Recorder(
        openai_reply("not json at all", USAGE),
        openai_reply('{"content": "Body", "usedPoints": ["a"]}', USAGE),
    )
    res = await gateway_for(recorder).run_json("write", "flash", LLMSectionResponse)

    assert res.data.used_points == ["a"]
    assert res.usage.total_tokens == 3000
    retry_prompt = json.loads(recorder.requests[1].content)["messages"][0]["content"]
    assert "Your previous response was invalid" in retry_prompt


@pytest.mark.asyncio
async def test_run_json_validation_exhausted():
    recorder = Recorder(openai_reply("nope", USAGE), openai_reply("still nope", USAGE))
    with pytest.raises(LLMResponseValidationError):
        await gateway_for(recorder).run_json("parse", "flash", ProductBrief)
    assert len(recorder.requests) == 2


@pytest.mark.asyncio
async def test_transient_error_is_retried():
    recorder = Recorder(httpx.Response(429, json={"error": "rate limited"}), openai_reply("hello", USAGE))
    res = await gateway_for(recorder).run_text("hi")

    assert res.data == "hello"
    assert len(recorder.requests) == 2


@pytest.mark.asyncio
async def test_transient_errors_exhaust_retries():
    recorder = Recorder(*(httpx.Response(503) for _ in range(3)))
    with pytest.raises(LLMGatewayError) as excinfo:
        await gateway_for(recorder).run_text("hi")

    assert excinfo.value.transient
    assert excinfo.value.provider == "openai"
    assert len(recorder.requests) == 3


@pytest.mark.asyncio
async def test_permanent_error_is_not_retried():
    recorder = Recorder(httpx.Response(400, json={"error": "bad request"}))
    with pytest.raises(LLMGatewayError) as excinfo:
        await gateway_for(recorder).run_text("hi")

    assert not excinfo.value.transient
    assert len(recorder.requests) == 1


@pytest.mark.asyncio
async def test_missing_api_key_fails_without_request():
    recorder = Recorder()
    with pytest.raises(LLMGatewayError):
        await gateway_for(recorder, openai_api_key=None).run_text("hi")
    assert recorder.requests == []


@pytest.mark.asyncio
async def test_usage_is_estimated_when_provider_omits_it():
    recorder = Recorder(openai_reply("x" * 40))
    res = await gateway_for(recorder).run_text("y" * 80)

    assert res.usage.input_tokens == 20
    assert res.usage.output_tokens == 10


@pytest.mark.asyncio
async def test_gemini_text_and_usage():
    def handler(request):
        assert request.headers["x-goog-api-key"] == "g-test"
        assert "gemini-2.5-pro" in request.url.path
        return httpx.Response(200, json={
            "candidates": [{"content": {"parts": [{"text": "Hello "}, {"text": "world"}]}}],
            "usageMetadata": {"promptTokenCount": 10, "candidatesTokenCount": 4, "totalTokenCount": 14},
        })

    settings = PipelineSettings(llm_provider="gemini", google_api_key="g-test", retry_delay=0.0)
    gateway = LLMGateway(settings, transport=httpx.MockTransport(handler))
    res = await gateway.run_text("hi", tier="pro")

    assert res.data == "Hello world"
    assert res.usage.total_tokens == 14
    assert res.cost.input_cost == pytest.approx(10 / 1_000_000 * 1.25)


@pytest.mark.asyncio
async def test_vision_sends_image_url_to_openai():
    recorder = Recorder(openai_reply("A clinic.", USAGE))
    res = await gateway_for(recorder).run_vision("describe", "https://img.test/a.png")

    assert res.data == "A clinic."
    content = json.loads(recorder.requests[0].content)["messages"][0]["content"]
    assert content[1] == {"type": "image_url", "image_url": {"url": "https://img.test/a.png"}}


@pytest.mark.asyncio
async def test_placeholder_image_provider():
    gateway = LLMGateway(PipelineSettings(image_provider="placeholder"))
    res = await gateway.generate_image("a bright clinic", aspect_ratio="1:1")

    assert res.data.startswith("https://placehold.co/1024x1024/")
    assert res.cost.total_cost == 0
