import asyncio
import inspect
import re
import time
from typing import Any, Dict, List, NamedTuple

import pytest

from pipeline.config import PipelineSettings
from pipeline.context import RunContext
from pipeline.schemas import CostBreakdown, LLMResult, TokenUsage

SECTION_TITLE_RE = re.compile(r'^Title: "(.*)"$', re.MULTILINE)


def section_title_from(prompt: str) -> str:
    return SECTION_TITLE_RE.search(prompt).group(1)


class Call(NamedTuple):
    kind: str
    name: str
    prompt: str
    started: float


class FakeGateway:
    """
    Scripted stand-in for LLMGateway.

    json_responses maps a response model class name to one of:
    a dict (validated into the model), a model instance, an exception
    (raised), or a callable taking the prompt (sync or async) that returns
    any of those.
    """

    def __init__(
        self,
        json_responses: Dict[str, Any] = None,
        text_response: Any = "Bright, airy product photography.",
        vision_response: Any = "A bright clinic interior.",
        image_response: Any = "https://img.test/generated.png",
    ):
        self.json_responses = json_responses or {}
        self.text_response = text_response
        self.vision_response = vision_response
        self.image_response = image_response
        self.calls: List[Call] = []

    def _record(self, kind: str, name: str, prompt: str):
        self.calls.append(Call(kind, name, prompt, time.monotonic()))

    def calls_named(self, name: str) -> List[Call]:
        return [c for c in self.calls if c.name == name]

    def first_call(self, name: str) -> Call:
        return self.calls_named(name)[0]

    async def _resolve(self, response, prompt):
        if callable(response) and not isinstance(response, type):
            response = response(prompt)
        if inspect.isawaitable(response):
            response = await response
        if isinstance(response, Exception):
            raise response
        return response

    @staticmethod
    def _result(data) -> LLMResult:
        return LLMResult(
            data=data,
            usage=TokenUsage(input_tokens=100, output_tokens=50, total_tokens=150),
            cost=CostBreakdown(input_cost=0.001, output_cost=0.002, total_cost=0.003),
            duration=0.01,
        )

    async def run_json(self, prompt, tier, response_model, max_tokens=8000):
        self._record("json", response_model.__name__, prompt)
        response = await self._resolve(self.json_responses.get(response_model.__name__), prompt)
        if response is None:
            data = response_model()
        elif isinstance(response, dict):
            data = response_model.model_validate(response)
        else:
            data = response
        return self._result(data)

    async def run_text(self, prompt, tier="flash", max_tokens=4000, temperature=None):
        self._record("text", "text", prompt)
        return self._result(await self._resolve(self.text_response, prompt))

    async def run_vision(self, prompt, image_url, tier="flash", max_tokens=1000):
        self._record("vision", "vision", image_url)
        return self._result(await self._resolve(self.vision_response, image_url))

    async def generate_image(self, prompt, aspect_ratio="16:9"):
        self._record("image", "image", prompt)
        return self._result(await self._resolve(self.image_response, prompt))


class RecordingSink:
    def __init__(self):
        self.messages: List[str] = []

    def log(self, message: str) -> None:
        self.messages.append(message)


@pytest.fixture
def settings():
    return PipelineSettings(stagger_unit=0.0, retry_delay=0.0)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def ctx(settings, sink):
    return RunContext(settings=settings, sink=sink)


async def wait_until(predicate, timeout: float = 2.0):
    """Poll the event loop until predicate() is true."""

    async def poll():
        while not predicate():
            await asyncio.sleep(0.001)

    await asyncio.wait_for(poll(), timeout)
