from unittest.mock import AsyncMock

import pytest

from pipeline.context import RunContext
from pipeline.orchestrator import GenerationOrchestrator
from pipeline.schemas import (
    AnalysisResult,
    GenerationConfig,
    GenerationStatus,
    ImageAssetPlan,
    KeywordActionPlan,
    TokenUsage,
    CostBreakdown,
)
from shared.models import GenerationRun
from shared.run_store import (
    RunStore,
    apply_snapshot,
    restore_context,
    snapshot_from_context,
    snapshot_from_row,
)

from conftest import FakeGateway, section_title_from

CONFIG = GenerationConfig(title="Pico Laser Guide", sample_outline="A\nB")


def populated_context(settings) -> RunContext:
    ctx = RunContext(settings=settings)
    ctx.run_id = "run-1"
    ctx.status = GenerationStatus.COMPLETED
    ctx.last_config = CONFIG
    ctx.analysis_result = AnalysisResult(keyword_plans=[KeywordActionPlan(word="pico", plan=["intro"])])
    ctx.document = "## A\n\nBody"
    ctx.add_covered_points(["fact one", "fact two"])
    ctx.image_plans = [ImageAssetPlan(id="img_0", generated_prompt="chart", status="done", url="https://img.test/0.png")]
    ctx.add_cost(
        TokenUsage(input_tokens=120, output_tokens=80, total_tokens=200),
        CostBreakdown(total_cost=0.25),
    )
    return ctx


def test_row_mapping_preserves_run_state(settings):
    ctx = populated_context(settings)
    row = GenerationRun(id="run-1")

    apply_snapshot(row, snapshot_from_context(ctx))

    assert row.title == "Pico Laser Guide"
    assert row.status == "completed"
    assert row.config["sample_outline"] == "A\nB"
    assert row.covered_points == ["fact one", "fact two"]
    assert row.image_plans[0]["category"] == "BRANDED_LIFESTYLE"
    assert row.total_cost == pytest.approx(0.25)

    snapshot = snapshot_from_row(row)
    assert snapshot.config == CONFIG
    assert snapshot.analysis.keyword_plans[0].word == "pico"
    assert snapshot.image_plans[0].url == "https://img.test/0.png"


def test_restore_context_rehydrates_write_inputs(settings):
    snapshot = snapshot_from_context(populated_context(settings))
    ctx = RunContext(settings=settings)

    restore_context(ctx, snapshot)

    assert ctx.run_id == "run-1"
    assert ctx.status == GenerationStatus.COMPLETED
    assert ctx.last_config == CONFIG
    assert [p.word for p in ctx.keyword_plans] == ["pico"]
    assert ctx.covered_points == ["fact one", "fact two"]
    assert ctx.usage.total_tokens == 200


@pytest.mark.asyncio
async def test_resume_then_write(settings):
    ready = RunContext(settings=settings)
    ready.run_id = "run-2"
    ready.status = GenerationStatus.ANALYSIS_READY
    ready.last_config = CONFIG
    ready.analysis_result = AnalysisResult()
    snapshot = snapshot_from_context(ready)

    store = RunStore(session_maker=None)
    store.load = AsyncMock(return_value=snapshot)
    store.save = AsyncMock(return_value="run-2")

    ctx = RunContext(settings=settings)
    gateway = FakeGateway({"LLMSectionResponse": lambda p: {"content": f"Body of {section_title_from(p)}."}})
    orchestrator = GenerationOrchestrator(ctx, gateway, run_store=store)

    assert await orchestrator.resume("run-2")
    await orchestrator.write()

    assert ctx.run_id == "run-2"
    assert ctx.status == GenerationStatus.COMPLETED
    assert "Body of B." in ctx.document
    store.save.assert_awaited_once()


@pytest.mark.asyncio
async def test_resume_unknown_run(settings):
    store = RunStore(session_maker=None)
    store.load = AsyncMock(return_value=None)
    orchestrator = GenerationOrchestrator(RunContext(settings=settings), FakeGateway(), run_store=store)

    assert not await orchestrator.resume("missing")
