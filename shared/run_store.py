"""
Persistence for generation runs.

Snapshots the run context after each phase so a stored analysis can be
written from a later process (GenerationOrchestrator.resume).
"""
import uuid
from typing import List, Optional

import structlog
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from pipeline.context import RunContext
from pipeline.schemas import (
    AnalysisResult,
    CostBreakdown,
    GenerationConfig,
    GenerationStatus,
    ImageAssetPlan,
    TokenUsage,
)

from .database import session_scope
from .models import GenerationRun, utc_now

logger = structlog.get_logger()


class RunSnapshot(BaseModel):
    """Serializable view of a RunContext."""
    run_id: str
    status: GenerationStatus = GenerationStatus.IDLE
    error: Optional[str] = None
    config: Optional[GenerationConfig] = None
    analysis: Optional[AnalysisResult] = None
    document: str = ""
    covered_points: List[str] = Field(default_factory=list)
    image_plans: List[ImageAssetPlan] = Field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0
    total_cost: float = 0.0


def snapshot_from_context(ctx: RunContext) -> RunSnapshot:
    return RunSnapshot(
        run_id=ctx.run_id,
        status=ctx.status,
        error=ctx.error,
        config=ctx.last_config,
        analysis=ctx.analysis_result,
        document=ctx.document,
        covered_points=ctx.covered_points,
        image_plans=ctx.image_plans,
        input_tokens=ctx.usage.input_tokens,
        output_tokens=ctx.usage.output_tokens,
        total_cost=ctx.cost.total_cost,
    )


def snapshot_from_row(row: GenerationRun) -> RunSnapshot:
    return RunSnapshot(
        run_id=row.id,
        status=GenerationStatus(row.status),
        error=row.error,
        config=GenerationConfig.model_validate(row.config) if row.config else None,
        analysis=AnalysisResult.model_validate(row.analysis) if row.analysis else None,
        document=row.document or "",
        covered_points=row.covered_points or [],
        image_plans=[ImageAssetPlan.model_validate(p) for p in (row.image_plans or [])],
        input_tokens=row.input_tokens or 0,
        output_tokens=row.output_tokens or 0,
        total_cost=row.total_cost or 0.0,
    )


def apply_snapshot(row: GenerationRun, snapshot: RunSnapshot) -> None:
    row.title = snapshot.config.title if snapshot.config else ""
    row.status = snapshot.status.value
    row.error = snapshot.error
    row.config = snapshot.config.model_dump(mode="json") if snapshot.config else None
    row.analysis = snapshot.analysis.model_dump(mode="json") if snapshot.analysis else None
    row.document = snapshot.document
    row.covered_points = list(snapshot.covered_points)
    row.image_plans = [p.model_dump(mode="json") for p in snapshot.image_plans]
    row.input_tokens = snapshot.input_tokens
    row.output_tokens = snapshot.output_tokens
    row.total_cost = snapshot.total_cost
    row.updated_at = utc_now()


def restore_context(ctx: RunContext, snapshot: RunSnapshot) -> None:
    """Rehydrate a context from a snapshot."""
    ctx.reset()
    ctx.run_id = snapshot.run_id
    ctx.status = snapshot.status
    ctx.error = snapshot.error
    ctx.last_config = snapshot.config
    ctx.analysis_result = snapshot.analysis
    ctx.keyword_plans = snapshot.analysis.keyword_plans if snapshot.analysis else []
    ctx.document = snapshot.document
    ctx.add_covered_points(snapshot.covered_points)
    ctx.image_plans = list(snapshot.image_plans)
    ctx.usage = TokenUsage(
        input_tokens=snapshot.input_tokens,
        output_tokens=snapshot.output_tokens,
        total_tokens=snapshot.input_tokens + snapshot.output_tokens,
    )
    ctx.cost = CostBreakdown(total_cost=snapshot.total_cost)


class RunStore:
    """
    Save and load run snapshots.

    Usage:
        store = RunStore(create_session_maker(create_engine()))
        run_id = await store.save(ctx)
        snapshot = await store.load(run_id)
    """

    def __init__(self, session_maker: async_sessionmaker):
        self.session_maker = session_maker

    async def save(self, ctx: RunContext) -> str:
        """Upsert the context's snapshot. Returns the run id."""
        if ctx.run_id is None:
            ctx.run_id = str(uuid.uuid4())
        snapshot = snapshot_from_context(ctx)

        async with session_scope(self.session_maker) as db:
            result = await db.execute(select(GenerationRun).where(GenerationRun.id == snapshot.run_id))
            row = result.scalar_one_or_none()
            if row is None:
                row = GenerationRun(id=snapshot.run_id)
                db.add(row)
            apply_snapshot(row, snapshot)

        logger.info("run_saved", run_id=snapshot.run_id, status=snapshot.status.value)
        return snapshot.run_id

    async def load(self, run_id: str) -> Optional[RunSnapshot]:
        async with session_scope(self.session_maker) as db:
            result = await db.execute(select(GenerationRun).where(GenerationRun.id == run_id))
            row = result.scalar_one_or_none()
            if row is None:
                return None
            return snapshot_from_row(row)

    def restore(self, ctx: RunContext, snapshot: RunSnapshot) -> None:
        restore_context(ctx, snapshot)
