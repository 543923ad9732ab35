"""
Generation orchestrator: the public two-phase state machine.

    idle -> analyzing -> analysis_ready -> streaming -> completed
                 \\              \\             \\
                  +--------------+-------------+--> error

Callers drive it with analyze(config), then write(); cancel() may be
called at any time and is honored cooperatively by every task. When a
run store is attached, runs are persisted after each phase so write()
can resume in a later process.
"""
import uuid
from typing import Awaitable, Callable, List, Optional, Sequence

import structlog

from .analysis import StaggerStep, run_analysis
from .content_generator import run_content_generation
from .context import RunContext
from .errors import AnalysisRequiredError
from .schemas import AnalysisResult, GenerationConfig, GenerationStatus

logger = structlog.get_logger()

ConfirmCallback = Callable[[List[str]], Awaitable[bool]]


async def _always_confirm(missing: List[str]) -> bool:
    return True


def missing_artifacts(result: AnalysisResult, config: Optional[GenerationConfig] = None) -> List[str]:
    """
    Critical analysis artifacts that are absent or empty.

    Authority only counts as missing when the run was given authority terms.
    """
    missing = []
    structure = result.structure_result.structure
    if not structure or not structure.structure:
        missing.append("structure")
    authority = result.structure_result.authority
    authority_requested = config is None or bool(config.authority_terms.strip())
    if authority_requested and not (authority and (authority.relevant_terms or authority.combinations)):
        missing.append("authority")
    if not result.keyword_plans:
        missing.append("keyword plans")
    return missing


class GenerationOrchestrator:
    """
    Owns one RunContext and moves it through the generation lifecycle.

    Args:
        ctx: Run context (blackboard) shared with every component
        gateway: LLM gateway
        confirm: Async gate called with the missing artifact names before
            writing from a degraded analysis; False aborts back to idle
        run_store: Optional persistence (shared.run_store.RunStore)
        schedule: Optional stagger schedule override for the analysis phase
    """

    def __init__(
        self,
        ctx: RunContext,
        gateway,
        confirm: Optional[ConfirmCallback] = None,
        run_store=None,
        schedule: Optional[Sequence[StaggerStep]] = None,
    ):
        self.ctx = ctx
        self.gateway = gateway
        self.confirm = confirm or _always_confirm
        self.run_store = run_store
        self.schedule = schedule

    async def analyze(self, config: GenerationConfig) -> Optional[AnalysisResult]:
        """
        Phase 1: run the analysis pipeline and store its result.

        Returns the analysis result, or None on error or cancellation.
        """
        ctx = self.ctx
        ctx.reset()
        ctx.run_id = str(uuid.uuid4())
        structlog.contextvars.bind_contextvars(run_id=ctx.run_id)
        ctx.last_config = config
        ctx.set_status(GenerationStatus.ANALYZING)

        try:
            result = await run_analysis(ctx, self.gateway, config, schedule=self.schedule)
        except Exception as e:
            logger.error("analysis_failed", run_id=ctx.run_id, error=str(e))
            ctx.set_step(None)
            ctx.set_status(GenerationStatus.ERROR, error=f"Analysis failed: {e}")
            await self._persist()
            return None

        if ctx.is_stopped():
            logger.info("analysis_cancelled", run_id=ctx.run_id)
            return None

        ctx.analysis_result = result
        ctx.keyword_plans = result.keyword_plans
        ctx.set_status(GenerationStatus.ANALYSIS_READY)
        await self._persist()
        return result

    async def write(self) -> None:
        """
        Phase 2: write the article from the stored analysis.

        Raises:
            AnalysisRequiredError: no stored analysis or config
        """
        ctx = self.ctx
        if ctx.analysis_result is None or ctx.last_config is None:
            error = AnalysisRequiredError()
            ctx.set_status(GenerationStatus.ERROR, error=str(error))
            raise error

        missing = missing_artifacts(ctx.analysis_result, ctx.last_config)
        if missing:
            logger.warning("analysis_incomplete", run_id=ctx.run_id, missing=missing)
            if not await self.confirm(missing):
                logger.info("write_aborted_for_reanalysis", run_id=ctx.run_id)
                ctx.set_status(GenerationStatus.IDLE)
                return

        ctx.cancel_token.reset()
        try:
            await run_content_generation(ctx, self.gateway, ctx.last_config, ctx.analysis_result)
        except Exception as e:
            logger.error("write_failed", run_id=ctx.run_id, error=str(e))
            ctx.set_step(None)
            ctx.set_status(GenerationStatus.ERROR, error=f"Writing failed: {e}")

        await self._persist()

    def cancel(self) -> None:
        """Request cooperative cancellation of whatever is running."""
        logger.info("generation_cancel_requested", run_id=self.ctx.run_id, status=self.ctx.status.value)
        self.ctx.cancel_token.cancel()

    async def resume(self, run_id: str) -> bool:
        """Load a persisted run into the context so write() can continue it."""
        if self.run_store is None:
            raise RuntimeError("No run store configured")
        snapshot = await self.run_store.load(run_id)
        if snapshot is None:
            logger.warning("run_not_found", run_id=run_id)
            return False
        self.run_store.restore(self.ctx, snapshot)
        logger.info("run_resumed", run_id=run_id, status=self.ctx.status.value)
        return True

    async def _persist(self) -> None:
        if self.run_store is None:
            return
        try:
            await self.run_store.save(self.ctx)
        except Exception as e:
            logger.error("run_persist_failed", run_id=self.ctx.run_id, error=str(e))
