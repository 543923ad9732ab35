"""
Run context: the session blackboard shared by every pipeline stage.

One RunContext lives for one analyze + write cycle. Components receive it
by reference and only touch it through the narrow operations below, so the
caller (UI, CLI, API handler) can observe status, the streaming document,
covered points and cost as they change.
"""
from typing import Callable, Dict, Iterable, List, Optional, Protocol

import structlog

from .config import PipelineSettings
from .schemas import (
    AnalysisResult,
    CostBreakdown,
    GenerationConfig,
    GenerationStatus,
    HeadingOptimization,
    ImageAssetPlan,
    KeywordActionPlan,
    TokenUsage,
)

logger = structlog.get_logger()


# =============================================================================
# CANCELLATION
# =============================================================================

class CancellationToken:
    """Cooperative cancellation flag, polled at every step boundary."""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    def reset(self) -> None:
        self._cancelled = False

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled


# =============================================================================
# PROGRESS SINKS
# =============================================================================

class ProgressSink(Protocol):
    def log(self, message: str) -> None:
        ...


class StructlogSink:
    """Default sink: forwards progress lines to structlog."""

    def log(self, message: str) -> None:
        logger.info("analysis_progress", message=message)


class NullSink:
    def log(self, message: str) -> None:
        pass


# =============================================================================
# RUN CONTEXT
# =============================================================================

DocumentListener = Callable[[str], None]


class RunContext:
    """
    Mutable state for one generation run.

    Stores:
    - status / step: lifecycle and the human-readable current step
    - document: the rendered article, rewritten as sections complete
    - last_config / analysis_result: what Write replays
    - keyword_plans, heading_optimizations, image_plans
    - covered_points: insertion-ordered set of facts used so far
    - usage / cost: accumulated across every LLM call
    """

    def __init__(
        self,
        settings: Optional[PipelineSettings] = None,
        sink: Optional[ProgressSink] = None,
        cancel_token: Optional[CancellationToken] = None,
    ):
        self.settings = settings or PipelineSettings.from_env()
        self.sink = sink or StructlogSink()
        self.cancel_token = cancel_token or CancellationToken()
        self.run_id: Optional[str] = None

        self.status = GenerationStatus.IDLE
        self.step: Optional[str] = None
        self.error: Optional[str] = None
        self.document = ""
        self.last_config: Optional[GenerationConfig] = None
        self.analysis_result: Optional[AnalysisResult] = None
        self.keyword_plans: List[KeywordActionPlan] = []
        self.heading_optimizations: List[HeadingOptimization] = []
        self.image_plans: List[ImageAssetPlan] = []
        self.injected_count = 0
        self.usage = TokenUsage()
        self.cost = CostBreakdown()
        self._covered_points: Dict[str, None] = {}
        self._document_listeners: List[DocumentListener] = []

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def reset(self) -> None:
        """Clear every downstream store before a new analysis."""
        self.status = GenerationStatus.IDLE
        self.step = None
        self.error = None
        self.document = ""
        self.analysis_result = None
        self.keyword_plans = []
        self.image_plans = []
        self.injected_count = 0
        self.usage = TokenUsage()
        self.cost = CostBreakdown()
        self._covered_points = {}
        self.cancel_token.reset()

    def set_status(self, status: GenerationStatus, error: Optional[str] = None) -> None:
        self.status = status
        self.error = error
        logger.info("generation_status_changed", run_id=self.run_id, status=status.value, error=error)

    def set_step(self, step: Optional[str]) -> None:
        self.step = step

    def is_stopped(self) -> bool:
        return self.cancel_token.is_cancelled

    # -------------------------------------------------------------------------
    # Document
    # -------------------------------------------------------------------------

    def on_document(self, listener: DocumentListener) -> None:
        """Register a callback invoked with every re-rendered document."""
        self._document_listeners.append(listener)

    def set_document(self, text: str) -> None:
        self.document = text
        for listener in self._document_listeners:
            try:
                listener(text)
            except Exception as e:
                logger.warning("document_listener_failed", error=str(e))

    # -------------------------------------------------------------------------
    # Covered points
    # -------------------------------------------------------------------------

    @property
    def covered_points(self) -> List[str]:
        return list(self._covered_points)

    def add_covered_points(self, points: Iterable[str]) -> None:
        """Append newly used facts; duplicates are ignored."""
        for point in points:
            if point and point not in self._covered_points:
                self._covered_points[point] = None

    # -------------------------------------------------------------------------
    # Metrics
    # -------------------------------------------------------------------------

    def add_cost(self, usage: Optional[TokenUsage], cost: Optional[CostBreakdown]) -> None:
        if usage:
            self.usage = self.usage.add(usage)
        if cost:
            self.cost = self.cost.add(cost)

    # -------------------------------------------------------------------------
    # Progress log
    # -------------------------------------------------------------------------

    def log(self, message: str) -> None:
        """Fire-and-forget progress line. Sink failures never propagate."""
        try:
            self.sink.log(message)
        except Exception as e:
            logger.warning("progress_sink_failed", error=str(e))
