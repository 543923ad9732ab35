"""
Article generation pipeline.

Two-phase workflow: analyze a reference document, then write the article
section by section. See orchestrator.GenerationOrchestrator for the entry
point.
"""

from .config import PipelineSettings

from .context import (
    RunContext,
    CancellationToken,
    StructlogSink,
    NullSink,
)

from .llm import (
    LLMGateway,
    calculate_cost,
)

from .keywords import (
    scan_keywords,
    compute_keyword_cap,
    plan_keywords,
)

from .context_filter import filter_section_context

from .section_generator import (
    build_injection_plan,
    generate_section,
)

from .analysis import (
    run_analysis,
    StaggerStep,
    STAGGER_SCHEDULE,
)

from .content_generator import (
    run_content_generation,
    resolve_sections,
    render_document,
)

from .images import (
    plan_images_for_article,
    generate_images,
)

from .orchestrator import (
    GenerationOrchestrator,
    missing_artifacts,
)

from .errors import (
    PipelineError,
    LLMGatewayError,
    LLMResponseValidationError,
    AnalysisRequiredError,
)

from .schemas import (
    GenerationConfig,
    GenerationStatus,
    AnalysisResult,
    SectionPlan,
    ProductBrief,
    ScrapedImage,
    HeadingOptimization,
)
