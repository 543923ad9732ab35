"""
Analysis pipeline: five independent research tasks with staggered starts.

The product task runs first and is awaited alone. After a short settle
delay the remaining four tasks are fanned out together, each waiting its
own start offset from STAGGER_SCHEDULE before doing real work, and all are
joined with a single gather. Offsets are expressed in stagger units
(settings.stagger_unit seconds) so the shared LLM backend never receives
every heavy request in the same instant.

Tasks:
- product: parse brief (if needed) -> pain point mappings
- structure: reference outline + authority terms, concurrently
- visual: describe up to N images sequentially -> visual style
- regional: regional terminology corrections
- keyword: local frequency scan -> capped list -> LLM usage plans
"""
import asyncio
from typing import Awaitable, Callable, Dict, List, NamedTuple, Optional, Sequence

import structlog

from .context import RunContext
from .keywords import compute_keyword_cap, plan_keywords, scan_keywords
from .research import (
    DEFAULT_VISUAL_STYLE,
    analyze_authority_terms,
    analyze_image,
    analyze_reference_structure,
    analyze_visual_style,
    extract_regional_replacements,
    map_problems_to_product,
    parse_product_brief,
)
from .schemas import (
    AnalysisResult,
    GenerationConfig,
    KeywordActionPlan,
    ProductResult,
    RegionalReplacement,
    StructureResult,
    VisualResult,
)
from .utils import summarize_list

logger = structlog.get_logger()

# Raw product text shorter than this is ignored
MIN_PRODUCT_TEXT_CHARS = 5


# =============================================================================
# SCHEDULING POLICY
# =============================================================================

class StaggerStep(NamedTuple):
    task: str
    offset: float  # in stagger units


# Delay between the product task finishing and the fan-out
PRODUCT_SETTLE_UNITS = 1.0

STAGGER_SCHEDULE: Sequence[StaggerStep] = (
    StaggerStep("structure", 0),
    StaggerStep("visual", 1),
    StaggerStep("regional", 2),
    StaggerStep("keyword", 3),
)


# =============================================================================
# TASKS
# =============================================================================

async def _product_task(ctx: RunContext, gateway, config: GenerationConfig) -> ProductResult:
    brief = config.product_brief

    if not brief and len((config.product_raw_text or "").strip()) > MIN_PRODUCT_TEXT_CHARS:
        ctx.set_step("Parsing product brief")
        res = await parse_product_brief(gateway, config.product_raw_text)
        ctx.add_cost(res.usage, res.cost)
        brief = res.data
        ctx.log(f"Product parsed: {brief.brand_name or 'unknown brand'} / {brief.product_name or 'unknown product'}")

    if ctx.is_stopped():
        return ProductResult(brief=brief)

    mapping = []
    if brief and brief.product_name:
        ctx.set_step("Mapping pain points to product")
        res = await map_problems_to_product(gateway, brief, config.title, config.target_audience)
        ctx.add_cost(res.usage, res.cost)
        mapping = res.data
        ctx.log(f"Product mapping: {summarize_list([m.pain_point for m in mapping])}")

    return ProductResult(brief=brief, mapping=mapping)


async def _structure_task(ctx: RunContext, gateway, config: GenerationConfig) -> StructureResult:
    ctx.log("Analyzing reference structure and authority terms")

    async def structure():
        if not (config.reference_content or "").strip():
            return None
        res = await analyze_reference_structure(gateway, config.reference_content, config.target_audience)
        ctx.add_cost(res.usage, res.cost)
        return res.data

    async def authority():
        res = await analyze_authority_terms(
            gateway,
            config.authority_terms,
            config.title,
            config.reference_content,
            config.target_audience,
            ctx.settings,
        )
        ctx.add_cost(res.usage, res.cost)
        return res.data

    structure_data, authority_data = await asyncio.gather(structure(), authority())

    if structure_data:
        ctx.log(
            f"Structure: {len(structure_data.structure)} sections "
            f"({summarize_list([s.title for s in structure_data.structure])})"
        )
    if authority_data and authority_data.relevant_terms:
        ctx.log(f"Authority terms: {summarize_list(authority_data.relevant_terms)}")

    return StructureResult(structure=structure_data, authority=authority_data)


async def _visual_task(ctx: RunContext, gateway, config: GenerationConfig) -> VisualResult:
    images = config.scraped_images[:ctx.settings.max_analyzed_images]
    if not images:
        return VisualResult()

    ctx.log(f"Analyzing {len(images)} images")
    analyzed = []

    # Sequential on purpose: vision calls are the heaviest requests
    for index, image in enumerate(images):
        if ctx.is_stopped():
            break
        try:
            res = await analyze_image(gateway, image)
            ctx.add_cost(res.usage, res.cost)
            analyzed.append(image.model_copy(update={"ai_description": res.data}))
        except Exception as e:
            logger.warning("image_analysis_failed", index=index, url=image.url, error=str(e))
            ctx.log(f"Image {index + 1} analysis failed, skipping")

    if ctx.is_stopped():
        return VisualResult(analyzed_images=analyzed)

    try:
        res = await analyze_visual_style(gateway, analyzed, config.website_type)
        ctx.add_cost(res.usage, res.cost)
        style = res.data
    except Exception as e:
        logger.warning("visual_style_failed", error=str(e))
        style = DEFAULT_VISUAL_STYLE

    ctx.log("Visual style ready")
    return VisualResult(analyzed_images=analyzed, visual_style=style)


async def _regional_task(ctx: RunContext, gateway, config: GenerationConfig) -> List[RegionalReplacement]:
    try:
        res = await extract_regional_replacements(gateway, config.reference_content, config.target_audience)
    except Exception as e:
        logger.warning("regional_analysis_failed", error=str(e))
        return []

    ctx.add_cost(res.usage, res.cost)
    replacements = res.data or []
    ctx.log(f"Regional terms: {len(replacements)} replacements")
    return replacements


async def _keyword_task(ctx: RunContext, gateway, config: GenerationConfig) -> List[KeywordActionPlan]:
    settings = ctx.settings
    reference = config.reference_content or ""

    scanned = scan_keywords(reference)
    cap = compute_keyword_cap(
        len(reference),
        settings.keyword_char_divisor,
        settings.min_keywords,
        settings.max_keywords,
    )
    candidates = [item["token"] for item in scanned[:cap]]
    ctx.log(f"Keywords found: {summarize_list(candidates)}")

    if not candidates or ctx.is_stopped():
        return []

    try:
        res = await plan_keywords(gateway, candidates, reference, config.target_audience)
    except Exception as e:
        logger.warning("keyword_planning_failed", error=str(e))
        ctx.log("Keyword planning failed, continuing without keyword plans")
        return []

    ctx.add_cost(res.usage, res.cost)
    ctx.keyword_plans = res.data
    ctx.log(f"Keyword plans ready: {len(res.data)}")
    return res.data


TaskFn = Callable[[RunContext, object, GenerationConfig], Awaitable]

ANALYSIS_TASKS: Dict[str, TaskFn] = {
    "structure": _structure_task,
    "visual": _visual_task,
    "regional": _regional_task,
    "keyword": _keyword_task,
}


# =============================================================================
# PIPELINE
# =============================================================================

async def run_analysis(
    ctx: RunContext,
    gateway,
    config: GenerationConfig,
    schedule: Optional[Sequence[StaggerStep]] = None,
) -> AnalysisResult:
    """
    Run every analysis task and merge their outputs.

    Cancellation is cooperative: each task checks ctx.is_stopped() at its
    step boundaries and returns whatever it has. The caller decides what
    to do with a result produced after cancellation.

    Raises:
        Exception: product or structure extraction failed; the other tasks
        degrade to empty output instead of raising
    """
    unit = ctx.settings.stagger_unit
    schedule = schedule or STAGGER_SCHEDULE

    logger.info("analysis_started", run_id=ctx.run_id, title=config.title)
    ctx.set_step("Analyzing product")

    product_result = await _product_task(ctx, gateway, config)
    if ctx.is_stopped():
        return AnalysisResult(product_result=product_result)

    await asyncio.sleep(PRODUCT_SETTLE_UNITS * unit)

    async def staggered(step: StaggerStep):
        if step.offset:
            await asyncio.sleep(step.offset * unit)
        if ctx.is_stopped():
            return None
        return await ANALYSIS_TASKS[step.task](ctx, gateway, config)

    ctx.set_step("Running analysis tasks")
    outcomes = await asyncio.gather(*(staggered(step) for step in schedule), return_exceptions=True)
    results = dict(zip((step.task for step in schedule), outcomes))

    for name, outcome in results.items():
        if isinstance(outcome, BaseException):
            logger.error("analysis_task_failed", task=name, error=str(outcome))
            raise outcome

    structure_result = results.get("structure") or StructureResult()
    visual_result = results.get("visual") or VisualResult()
    regional = results.get("regional") or []
    keyword_plans = results.get("keyword") or []

    # Regional findings only reach the writer through the structure
    if structure_result.structure:
        structure_result.structure.regional_replacements = regional
    elif regional:
        logger.warning("regional_replacements_without_structure", count=len(regional))

    ctx.set_step(None)
    logger.info(
        "analysis_completed",
        run_id=ctx.run_id,
        sections=len(structure_result.structure.structure) if structure_result.structure else 0,
        keyword_plans=len(keyword_plans),
        images=len(visual_result.analyzed_images),
        regional=len(regional),
        total_cost=round(ctx.cost.total_cost, 6),
    )

    return AnalysisResult(
        product_result=product_result,
        structure_result=structure_result,
        keyword_plans=keyword_plans,
        visual_result=visual_result,
        regional_replacements=regional,
    )
