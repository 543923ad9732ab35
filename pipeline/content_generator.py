"""
Content generator: write every section in parallel and stream the document.

Sections are resolved from (first match wins) the custom outline, the
extracted reference structure, or a fixed fallback skeleton. One section
task per slot runs concurrently; each writes only its own slot in a
pre-sized body list, and the document is re-rendered in original order
after every completion so partial renders are always well-formed.
"""
import asyncio
from typing import List, Optional, Tuple

import structlog

from .context import RunContext
from .images import generate_images, plan_images_for_article
from .schemas import (
    AnalysisResult,
    GenerationConfig,
    GenerationStatus,
    ReferenceAnalysis,
    SectionPlan,
)
from .section_generator import generate_section
from .utils import clean_heading_text, dedupe, resolve_heading, split_outline, strip_leading_heading

logger = structlog.get_logger()

FALLBACK_SECTIONS = ("Introduction", "Core Concepts", "Benefits", "Applications", "Conclusion")
INTRODUCTION_TITLE = "Introduction"
WRITING_PLACEHOLDER = "_(Writing...)_"

# Extracted intro text shorter than this does not get its own section
MIN_INTRO_CHARS = 10


# =============================================================================
# SECTION RESOLUTION
# =============================================================================

def resolve_sections(
    config: GenerationConfig,
    reference: Optional[ReferenceAnalysis],
) -> Tuple[List[SectionPlan], bool]:
    """
    Decide which sections to write.

    Returns:
        (sections, is_using_custom_outline)
    """
    outline = split_outline(config.sample_outline)
    if outline:
        return [SectionPlan(title=title) for title in outline], True

    if reference and reference.structure:
        sections = [section.model_copy(deep=True) for section in reference.structure]
        intro = (reference.intro_text or "").strip()
        first_title = clean_heading_text(sections[0].title).lower()
        if len(intro) > MIN_INTRO_CHARS and first_title != INTRODUCTION_TITLE.lower():
            sections.insert(0, SectionPlan(
                title=INTRODUCTION_TITLE,
                narrative_plan=[
                    "Open the article the way the reference introduction does, in our own words",
                    intro[:400],
                ],
            ))
        return sections, False

    return [SectionPlan(title=title) for title in FALLBACK_SECTIONS], False


def collect_key_points(reference: Optional[ReferenceAnalysis]) -> List[str]:
    """Union of per-section facts/USP notes and the flat legacy fact lists."""
    if not reference:
        return []
    structured = [
        point
        for section in reference.structure
        for point in (*section.key_facts, *section.usp_notes)
    ]
    legacy = [*reference.key_information_points, *reference.brand_exclusive_points]
    return dedupe([*structured, *legacy])


def render_document(headings: List[str], bodies: List[str], pending: Optional[List[bool]] = None) -> str:
    """
    Render every slot in original order.

    Slots still pending show the placeholder; a finished slot with an
    empty body (failed section) renders as a bare heading.
    """
    if pending is None:
        pending = [not body for body in bodies]
    blocks = []
    for heading, body, is_pending in zip(headings, bodies, pending):
        if body:
            blocks.append(f"## {heading}\n\n{body}")
        elif is_pending:
            blocks.append(f"## {heading}\n\n{WRITING_PLACEHOLDER}")
        else:
            blocks.append(f"## {heading}")
    return "\n\n".join(blocks)


# =============================================================================
# GENERATION
# =============================================================================

async def run_content_generation(
    ctx: RunContext,
    gateway,
    config: GenerationConfig,
    analysis: AnalysisResult,
) -> None:
    """
    Write the article from an analysis result.

    All output goes through ctx (document, status, covered points, cost).
    A failed section leaves its slot empty; cancellation stops new work
    and leaves finished sections in place.
    """
    product = analysis.product_result
    reference = analysis.structure_result.structure
    authority = analysis.structure_result.authority

    sections, is_using_custom_outline = resolve_sections(config, reference)
    titles = [section.title for section in sections]
    headings = [
        resolve_heading(title, ctx.heading_optimizations, is_using_custom_outline) or f"Section {i + 1}"
        for i, title in enumerate(titles)
    ]
    all_key_points = collect_key_points(reference)
    reference_by_title = {s.title: s for s in reference.structure} if reference else {}
    keyword_plans = ctx.keyword_plans or analysis.keyword_plans

    bodies: List[str] = [""] * len(sections)
    pending: List[bool] = [True] * len(sections)

    ctx.set_status(GenerationStatus.STREAMING)
    ctx.set_step("Writing content")
    ctx.set_document(render_document(headings, bodies, pending))
    logger.info(
        "content_generation_started",
        run_id=ctx.run_id,
        sections=len(sections),
        custom_outline=is_using_custom_outline,
        key_points=len(all_key_points),
    )

    async def write_section(index: int, section: SectionPlan) -> None:
        if ctx.is_stopped():
            return

        matched = reference_by_title.get(section.title)
        specific_plan = section.narrative_plan or (matched.narrative_plan if matched else [])
        section_points = dedupe([
            *section.key_facts,
            *section.usp_notes,
            *(matched.key_facts if matched else []),
            *(matched.usp_notes if matched else []),
            *all_key_points,
        ])
        previous = [f"[Preceding Section: {titles[index - 1]}]"] if index > 0 else []

        try:
            result = await generate_section(
                gateway,
                config,
                section.title,
                ctx.settings,
                specific_plan=specific_plan,
                general_plan=reference.general_plan if reference else [],
                keyword_plans=keyword_plans,
                previous_sections=previous,
                future_sections=titles[index + 1:],
                authority=authority,
                key_points=section_points,
                injected_count=ctx.injected_count,
                section_meta=section,
                brief=product.brief,
                mappings=product.mapping,
                reference=reference,
                cancel_token=ctx.cancel_token,
            )
        except Exception as e:
            logger.warning("section_generation_failed", title=section.title, index=index, error=str(e))
            if ctx.is_stopped():
                return
            bodies[index] = ""
            pending[index] = False
            ctx.set_document(render_document(headings, bodies, pending))
            return

        if ctx.is_stopped():
            return

        bodies[index] = strip_leading_heading(result.content)
        pending[index] = False
        ctx.injected_count += result.injected_count
        ctx.add_cost(result.usage, result.cost)
        ctx.add_covered_points(result.used_points)
        ctx.set_document(render_document(headings, bodies, pending))

    await asyncio.gather(*(write_section(i, section) for i, section in enumerate(sections)))

    if ctx.is_stopped():
        logger.info("content_generation_cancelled", run_id=ctx.run_id, written=sum(1 for b in bodies if b))
        return

    ctx.set_document(render_document(headings, bodies, pending))

    if config.auto_image_plan:
        await _run_image_phase(ctx, gateway, config, analysis, "\n\n".join(bodies))
    else:
        ctx.log("Skipping auto image planning")

    ctx.set_step("Finalizing")
    ctx.set_status(GenerationStatus.COMPLETED)
    ctx.set_step(None)
    logger.info(
        "content_generation_completed",
        run_id=ctx.run_id,
        sections=len(sections),
        empty_sections=sum(1 for b in bodies if not b),
        covered_points=len(ctx.covered_points),
        total_tokens=ctx.usage.total_tokens,
        total_cost=round(ctx.cost.total_cost, 6),
    )


async def _run_image_phase(
    ctx: RunContext,
    gateway,
    config: GenerationConfig,
    analysis: AnalysisResult,
    content: str,
) -> None:
    ctx.set_step("Generating images")
    visual = analysis.visual_result
    scraped = visual.analyzed_images or list(config.scraped_images)

    try:
        ctx.log("Planning visual assets...")
        res = await plan_images_for_article(
            gateway,
            content,
            scraped,
            config.target_audience,
            visual.visual_style,
        )
        ctx.add_cost(res.usage, res.cost)
        ctx.image_plans = res.data
        ctx.log(f"Visual plan ready: {len(res.data)} images")

        generated = await generate_images(ctx, gateway, ctx.image_plans, visual.visual_style)
        ctx.log(f"Image generation completed: {generated}/{len(ctx.image_plans)}")
    except Exception as e:
        logger.error("image_phase_failed", error=str(e))
        ctx.log("Image generation failed")
