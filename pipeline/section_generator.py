"""
Section generator: one structured LLM call per article section.

Steps:
1. Cap keyword plans, filter facts/terms for the section
2. Build the commercial injection plan when a product brief exists
3. Assemble the prompt with negative constraints (other sections, dropped facts)
4. Demote H1/H2 in the returned markup and report the facts actually used
"""
from typing import List, Optional, Sequence

import structlog

from .config import PipelineSettings
from .context import CancellationToken
from .context_filter import filter_section_context
from .llm import response_schema_hint
from .prompts import SECTION_CONTENT_PROMPT, get_language_instruction
from .schemas import (
    AuthorityAnalysis,
    GenerationConfig,
    KeywordActionPlan,
    LLMSectionResponse,
    ProblemProductMapping,
    ProductBrief,
    ReferenceAnalysis,
    SectionPlan,
    SectionResult,
)
from .utils import dedupe, normalize_heading_levels

logger = structlog.get_logger()

SOLUTION_TITLE_MARKERS = ("solution", "benefit", "guide", "how")

# Force a brand mention near the end when it has appeared this many times or fewer
FORCE_INJECTION_THRESHOLD = 2


# =============================================================================
# INJECTION PLAN
# =============================================================================

def build_injection_plan(
    section_title: str,
    brief: Optional[ProductBrief],
    mappings: Sequence[ProblemProductMapping] = (),
    reference: Optional[ReferenceAnalysis] = None,
    injected_count: int = 0,
    is_last_sections: bool = False,
) -> str:
    """
    Instructional text steering how the brand appears in this section.

    Returns an empty string when there is no product to promote.
    """
    if not brief or not brief.product_name:
        return ""

    title_lower = section_title.lower()
    force_injection = is_last_sections and injected_count <= FORCE_INJECTION_THRESHOLD
    is_solution_section = any(marker in title_lower for marker in SOLUTION_TITLE_MARKERS)

    relevant = [
        m for m in mappings
        if any(kw.lower() in title_lower for kw in m.relevance_keywords if kw)
    ]
    if relevant:
        final_mappings = relevant
    elif force_injection or is_solution_section:
        final_mappings = list(mappings[:2])
    else:
        final_mappings = []

    competitor_brands = reference.competitor_brands if reference else []
    competitor_products = reference.competitor_products if reference else []
    replacement_rules = reference.replacement_rules if reference else []
    targets = dedupe([*competitor_brands, *competitor_products, *replacement_rules])

    lines = ["### COMMERCIAL & SERVICE STRATEGY (HIGH PRIORITY)"]

    if targets:
        quoted = ", ".join(f'"{t}"' for t in targets)
        example_product = competitor_products[0] if competitor_products else "OldMachine"
        lines += [
            "",
            "**SANITIZATION PROTOCOL (ABSOLUTE RULES):**",
            f'You are writing for the brand: **"{brief.brand_name}"**.',
            f"The reference text mentions competitors: {quoted}.",
            "1. **TOTAL ANNIHILATION:** Never output these competitor words in the final text.",
            f'2. **NO HYBRIDS:** Do NOT write "CompName as {brief.brand_name}". That is nonsense.',
            "3. **SUBJECT SWAP (SEMANTIC REWRITE):**",
            f'   - If the reference says: "{targets[0]} offers the best..."',
            f'   - REWRITE AS: "**{brief.brand_name}** offers the best..." (change the subject).',
            f'   - If the reference discusses a specific product (e.g., "{example_product}"), '
            f'replace it with **"{brief.product_name}"**.',
        ]

    lines += [
        "",
        "**DENSITY CONTROL (AVOID KEYWORD STUFFING):**",
        f'- Full Name Rule: use the full product name "**{brief.product_name}**" MAXIMUM ONCE in this section.',
        "- Natural Variation: for subsequent mentions you MUST vary:",
        f'  - The brand name: "**{brief.brand_name}**"',
        '  - Pronouns: "We", "Our team"',
        '  - Generic: "This technology", "Our service"',
    ]

    if force_injection:
        lines += [
            "",
            f'**MANDATORY INJECTION:** You have NOT mentioned "{brief.brand_name}" enough yet. '
            "You MUST introduce it here as the solution.",
        ]

    if final_mappings:
        lines += ["", "**PROBLEM-SOLUTION WEAVING:**", "Integrate the following mapping naturally:"]
        for m in final_mappings:
            lines.append(
                f'- Discuss "{m.pain_point}" -> then present **{brief.brand_name}** '
                f"(or {brief.product_name}) as the solution using [{m.product_feature}]."
            )

    lines += [
        "",
        f"**CTA:** End with a natural link: [{brief.cta_link}] "
        f"(anchor: check {brief.brand_name} pricing / details).",
    ]
    return "\n".join(lines)


# =============================================================================
# SECTION GENERATION
# =============================================================================

def _bullets(items: Sequence[str]) -> str:
    return "\n".join(f"- {item}" for item in items) if items else "- none"


def _format_keyword_plans(plans: Sequence[KeywordActionPlan]) -> str:
    if not plans:
        return "- none"
    return "\n".join(f"- {p.word}: {'; '.join(p.plan) or 'use naturally'}" for p in plans)


async def generate_section(
    gateway,
    config: GenerationConfig,
    section_title: str,
    settings: PipelineSettings,
    specific_plan: Optional[Sequence[str]] = None,
    general_plan: Optional[Sequence[str]] = None,
    keyword_plans: Sequence[KeywordActionPlan] = (),
    previous_sections: Sequence[str] = (),
    future_sections: Sequence[str] = (),
    authority: Optional[AuthorityAnalysis] = None,
    key_points: Sequence[str] = (),
    injected_count: int = 0,
    section_meta: Optional[SectionPlan] = None,
    brief: Optional[ProductBrief] = None,
    mappings: Sequence[ProblemProductMapping] = (),
    reference: Optional[ReferenceAnalysis] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> SectionResult:
    """
    Write one section.

    Args:
        gateway: LLM gateway
        config: Generation config (title, audience, knowledge base)
        section_title: Title of the section being written
        settings: Pipeline settings
        specific_plan: Narrative steps for this section
        general_plan: Article-wide directives
        keyword_plans: Keyword usage plans (capped before prompting)
        previous_sections / future_sections: Topics owned by other sections
        authority: Authority analysis (terms are filtered per section)
        key_points: Candidate facts
        injected_count: Brand mentions so far
        section_meta: Section plan metadata (facts, hints, difficulty)
        brief / mappings / reference: Commercial context
        cancel_token: Checked by the context filter and again before the section call

    Returns:
        SectionResult with filter + generation usage and cost combined

    Raises:
        Exception: any gateway failure; the caller substitutes an empty body
    """
    meta = section_meta or SectionPlan(title=section_title)
    is_last_sections = len(future_sections) <= 1
    keyword_plans_for_prompt = list(keyword_plans)[:settings.semantic_keyword_limit]

    knowledge_base = config.brand_knowledge
    if config.use_rag and config.reference_content:
        knowledge_base = f"{knowledge_base}\n\n{config.reference_content}".strip()

    context_filter = await filter_section_context(
        gateway,
        section_title,
        list(key_points),
        authority.relevant_terms if authority else [],
        knowledge_base,
        config.target_audience,
        settings,
        cancel_token=cancel_token,
    )

    if cancel_token and cancel_token.is_cancelled:
        logger.info("section_skipped_cancelled", title=section_title)
        return SectionResult(
            usage=context_filter.usage,
            cost=context_filter.cost,
            duration=context_filter.duration,
        )

    relevant_points = dedupe([*meta.key_facts, *meta.usp_notes, *meta.augment, *context_filter.filtered_points])
    dropped_points: List[str] = [p for p in key_points if p not in relevant_points]

    injection_plan = build_injection_plan(
        section_title,
        brief,
        mappings,
        reference,
        injected_count=injected_count,
        is_last_sections=is_last_sections,
    )

    avoid_content = dedupe([*future_sections, *previous_sections, *dropped_points, *meta.suppress])
    regional = reference.regional_replacements if reference else []

    prompt = SECTION_CONTENT_PROMPT.format(
        article_title=config.title,
        section_title=section_title,
        core_question=meta.core_question or "n/a",
        difficulty=meta.difficulty,
        writing_mode=meta.writing_mode,
        solution_angles=", ".join(meta.solution_angles) or "n/a",
        subheadings=", ".join(meta.subheadings) or "n/a",
        general_plan=_bullets(list(general_plan or [])),
        specific_plan=_bullets(list(specific_plan or [])),
        points=_bullets(relevant_points),
        kb_insights=_bullets(context_filter.knowledge_insights),
        auth_terms=", ".join(context_filter.filtered_terms) or "none",
        keyword_plans=_format_keyword_plans(keyword_plans_for_prompt),
        regional_replacements=_bullets([f"{r.original} -> {r.replacement}" for r in regional]),
        injection_plan=injection_plan,
        avoid_content=_bullets(avoid_content),
        language_instruction=get_language_instruction(config.target_audience),
        response_schema=response_schema_hint(LLMSectionResponse),
    )

    res = await gateway.run_json(prompt, "flash", LLMSectionResponse)
    payload: LLMSectionResponse = res.data

    logger.info(
        "section_generated",
        title=section_title,
        chars=len(payload.content),
        used_points=len(payload.used_points),
        injected_count=payload.injected_count,
    )

    return SectionResult(
        content=normalize_heading_levels(payload.content),
        used_points=payload.used_points,
        injected_count=payload.injected_count,
        usage=res.usage.add(context_filter.usage),
        cost=res.cost.add(context_filter.cost),
        duration=res.duration + context_filter.duration,
    )
