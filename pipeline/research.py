"""
Research services used by the analysis tasks.

Each function issues one LLM call (or none, when its input is empty) and
returns an LLMResult so the caller can account usage and cost:
- parse_product_brief / map_problems_to_product: commercial context
- analyze_reference_structure / analyze_authority_terms: outline + vocabulary
- analyze_image / analyze_visual_style: visual identity
- extract_regional_replacements: regional terminology grounding
"""
from typing import List, Sequence

import structlog

from .config import PipelineSettings
from .llm import response_schema_hint
from .prompts import (
    ANALYZE_AUTHORITY_TERMS_PROMPT,
    ANALYZE_IMAGE_PROMPT,
    ANALYZE_REFERENCE_STRUCTURE_PROMPT,
    ANALYZE_VISUAL_STYLE_PROMPT,
    MAP_PROBLEMS_TO_PRODUCT_PROMPT,
    PARSE_PRODUCT_BRIEF_PROMPT,
    REGIONAL_TERMS_PROMPT,
    get_language_instruction,
)
from .schemas import (
    AuthorityAnalysis,
    LLMProductMappingResponse,
    LLMRegionalResponse,
    LLMResult,
    ProductBrief,
    ReferenceAnalysis,
    ScrapedImage,
)

logger = structlog.get_logger()

DEFAULT_VISUAL_STYLE = "Clean, modern professional photography with natural lighting."
MIN_REGIONAL_CONTENT_CHARS = 50


# =============================================================================
# PRODUCT
# =============================================================================

async def parse_product_brief(gateway, raw_text: str) -> LLMResult:
    """Parse a free-text product description into a ProductBrief."""
    prompt = PARSE_PRODUCT_BRIEF_PROMPT.format(
        raw_text=raw_text,
        response_schema=response_schema_hint(ProductBrief),
    )
    res = await gateway.run_json(prompt, "flash", ProductBrief)
    logger.info("product_brief_parsed", brand=res.data.brand_name, product=res.data.product_name)
    return res


async def map_problems_to_product(gateway, brief: ProductBrief, title: str, audience: str) -> LLMResult:
    """
    Generate 3-5 pain point -> product feature mappings for the article.

    Returns:
        LLMResult whose data is List[ProblemProductMapping]
    """
    prompt = MAP_PROBLEMS_TO_PRODUCT_PROMPT.format(
        title=title,
        product_name=brief.product_name,
        brand_name=brief.brand_name,
        usp=brief.usp or "n/a",
        pain_points=brief.target_pain_points or "n/a",
        language_instruction=get_language_instruction(audience),
        response_schema=response_schema_hint(LLMProductMappingResponse),
    )
    res = await gateway.run_json(prompt, "flash", LLMProductMappingResponse)
    mappings = res.data.mappings[:5]
    logger.info("product_mapping_generated", count=len(mappings))
    return res.model_copy(update={"data": mappings})


# =============================================================================
# STRUCTURE & AUTHORITY
# =============================================================================

async def analyze_reference_structure(gateway, reference_text: str, audience: str) -> LLMResult:
    """Extract outline, plans, facts and competitor names from the reference."""
    prompt = ANALYZE_REFERENCE_STRUCTURE_PROMPT.format(
        language_instruction=get_language_instruction(audience),
        reference_content=reference_text,
        response_schema=response_schema_hint(ReferenceAnalysis),
    )
    res = await gateway.run_json(prompt, "pro", ReferenceAnalysis)
    logger.info(
        "reference_structure_analyzed",
        sections=len(res.data.structure),
        key_points=len(res.data.key_information_points),
        competitors=len(res.data.competitor_brands),
    )
    return res


async def analyze_authority_terms(
    gateway,
    authority_terms: str,
    title: str,
    reference_text: str,
    audience: str,
    settings: PipelineSettings,
) -> LLMResult:
    """
    Select authority terms relevant to this article.

    Empty input skips the call. Failures degrade to an empty analysis:
    authority vocabulary is advisory.
    """
    if not (authority_terms or "").strip():
        return LLMResult(data=AuthorityAnalysis())

    prompt = ANALYZE_AUTHORITY_TERMS_PROMPT.format(
        title=title,
        authority_terms=authority_terms[:settings.authority_char_budget],
        reference_excerpt=(reference_text or "")[:3000],
        language_instruction=get_language_instruction(audience),
        response_schema=response_schema_hint(AuthorityAnalysis),
    )
    try:
        res = await gateway.run_json(prompt, "flash", AuthorityAnalysis)
    except Exception as e:
        logger.warning("authority_analysis_failed", error=str(e))
        return LLMResult(data=AuthorityAnalysis())

    logger.info("authority_terms_analyzed", relevant=len(res.data.relevant_terms))
    return res


# =============================================================================
# VISUAL
# =============================================================================

async def analyze_image(gateway, image: ScrapedImage) -> LLMResult:
    """Describe one scraped image. Returns LLMResult with the description text."""
    context = " ".join(part for part in (image.alt_text, image.pre_context, image.post_context) if part)
    prompt = ANALYZE_IMAGE_PROMPT.format(context=context[:500] or "none")
    return await gateway.run_vision(prompt, image.url, "flash")


async def analyze_visual_style(gateway, images: Sequence[ScrapedImage], website_type: str) -> LLMResult:
    """Synthesize a shared visual style from analyzed images."""
    descriptions = [img.ai_description for img in images if img.ai_description][:5]
    if not descriptions:
        return LLMResult(data=DEFAULT_VISUAL_STYLE)

    prompt = ANALYZE_VISUAL_STYLE_PROMPT.format(
        website_type=website_type or "general",
        descriptions="\n---\n".join(descriptions),
    )
    res = await gateway.run_text(prompt, "flash", max_tokens=500)
    style = (res.data or "").strip() or DEFAULT_VISUAL_STYLE
    return res.model_copy(update={"data": style})


# =============================================================================
# REGIONAL
# =============================================================================

async def extract_regional_replacements(gateway, content: str, audience: str) -> LLMResult:
    """
    Detect region-specific terminology corrections.

    Returns:
        LLMResult whose data is List[RegionalReplacement]; short content
        skips the call and yields an empty list
    """
    if len((content or "").strip()) < MIN_REGIONAL_CONTENT_CHARS:
        return LLMResult(data=[])

    prompt = REGIONAL_TERMS_PROMPT.format(
        audience=audience,
        language_instruction=get_language_instruction(audience),
        content=content[:8000],
        response_schema=response_schema_hint(LLMRegionalResponse),
    )
    res = await gateway.run_json(prompt, "flash", LLMRegionalResponse)
    replacements: List = [r for r in res.data.replacements if r.original and r.replacement]
    return res.model_copy(update={"data": replacements})
