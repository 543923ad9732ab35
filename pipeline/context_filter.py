"""
Context filter: narrow the fact/term pool to what one section needs.

Small pools without a knowledge base pass through untouched (no LLM call).
Otherwise one structured call selects relevant facts/terms and extracts
knowledge-base directives. Any failure fails open to the unfiltered input.
"""
from typing import Optional, Sequence

import structlog

from .config import PipelineSettings
from .context import CancellationToken
from .llm import response_schema_hint
from .prompts import CONTEXT_FILTER_PROMPT, get_language_instruction
from .schemas import ContextFilterResult, LLMContextFilterResponse

logger = structlog.get_logger()

# Knowledge base text shorter than this counts as absent
MIN_KNOWLEDGE_CHARS = 10


def has_knowledge_base(text: Optional[str]) -> bool:
    return bool(text) and len(text.strip()) > MIN_KNOWLEDGE_CHARS


async def filter_section_context(
    gateway,
    section_title: str,
    key_points: Sequence[str],
    authority_terms: Sequence[str],
    knowledge_base: Optional[str],
    audience: str,
    settings: PipelineSettings,
    cancel_token: Optional[CancellationToken] = None,
) -> ContextFilterResult:
    """
    Filter candidate facts and terms for a section.

    Args:
        gateway: LLM gateway
        section_title: Section the facts are filtered for
        key_points: Candidate facts
        authority_terms: Candidate authority terms
        knowledge_base: Optional brand knowledge text
        audience: Audience code for the output language
        settings: Pipeline settings (fast-path limit, KB budget)
        cancel_token: Skips the LLM call once cancelled

    Returns:
        ContextFilterResult; cost is zero on the fast path and on failure
    """
    passthrough = ContextFilterResult(
        filtered_points=list(key_points),
        filtered_terms=list(authority_terms),
        knowledge_insights=[],
    )

    limit = settings.filter_fast_path_limit
    if not has_knowledge_base(knowledge_base) and len(key_points) <= limit and len(authority_terms) <= limit:
        return passthrough

    if cancel_token and cancel_token.is_cancelled:
        return passthrough

    prompt = CONTEXT_FILTER_PROMPT.format(
        section_title=section_title,
        facts="\n".join(f"- {p}" for p in key_points) or "none",
        terms=", ".join(authority_terms) or "none",
        knowledge_base=(knowledge_base or "")[:settings.knowledge_char_budget] or "none",
        language_instruction=get_language_instruction(audience),
        response_schema=response_schema_hint(LLMContextFilterResponse),
    )

    try:
        res = await gateway.run_json(prompt, "flash", LLMContextFilterResponse)
    except Exception as e:
        logger.warning("context_filter_failed_open", section=section_title, error=str(e))
        return passthrough

    data = res.data
    logger.info(
        "context_filtered",
        section=section_title,
        points_in=len(key_points),
        points_out=len(data.filtered_points),
        terms_out=len(data.filtered_auth_terms),
        insights=len(data.knowledge_insights),
    )
    return ContextFilterResult(
        filtered_points=data.filtered_points,
        filtered_terms=data.filtered_auth_terms,
        knowledge_insights=data.knowledge_insights,
        usage=res.usage,
        cost=res.cost,
        duration=res.duration,
    )
