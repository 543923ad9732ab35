"""
Keyword extraction and planning.

- scan_keywords: local frequency scan over the reference text (no network)
- compute_keyword_cap: dynamic cap derived from reference length
- plan_keywords: LLM pass turning raw keywords into usage plans
"""
import re
from collections import Counter
from typing import Dict, List, Sequence

import structlog

from .llm import response_schema_hint
from .prompts import KEYWORD_PLAN_PROMPT, get_language_instruction
from .schemas import (
    KeywordActionPlan,
    LLMKeywordPlanResponse,
    LLMResult,
)

logger = structlog.get_logger()

LATIN_WORD = re.compile(r"[A-Za-z][A-Za-z0-9'\-]+")
CJK_RUN = re.compile(r"[\u4e00-\u9fff\u3400-\u4dbf]+")

STOPWORDS = frozenset("""
a about above after again against all also am an and any are as at be because been
before being below between both but by can could did do does doing down during each
few for from further had has have having he her here hers herself him himself his how
i if in into is it its itself just let me more most my myself no nor not now of off on
once only or other our ours ourselves out over own same she should so some such than
that the their theirs them themselves then there these they this those through to too
under until up very was we were what when where which while who whom why will with
would you your yours yourself yourselves
""".split())


def scan_keywords(text: str) -> List[Dict]:
    """
    Count candidate keywords in a text.

    Latin words (length >= 2, lower-cased, stopwords and numbers dropped)
    count as-is; runs of CJK characters contribute overlapping bigrams.

    Returns:
        [{"token": str, "count": int}] sorted by count descending, ties by
        first occurrence.
    """
    counts: Counter = Counter()
    first_seen: Dict[str, int] = {}

    def add(token: str, position: int):
        counts[token] += 1
        first_seen.setdefault(token, position)

    for match in LATIN_WORD.finditer(text or ""):
        token = match.group(0).lower().strip("'-")
        if len(token) < 2 or token in STOPWORDS or token.isdigit():
            continue
        add(token, match.start())

    for match in CJK_RUN.finditer(text or ""):
        run = match.group(0)
        for i in range(len(run) - 1):
            add(run[i:i + 2], match.start() + i)

    ordered = sorted(counts, key=lambda t: (-counts[t], first_seen[t]))
    return [{"token": token, "count": counts[token]} for token in ordered]


def compute_keyword_cap(length: int, divisor: int, min_keywords: int, max_keywords: int) -> int:
    """clamp(floor(length / divisor), min_keywords, max_keywords)."""
    return max(min_keywords, min(max_keywords, length // divisor))


def _dedupe_keywords(keywords: Sequence[str]) -> List[str]:
    seen = set()
    result = []
    for word in keywords:
        key = word.strip().lower()
        if key and key not in seen:
            seen.add(key)
            result.append(word.strip())
    return result


async def plan_keywords(
    gateway,
    keywords: Sequence[str],
    reference_text: str,
    audience: str,
) -> LLMResult:
    """
    Turn raw keywords into ordered usage plans.

    Keywords are de-duplicated case-insensitively and planned in a single
    LLM call. Plans returned for the same word are merged.

    Returns:
        LLMResult whose data is List[KeywordActionPlan]
    """
    words = _dedupe_keywords(keywords)
    if not words:
        return LLMResult(data=[])

    prompt = KEYWORD_PLAN_PROMPT.format(
        language_instruction=get_language_instruction(audience),
        keywords="\n".join(f"- {w}" for w in words),
        reference_excerpt=(reference_text or "")[:4000],
        response_schema=response_schema_hint(LLMKeywordPlanResponse),
    )
    res = await gateway.run_json(prompt, "flash", LLMKeywordPlanResponse)

    merged: Dict[str, KeywordActionPlan] = {}
    for plan in res.data.plans:
        key = plan.word.strip().lower()
        if not key:
            continue
        if key in merged:
            existing = merged[key]
            existing.plan = list(dict.fromkeys(existing.plan + plan.plan))
            existing.snippets = list(dict.fromkeys(existing.snippets + plan.snippets))
        else:
            merged[key] = plan

    plans = list(merged.values())
    logger.info("keywords_planned", requested=len(words), planned=len(plans))
    return LLMResult(data=plans, usage=res.usage, cost=res.cost, duration=res.duration)
