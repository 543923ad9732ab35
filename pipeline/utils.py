"""
Text helpers shared across pipeline stages.

Small, pure functions: heading cleanup, outline parsing, order-preserving
de-duplication and log formatting.
"""
import re
from typing import Iterable, List, Optional, Sequence

from .schemas import HeadingOptimization

LEADING_MD_HEADING = re.compile(r"^\s*#{1,6}\s+[^\n]*(\n|$)")
LEADING_HTML_HEADING = re.compile(r"^\s*<h([1-6])[^>]*>.*?</h\1>", re.IGNORECASE | re.DOTALL)


def dedupe(items: Iterable[str]) -> List[str]:
    """Order-preserving de-duplication; drops empty strings."""
    seen = {}
    for item in items:
        if item and item not in seen:
            seen[item] = None
    return list(seen)


def split_outline(text: Optional[str]) -> List[str]:
    """Split a newline-separated outline into trimmed, non-empty titles."""
    if not text:
        return []
    return [line.strip() for line in text.splitlines() if line.strip()]


def clean_heading_text(text: Optional[str]) -> str:
    """Strip leading '#' markers and quote characters, then trim."""
    cleaned = re.sub(r"^#+\s*", "", (text or "").strip())
    cleaned = re.sub(r"[\"“”]", "", cleaned)
    return cleaned.strip()


def strip_leading_heading(text: Optional[str]) -> str:
    """Remove one leading Markdown or HTML heading, if present."""
    content = text or ""
    content = LEADING_HTML_HEADING.sub("", content, count=1) if LEADING_HTML_HEADING.match(content) \
        else LEADING_MD_HEADING.sub("", content, count=1)
    return content.strip()


def normalize_heading_levels(text: Optional[str]) -> str:
    """
    Demote H1/H2 in section markup to H3.

    The caller renders the section title as the H2, so generated content
    must never repeat a heading at that level or above.
    """
    normalized = text or ""
    normalized = re.sub(r"^##\s+", "### ", normalized, flags=re.MULTILINE)
    normalized = re.sub(r"^#\s+", "### ", normalized, flags=re.MULTILINE)
    normalized = re.sub(r"<h1[^>]*>(.*?)</h1>", r"### \1", normalized, flags=re.IGNORECASE | re.DOTALL)
    normalized = re.sub(r"<h2[^>]*>(.*?)</h2>", r"### \1", normalized, flags=re.IGNORECASE | re.DOTALL)
    return normalized


def summarize_list(items: Sequence[str], max_items: int = 5) -> str:
    """Format a list for a log line: 'a, b, c +N'."""
    if not items:
        return "none"
    shown = ", ".join(items[:max_items])
    extra = len(items) - max_items
    return f"{shown} +{extra}" if extra > 0 else shown


def resolve_heading(
    section_title: str,
    optimizations: Sequence[HeadingOptimization],
    using_custom_outline: bool = False,
) -> str:
    """
    Pick the display heading for a section.

    When refined headings exist for this section (matched on the cleaned
    before/after text), the highest-scoring option wins, then h2_after,
    then h2_before. Custom outlines are always rendered as given.
    """
    title = clean_heading_text(section_title)
    if using_custom_outline or not optimizations:
        return title

    for opt in optimizations:
        before = clean_heading_text(opt.h2_before)
        after = clean_heading_text(opt.h2_after)
        if title not in (before, after):
            continue

        options = [o for o in opt.h2_options if clean_heading_text(o.text)]
        if options:
            best = max(options, key=lambda o: o.score)
            return clean_heading_text(best.text)
        return after or before or title

    return title
