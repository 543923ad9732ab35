from pipeline.schemas import HeadingOption, HeadingOptimization
from pipeline.utils import (
    clean_heading_text,
    dedupe,
    normalize_heading_levels,
    resolve_heading,
    split_outline,
    strip_leading_heading,
    summarize_list,
)


def test_dedupe_keeps_first_occurrence_order():
    assert dedupe(["b", "a", "b", "", "c", "a"]) == ["b", "a", "c"]


def test_split_outline_trims_and_drops_blank_lines():
    assert split_outline("  A \n\n B\nC  \n") == ["A", "B", "C"]
    assert split_outline("") == []
    assert split_outline(None) == []


def test_clean_heading_text_strips_markers_and_quotes():
    assert clean_heading_text('## "Why it matters"') == "Why it matters"
    assert clean_heading_text("“Benefits”") == "Benefits"
    assert clean_heading_text(None) == ""


def test_strip_leading_heading_markdown():
    assert strip_leading_heading("## Title\nBody text") == "Body text"


def test_strip_leading_heading_html():
    assert strip_leading_heading("<h2>Title</h2>\n<p>Body</p>") == "<p>Body</p>"


def test_strip_leading_heading_leaves_plain_text():
    assert strip_leading_heading("Body only") == "Body only"


def test_normalize_heading_levels_markdown():
    assert normalize_heading_levels("## Sub\ntext") == "### Sub\ntext"
    assert normalize_heading_levels("# Top\ntext") == "### Top\ntext"


def test_normalize_heading_levels_html():
    assert normalize_heading_levels("<h2>Sub</h2>") == "### Sub"
    assert normalize_heading_levels('<H1 class="x">Top</H1>') == "### Top"


def test_normalize_heading_levels_keeps_lower_levels():
    text = "### Already fine\n#### Deeper"
    assert normalize_heading_levels(text) == text


def test_summarize_list():
    assert summarize_list([]) == "none"
    assert summarize_list(["a", "b"]) == "a, b"
    assert summarize_list(["a", "b", "c", "d"], max_items=2) == "a, b +2"


def test_resolve_heading_prefers_best_scoring_option():
    optimizations = [
        HeadingOptimization(
            h2_before="Benefits",
            h2_after="Key Benefits",
            h2_options=[HeadingOption(text="Top Benefits", score=0.4), HeadingOption(text="## Real Benefits", score=0.9)],
        )
    ]
    assert resolve_heading("Benefits", optimizations) == "Real Benefits"
    assert resolve_heading("Key Benefits", optimizations) == "Real Benefits"


def test_resolve_heading_falls_back_to_after_text():
    optimizations = [HeadingOptimization(h2_before="Benefits", h2_after="Key Benefits")]
    assert resolve_heading("Benefits", optimizations) == "Key Benefits"


def test_resolve_heading_custom_outline_is_verbatim():
    optimizations = [HeadingOptimization(h2_before="Benefits", h2_after="Key Benefits")]
    assert resolve_heading("Benefits", optimizations, using_custom_outline=True) == "Benefits"


def test_resolve_heading_unmatched_title():
    optimizations = [HeadingOptimization(h2_before="Benefits", h2_after="Key Benefits")]
    assert resolve_heading("Costs", optimizations) == "Costs"
