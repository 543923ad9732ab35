import pytest

from pipeline.keywords import compute_keyword_cap, plan_keywords, scan_keywords
from pipeline.schemas import KeywordActionPlan

from conftest import FakeGateway


# =============================================================================
# compute_keyword_cap
# =============================================================================

def test_keyword_cap_examples():
    assert compute_keyword_cap(2000, 200, 10, 30) == 10
    assert compute_keyword_cap(4000, 200, 10, 30) == 20
    assert compute_keyword_cap(100000, 200, 10, 30) == 30
    assert compute_keyword_cap(0, 200, 10, 30) == 10


def test_keyword_cap_is_monotonic_and_bounded():
    caps = [compute_keyword_cap(length, 200, 10, 30) for length in range(0, 20000, 137)]
    assert caps == sorted(caps)
    assert all(10 <= cap <= 30 for cap in caps)


# =============================================================================
# scan_keywords
# =============================================================================

def test_scan_keywords_counts_latin_words_without_stopwords():
    result = scan_keywords("Laser therapy is safe. The laser works; laser 2024 therapy.")
    tokens = {item["token"]: item["count"] for item in result}
    assert tokens["laser"] == 3
    assert tokens["therapy"] == 2
    assert "the" not in tokens
    assert "2024" not in tokens
    assert result[0]["token"] == "laser"


def test_scan_keywords_cjk_bigrams():
    result = scan_keywords("植髮植髮")
    tokens = {item["token"]: item["count"] for item in result}
    assert tokens["植髮"] == 2
    assert tokens["髮植"] == 1


def test_scan_keywords_empty():
    assert scan_keywords("") == []


# =============================================================================
# plan_keywords
# =============================================================================

@pytest.mark.asyncio
async def test_plan_keywords_single_call_and_dedupes():
    def respond(prompt):
        block = prompt.split("<keywords>\n", 1)[1].split("\n</keywords>", 1)[0]
        words = [line[2:] for line in block.splitlines()]
        return {"plans": [{"word": w, "plan": [f"use {w}"]} for w in words]}

    gateway = FakeGateway({"LLMKeywordPlanResponse": respond})
    words = ["alpha", "Alpha", "beta", "gamma"] + [f"term{i}" for i in range(26)]
    res = await plan_keywords(gateway, words, "ref", "zh-TW")

    assert len(gateway.calls_named("LLMKeywordPlanResponse")) == 1
    assert [p.word for p in res.data][:3] == ["alpha", "beta", "gamma"]
    assert len(res.data) == 29
    assert res.usage.total_tokens == 150


@pytest.mark.asyncio
async def test_plan_keywords_merges_duplicate_plans():
    gateway = FakeGateway({
        "LLMKeywordPlanResponse": {
            "plans": [
                {"word": "laser", "plan": ["intro"], "snippets": ["a"]},
                {"word": "Laser", "plan": ["intro", "close"], "snippets": ["b"]},
            ]
        }
    })
    res = await plan_keywords(gateway, ["laser"], "ref", "zh-TW")

    assert len(res.data) == 1
    plan: KeywordActionPlan = res.data[0]
    assert plan.plan == ["intro", "close"]
    assert plan.snippets == ["a", "b"]


@pytest.mark.asyncio
async def test_plan_keywords_no_words_skips_call():
    gateway = FakeGateway()
    res = await plan_keywords(gateway, ["  "], "ref", "zh-TW")
    assert res.data == []
    assert gateway.calls == []
