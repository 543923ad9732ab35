import pytest

from pipeline.context import CancellationToken
from pipeline.schemas import (
    AuthorityAnalysis,
    GenerationConfig,
    KeywordActionPlan,
    LLMSectionResponse,
    ProblemProductMapping,
    ProductBrief,
    ReferenceAnalysis,
    SectionPlan,
)
from pipeline.section_generator import build_injection_plan, generate_section

from conftest import FakeGateway

BRIEF = ProductBrief(
    brand_name="GlowLab",
    product_name="GlowLab Pico Laser",
    usp="No downtime",
    cta_link="https://glowlab.test/pico",
)

MAPPINGS = [
    ProblemProductMapping(pain_point="Stubborn pigmentation", product_feature="Picosecond pulses",
                          relevance_keywords=["pigment"]),
    ProblemProductMapping(pain_point="Long recovery", product_feature="No downtime",
                          relevance_keywords=["recovery"]),
    ProblemProductMapping(pain_point="High cost", product_feature="Package pricing",
                          relevance_keywords=["price"]),
]

CONFIG = GenerationConfig(title="Pico Laser Guide")


# =============================================================================
# LLMSectionResponse
# =============================================================================

def test_section_response_folds_used_point_aliases():
    for alias in ("usedPoints", "pointsUsed", "usedFacts"):
        payload = LLMSectionResponse.model_validate({"content": "x", alias: ["a", " b ", ""]})
        assert payload.used_points == ["a", "b"]


def test_section_response_folds_injected_count_and_content():
    payload = LLMSectionResponse.model_validate({"sectionContent": "Body", "injectedCount": "2"})
    assert payload.content == "Body"
    assert payload.injected_count == 2
    assert payload.used_points == []


def test_section_response_bad_count_is_zero():
    payload = LLMSectionResponse.model_validate({"content": "Body", "injected_count": "many"})
    assert payload.injected_count == 0


# =============================================================================
# build_injection_plan
# =============================================================================

def test_injection_plan_empty_without_product():
    assert build_injection_plan("Benefits", None) == ""
    assert build_injection_plan("Benefits", ProductBrief(brand_name="GlowLab")) == ""


def test_injection_plan_forces_mention_in_last_sections():
    forced = build_injection_plan("Summary", BRIEF, MAPPINGS, injected_count=1, is_last_sections=True)
    relaxed = build_injection_plan("Summary", BRIEF, MAPPINGS, injected_count=3, is_last_sections=True)

    assert "MANDATORY INJECTION" in forced
    assert "MANDATORY INJECTION" not in relaxed


def test_injection_plan_not_forced_in_early_sections():
    plan = build_injection_plan("Summary", BRIEF, MAPPINGS, injected_count=0, is_last_sections=False)
    assert "MANDATORY INJECTION" not in plan
    assert "PROBLEM-SOLUTION WEAVING" not in plan
    assert "DENSITY CONTROL" in plan
    assert BRIEF.cta_link in plan


def test_injection_plan_matches_mappings_by_keyword():
    plan = build_injection_plan("Treating pigment spots", BRIEF, MAPPINGS)
    assert "Stubborn pigmentation" in plan
    assert "Long recovery" not in plan


def test_injection_plan_solution_section_uses_first_two_mappings():
    plan = build_injection_plan("The best solution", BRIEF, MAPPINGS)
    assert "Stubborn pigmentation" in plan
    assert "Long recovery" in plan
    assert "High cost" not in plan


def test_injection_plan_sanitizes_competitors():
    reference = ReferenceAnalysis(competitor_brands=["RivalSkin"], competitor_products=["RivalBeam"])
    plan = build_injection_plan("Benefits", BRIEF, MAPPINGS, reference=reference)
    assert "SANITIZATION PROTOCOL" in plan
    assert '"RivalSkin", "RivalBeam"' in plan


# =============================================================================
# generate_section
# =============================================================================

@pytest.mark.asyncio
async def test_generate_section_demotes_headings(settings):
    gateway = FakeGateway({"LLMSectionResponse": {"content": "## Sub\nText\n<h2>Other</h2>"}})
    result = await generate_section(gateway, CONFIG, "Benefits", settings)

    assert result.content == "### Sub\nText\n### Other"


@pytest.mark.asyncio
async def test_generate_section_reports_used_points_and_costs(settings):
    gateway = FakeGateway({
        "LLMSectionResponse": {"content": "Body", "usedPoints": ["fact one"], "injectedCount": 1},
        "LLMContextFilterResponse": {"filtered_points": ["fact one"]},
    })
    key_points = [f"fact {n}" for n in ("one", "two", "three", "four", "five", "six")]
    result = await generate_section(gateway, CONFIG, "Benefits", settings, key_points=key_points)

    assert result.used_points == ["fact one"]
    assert result.injected_count == 1
    # filter call + section call
    assert result.usage.total_tokens == 300
    assert result.cost.total_cost == pytest.approx(0.006)


@pytest.mark.asyncio
async def test_generate_section_prompt_constraints(settings):
    gateway = FakeGateway({
        "LLMSectionResponse": {"content": "Body"},
        "LLMContextFilterResponse": {"filtered_points": ["kept fact"]},
    })
    key_points = ["kept fact", "dropped fact", "f3", "f4", "f5", "f6"]
    meta = SectionPlan(title="Benefits", key_facts=["meta fact"], suppress=["pricing talk"])

    await generate_section(
        gateway,
        CONFIG,
        "Benefits",
        settings,
        previous_sections=["[Preceding Section: Intro]"],
        future_sections=["Risks", "Summary"],
        key_points=key_points,
        section_meta=meta,
        authority=AuthorityAnalysis(relevant_terms=["fluence"]),
    )

    prompt = gateway.calls_named("LLMSectionResponse")[0].prompt
    material = prompt.split("### MATERIAL", 1)[1].split("Knowledge base directives", 1)[0]
    avoid = prompt.split("Do NOT cover these topics", 1)[1]
    assert "meta fact" in material
    assert "kept fact" in material
    assert "dropped fact" not in material
    for avoided in ("Risks", "Summary", "[Preceding Section: Intro]", "dropped fact", "pricing talk"):
        assert avoided in avoid


@pytest.mark.asyncio
async def test_generate_section_caps_keyword_plans(settings):
    settings = settings.model_copy(update={"semantic_keyword_limit": 2})
    gateway = FakeGateway({"LLMSectionResponse": {"content": "Body"}})
    plans = [KeywordActionPlan(word=f"kw{i}") for i in range(5)]

    await generate_section(gateway, CONFIG, "Benefits", settings, keyword_plans=plans)

    prompt = gateway.calls_named("LLMSectionResponse")[0].prompt
    assert "kw0" in prompt and "kw1" in prompt
    assert "kw2" not in prompt


@pytest.mark.asyncio
async def test_generate_section_use_rag_adds_reference_to_knowledge_base(settings):
    config = GenerationConfig(title="Guide", reference_content="Reference body about lasers.", use_rag=True)
    gateway = FakeGateway({"LLMSectionResponse": {"content": "Body"}})

    await generate_section(gateway, config, "Benefits", settings)

    filter_calls = gateway.calls_named("LLMContextFilterResponse")
    assert len(filter_calls) == 1
    assert "Reference body about lasers." in filter_calls[0].prompt


@pytest.mark.asyncio
async def test_generate_section_propagates_gateway_failure(settings):
    gateway = FakeGateway({"LLMSectionResponse": RuntimeError("provider down")})
    with pytest.raises(RuntimeError):
        await generate_section(gateway, CONFIG, "Benefits", settings)


@pytest.mark.asyncio
async def test_generate_section_cancelled_during_filter_skips_section_call(settings):
    token = CancellationToken()

    def filter_then_cancel(prompt):
        token.cancel()
        return {"filtered_points": ["fact one"]}

    config = GenerationConfig(
        title="Guide",
        brand_knowledge="Our clinic has operated since 2001 with FDA-cleared lasers.",
    )
    gateway = FakeGateway({
        "LLMContextFilterResponse": filter_then_cancel,
        "LLMSectionResponse": {"content": "Body"},
    })

    result = await generate_section(gateway, config, "Benefits", settings, key_points=["fact one"], cancel_token=token)

    assert [c.name for c in gateway.calls] == ["LLMContextFilterResponse"]
    assert result.content == ""
    assert result.used_points == []
    assert result.usage.total_tokens == 150
    assert result.cost.total_cost == pytest.approx(0.003)
