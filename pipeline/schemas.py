"""
Pydantic schemas for the article generation pipeline.

These provide type safety and validation for every stage of the
Analyze -> Write workflow, plus the response models the LLM gateway
validates JSON output against.
"""
import enum
from typing import List, Optional, Dict, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# =============================================================================
# LLM MODEL REGISTRY
# =============================================================================
# Maps user-friendly model names to provider + API model ID
# Format: "Display Name" -> (provider, model_id)

LLM_MODEL_REGISTRY: Dict[str, tuple] = {
    # Google Gemini
    "Gemini 2.5 Pro": ("gemini", "gemini-2.5-pro"),
    "Gemini 2.5 Flash": ("gemini", "gemini-2.5-flash"),
    "Gemini 2.5 Flash Lite": ("gemini", "gemini-2.5-flash-lite"),
    "Gemini 2.5 Flash Image": ("gemini", "gemini-2.5-flash-image"),

    # Anthropic Claude
    "Claude Sonnet 4.5": ("anthropic", "claude-sonnet-4-5"),
    "Claude Sonnet 4": ("anthropic", "claude-sonnet-4-20250514"),
    "Claude 3.5 Haiku": ("anthropic", "claude-3-5-haiku-20241022"),

    # OpenAI
    "GPT-4.1": ("openai", "gpt-4.1"),
    "GPT-4.1 Mini": ("openai", "gpt-4.1-mini"),
    "GPT-4o": ("openai", "gpt-4o"),
    "GPT-4o Mini": ("openai", "gpt-4o-mini"),

    # Local (Ollama)
    "Llama 3.1 (Local)": ("ollama", "llama3.1"),
    "Qwen 2.5 (Local)": ("ollama", "qwen2.5"),
}


def resolve_model(model_name: Optional[str]) -> tuple:
    """
    Resolve a model name to (provider, model_id).

    Args:
        model_name: User-friendly model name (e.g., "Gemini 2.5 Flash")

    Returns:
        Tuple of (provider, model_id) or (None, None) if not found
    """
    if not model_name:
        return (None, None)
    return LLM_MODEL_REGISTRY.get(model_name, (None, None))


# =============================================================================
# STATUS
# =============================================================================

class GenerationStatus(str, enum.Enum):
    """Lifecycle of one analyze + write cycle."""
    IDLE = "idle"
    ANALYZING = "analyzing"
    ANALYSIS_READY = "analysis_ready"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ERROR = "error"


class ImageCategory(str, enum.Enum):
    BRANDED_LIFESTYLE = "BRANDED_LIFESTYLE"
    PRODUCT_DETAIL = "PRODUCT_DETAIL"
    INFOGRAPHIC = "INFOGRAPHIC"
    PRODUCT_INFOGRAPHIC = "PRODUCT_INFOGRAPHIC"
    ECOMMERCE_WHITE_BG = "ECOMMERCE_WHITE_BG"


# =============================================================================
# USAGE & COST
# =============================================================================

class TokenUsage(BaseModel):
    """Token counts reported (or estimated) for one or more LLM calls."""
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    def add(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


class CostBreakdown(BaseModel):
    """USD cost split by direction."""
    input_cost: float = 0.0
    output_cost: float = 0.0
    total_cost: float = 0.0

    def add(self, other: "CostBreakdown") -> "CostBreakdown":
        return CostBreakdown(
            input_cost=self.input_cost + other.input_cost,
            output_cost=self.output_cost + other.output_cost,
            total_cost=self.total_cost + other.total_cost,
        )


class LLMResult(BaseModel):
    """
    Result envelope returned by every gateway call.

    `data` is a string for text/vision/image calls and a validated
    pydantic model for JSON calls.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    data: Any = None
    usage: TokenUsage = Field(default_factory=TokenUsage)
    cost: CostBreakdown = Field(default_factory=CostBreakdown)
    duration: float = Field(default=0.0, description="Wall time in seconds")


# =============================================================================
# INPUT CONFIGURATION
# =============================================================================

def _coerce_str_list(v):
    """Accept a single string, None, or a list of mixed values."""
    if v is None:
        return []
    if isinstance(v, str):
        return [v] if v.strip() else []
    if isinstance(v, list):
        return [str(item).strip() for item in v if item is not None and str(item).strip()]
    return v


class ScrapedImage(BaseModel):
    """An image found on the reference page."""
    url: str
    alt_text: str = ""
    pre_context: str = ""
    post_context: str = ""
    ai_description: Optional[str] = None


class ProductBrief(BaseModel):
    """Commercial context for the brand being written for."""
    brand_name: str = ""
    product_name: str = ""
    usp: str = ""
    cta_link: str = ""
    target_pain_points: str = ""


class GenerationConfig(BaseModel):
    """
    Immutable input for one analyze + write cycle.

    Stored verbatim by the orchestrator so the write phase can replay it.
    """
    model_config = ConfigDict(frozen=True)

    title: str = Field(description="Article title")
    reference_content: str = Field(default="", description="Reference article text")
    sample_outline: str = Field(
        default="",
        description="Optional custom outline, one section title per line",
    )
    target_audience: str = Field(default="zh-TW", description="Audience code: zh-TW, zh-HK, zh-MY")
    product_raw_text: str = Field(default="", description="Unstructured product/service description")
    product_brief: Optional[ProductBrief] = Field(
        default=None,
        description="Pre-parsed product brief (skips parsing)",
    )
    authority_terms: str = Field(default="", description="Domain authority terms, free text")
    website_type: str = Field(default="", description="Type of site the images come from")
    brand_knowledge: str = Field(default="", description="Brand knowledge base text")
    use_rag: bool = Field(default=False, description="Filter section context against the knowledge base")
    auto_image_plan: bool = Field(default=False, description="Plan and generate images after writing")
    scraped_images: List[ScrapedImage] = Field(default_factory=list)


# =============================================================================
# ANALYSIS ARTIFACTS
# =============================================================================

class ProblemProductMapping(BaseModel):
    pain_point: str
    product_feature: str
    relevance_keywords: List[str] = Field(default_factory=list)

    @field_validator('relevance_keywords', mode='before')
    @classmethod
    def coerce_keywords(cls, v):
        return _coerce_str_list(v)


class SectionPlan(BaseModel):
    """One outline entry with the strategy metadata that drives a single section."""
    title: str
    narrative_plan: List[str] = Field(default_factory=list)
    core_question: str = ""
    difficulty: str = Field(default="medium", description="easy, medium or unclear")
    writing_mode: str = Field(default="direct", description="direct or multi_solutions")
    solution_angles: List[str] = Field(default_factory=list)
    key_facts: List[str] = Field(default_factory=list)
    usp_notes: List[str] = Field(default_factory=list)
    subheadings: List[str] = Field(default_factory=list)
    augment: List[str] = Field(default_factory=list)
    suppress: List[str] = Field(default_factory=list)

    @field_validator(
        'narrative_plan', 'solution_angles', 'key_facts', 'usp_notes',
        'subheadings', 'augment', 'suppress',
        mode='before',
    )
    @classmethod
    def coerce_lists(cls, v):
        return _coerce_str_list(v)

    @field_validator('difficulty', mode='before')
    @classmethod
    def normalize_difficulty(cls, v):
        v = str(v or "").strip().lower()
        return v if v in ("easy", "medium", "unclear") else "unclear"

    @field_validator('writing_mode', mode='before')
    @classmethod
    def normalize_writing_mode(cls, v):
        v = str(v or "").strip().lower()
        return "multi_solutions" if v == "multi_solutions" else "direct"


class RegionalReplacement(BaseModel):
    original: str
    replacement: str
    reason: str = ""


class ReferenceAnalysis(BaseModel):
    """Structure + strategy extracted from the reference text."""
    structure: List[SectionPlan] = Field(default_factory=list)
    general_plan: List[str] = Field(default_factory=list)
    conversion_plan: List[str] = Field(default_factory=list)
    key_information_points: List[str] = Field(default_factory=list)
    brand_exclusive_points: List[str] = Field(default_factory=list)
    competitor_brands: List[str] = Field(default_factory=list)
    competitor_products: List[str] = Field(default_factory=list)
    replacement_rules: List[str] = Field(default_factory=list)
    intro_text: str = ""
    h1_title: str = ""
    regional_replacements: List[RegionalReplacement] = Field(default_factory=list)

    @field_validator(
        'general_plan', 'conversion_plan', 'key_information_points',
        'brand_exclusive_points', 'competitor_brands', 'competitor_products',
        'replacement_rules',
        mode='before',
    )
    @classmethod
    def coerce_lists(cls, v):
        return _coerce_str_list(v)


class AuthorityAnalysis(BaseModel):
    relevant_terms: List[str] = Field(default_factory=list)
    combinations: List[str] = Field(default_factory=list)

    @field_validator('relevant_terms', 'combinations', mode='before')
    @classmethod
    def coerce_lists(cls, v):
        return _coerce_str_list(v)


class KeywordActionPlan(BaseModel):
    """Usage guidance for one keyword."""
    word: str
    plan: List[str] = Field(default_factory=list)
    snippets: List[str] = Field(default_factory=list)

    @field_validator('plan', 'snippets', mode='before')
    @classmethod
    def coerce_lists(cls, v):
        return _coerce_str_list(v)


class ProductResult(BaseModel):
    brief: Optional[ProductBrief] = None
    mapping: List[ProblemProductMapping] = Field(default_factory=list)


class StructureResult(BaseModel):
    structure: Optional[ReferenceAnalysis] = None
    authority: Optional[AuthorityAnalysis] = None


class VisualResult(BaseModel):
    analyzed_images: List[ScrapedImage] = Field(default_factory=list)
    visual_style: str = ""


class AnalysisResult(BaseModel):
    """
    Output bundle of the Analysis Pipeline.

    Read-only after analysis, except for the merge of regional findings
    into `structure_result.structure.regional_replacements`.
    """
    product_result: ProductResult = Field(default_factory=ProductResult)
    structure_result: StructureResult = Field(default_factory=StructureResult)
    keyword_plans: List[KeywordActionPlan] = Field(default_factory=list)
    visual_result: VisualResult = Field(default_factory=VisualResult)
    regional_replacements: List[RegionalReplacement] = Field(
        default_factory=list,
        description="Raw regional task output; only the merged copy reaches the writer",
    )


# =============================================================================
# HEADING OPTIMIZATION
# =============================================================================

class HeadingOption(BaseModel):
    text: str
    score: float = 0.0


class HeadingOptimization(BaseModel):
    """An externally refined H2 candidate set for one original heading."""
    h2_before: str
    h2_after: str = ""
    h2_options: List[HeadingOption] = Field(default_factory=list)


# =============================================================================
# SECTION GENERATION
# =============================================================================

class ContextFilterResult(BaseModel):
    filtered_points: List[str] = Field(default_factory=list)
    filtered_terms: List[str] = Field(default_factory=list)
    knowledge_insights: List[str] = Field(default_factory=list)
    usage: TokenUsage = Field(default_factory=TokenUsage)
    cost: CostBreakdown = Field(default_factory=CostBreakdown)
    duration: float = 0.0


class SectionResult(BaseModel):
    content: str = ""
    used_points: List[str] = Field(default_factory=list)
    injected_count: int = 0
    usage: TokenUsage = Field(default_factory=TokenUsage)
    cost: CostBreakdown = Field(default_factory=CostBreakdown)
    duration: float = 0.0


# =============================================================================
# IMAGE PLANNING
# =============================================================================

class ImageAssetPlan(BaseModel):
    """A planned image and its generation state."""
    id: str
    category: ImageCategory = ImageCategory.BRANDED_LIFESTYLE
    generated_prompt: str
    insert_after: str = Field(default="", description="Text anchor the image follows")
    status: str = Field(default="idle", description="idle, generating, done or error")
    url: Optional[str] = None
    error: Optional[str] = None

    @field_validator('category', mode='before')
    @classmethod
    def normalize_category(cls, v):
        v = str(v or "").strip().upper()
        return v if v in ImageCategory.__members__ else ImageCategory.BRANDED_LIFESTYLE.value


# =============================================================================
# LLM RESPONSE MODELS
# =============================================================================

class LLMProductMappingResponse(BaseModel):
    mappings: List[ProblemProductMapping] = Field(default_factory=list)


class LLMContextFilterResponse(BaseModel):
    filtered_points: List[str] = Field(default_factory=list)
    filtered_auth_terms: List[str] = Field(default_factory=list)
    knowledge_insights: List[str] = Field(default_factory=list)

    @field_validator('filtered_points', 'filtered_auth_terms', 'knowledge_insights', mode='before')
    @classmethod
    def coerce_lists(cls, v):
        return _coerce_str_list(v)


class LLMRegionalResponse(BaseModel):
    replacements: List[RegionalReplacement] = Field(default_factory=list)


class LLMKeywordPlanResponse(BaseModel):
    plans: List[KeywordActionPlan] = Field(default_factory=list)


class LLMImagePlanItem(BaseModel):
    category: str = ImageCategory.BRANDED_LIFESTYLE.value
    generated_prompt: str
    insert_after: str = ""


class LLMImagePlanResponse(BaseModel):
    plans: List[LLMImagePlanItem] = Field(default_factory=list)


# Field names models have historically used for the same values
USED_POINTS_ALIASES = ("used_points", "usedPoints", "pointsUsed", "usedFacts")
INJECTED_COUNT_ALIASES = ("injected_count", "injectedCount")


class LLMSectionResponse(BaseModel):
    """
    Section generation response, normalized to one canonical shape.

    Older prompts and models return used points/injection counts under
    several names; they are folded here so consumers see one field.
    """
    content: str = ""
    used_points: List[str] = Field(default_factory=list)
    injected_count: int = 0

    @model_validator(mode='before')
    @classmethod
    def fold_aliases(cls, data):
        if not isinstance(data, dict):
            return data
        data = dict(data)

        content = data.get("content")
        if not isinstance(content, str) or not content.strip():
            fallback = data.get("sectionContent") or data.get("section_content")
            data["content"] = fallback if isinstance(fallback, str) else ""

        for alias in USED_POINTS_ALIASES:
            if isinstance(data.get(alias), list):
                data["used_points"] = data[alias]
                break
        else:
            data["used_points"] = []

        for alias in INJECTED_COUNT_ALIASES:
            if data.get(alias) is not None:
                data["injected_count"] = data[alias]
                break
        return data

    @field_validator('used_points', mode='before')
    @classmethod
    def coerce_points(cls, v):
        return _coerce_str_list(v)

    @field_validator('injected_count', mode='before')
    @classmethod
    def coerce_count(cls, v):
        try:
            return int(v)
        except (TypeError, ValueError):
            return 0
