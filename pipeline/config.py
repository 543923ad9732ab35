"""
Runtime settings for the generation pipeline.

Settings are loaded from environment variables (the caller's .env is
expected to be exported already). Every knob has a default so the
pipeline runs with nothing configured except an LLM provider.
"""
import os
from typing import Dict, Optional

from pydantic import BaseModel, Field

from .schemas import resolve_model


# =============================================================================
# DEFAULTS
# =============================================================================

# Default model per provider and tier
DEFAULT_TIER_MODELS: Dict[str, Dict[str, str]] = {
    "gemini": {"flash": "gemini-2.5-flash", "pro": "gemini-2.5-pro", "image": "gemini-2.5-flash-image"},
    "openai": {"flash": "gpt-4.1-mini", "pro": "gpt-4.1", "image": "dall-e-3"},
    "anthropic": {"flash": "claude-3-5-haiku-20241022", "pro": "claude-sonnet-4-5", "image": ""},
    "ollama": {"flash": "llama3.1", "pro": "llama3.1", "image": ""},
}

# USD per 1M tokens: tier -> (input, output)
DEFAULT_PRICING: Dict[str, tuple] = {
    "flash": (0.30, 0.30),
    "pro": (1.25, 10.00),
    "image": (0.30, 30.00),
}


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return float(value)


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return int(value)


def normalize_database_url(raw_url: str) -> str:
    """Ensure the asyncpg driver is used (postgresql:// -> postgresql+asyncpg://)."""
    if raw_url.startswith("postgresql://"):
        return raw_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if raw_url.startswith("postgres://"):
        return raw_url.replace("postgres://", "postgresql+asyncpg://", 1)
    return raw_url


class PipelineSettings(BaseModel):
    """
    All tunables for analysis, writing and the LLM gateway.

    Resolution order (first non-None wins):
    1. Explicit constructor arguments
    2. Environment variables (via from_env)
    3. Defaults below
    """
    # Providers
    llm_provider: str = Field(default="gemini", description="openai, anthropic, gemini or ollama")
    llm_model: Optional[str] = Field(default=None, description="Model for the flash tier")
    llm_pro_model: Optional[str] = Field(default=None, description="Model for the pro tier")
    image_provider: str = Field(default="placeholder", description="placeholder, openai, gemini or stable-diffusion")
    image_model: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    google_api_key: Optional[str] = None
    ollama_host: str = "http://localhost:11434"
    sd_api_url: str = "http://localhost:7860"

    # Gateway policy
    retry_attempts: int = Field(default=2, ge=0, description="Retries after the first attempt")
    retry_delay: float = Field(default=0.3, ge=0, description="Fixed delay between retries (seconds)")
    request_timeout: float = Field(default=120.0, gt=0)
    validation_retries: int = Field(default=2, ge=0, description="Re-prompts on schema mismatch")

    # Analysis
    keyword_char_divisor: int = Field(default=200, gt=0)
    min_keywords: int = Field(default=10, ge=0)
    max_keywords: int = Field(default=30, ge=0)
    semantic_keyword_limit: int = Field(default=30, gt=0)
    max_analyzed_images: int = Field(default=5, ge=0)
    stagger_unit: float = Field(default=1.0, ge=0, description="Seconds per stagger step")
    authority_char_budget: int = Field(default=2000, gt=0)

    # Writing
    knowledge_char_budget: int = Field(default=30000, gt=0)
    filter_fast_path_limit: int = Field(default=5, ge=0)

    # Pricing
    pricing: Dict[str, tuple] = Field(default_factory=lambda: dict(DEFAULT_PRICING))

    # Persistence
    database_url: Optional[str] = None

    @classmethod
    def from_env(cls, **overrides) -> "PipelineSettings":
        """Build settings from environment variables, then apply overrides."""
        provider = os.environ.get("LLM_PROVIDER") or "gemini"
        model = os.environ.get("LLM_MODEL")

        # LLM_MODEL may be a registry display name ("Gemini 2.5 Flash")
        resolved_provider, resolved_model = resolve_model(model)
        if resolved_provider:
            provider, model = resolved_provider, resolved_model

        database_url = os.environ.get("DATABASE_URL")

        values = {
            "llm_provider": provider,
            "llm_model": model,
            "llm_pro_model": os.environ.get("LLM_PRO_MODEL"),
            "image_provider": os.environ.get("IMAGE_PROVIDER") or "placeholder",
            "image_model": os.environ.get("IMAGE_MODEL"),
            "openai_api_key": os.environ.get("OPENAI_API_KEY"),
            "anthropic_api_key": os.environ.get("ANTHROPIC_API_KEY"),
            "google_api_key": os.environ.get("GOOGLE_API_KEY"),
            "ollama_host": os.environ.get("OLLAMA_HOST") or "http://localhost:11434",
            "sd_api_url": os.environ.get("SD_API_URL") or "http://localhost:7860",
            "retry_attempts": _env_int("AI_RETRY_ATTEMPTS", 2),
            "retry_delay": _env_float("AI_RETRY_DELAY", 0.3),
            "request_timeout": _env_float("AI_TIMEOUT", 120.0),
            "keyword_char_divisor": _env_int("KEYWORD_CHAR_DIVISOR", 200),
            "min_keywords": _env_int("MIN_KEYWORDS", 10),
            "max_keywords": _env_int("MAX_KEYWORDS", 30),
            "semantic_keyword_limit": _env_int("SEMANTIC_KEYWORD_LIMIT", 30),
            "stagger_unit": _env_float("ANALYSIS_STAGGER_UNIT", 1.0),
            "database_url": normalize_database_url(database_url) if database_url else None,
        }
        values.update(overrides)
        return cls(**values)

    def model_for_tier(self, tier: str) -> Optional[str]:
        """Concrete model id for a tier on the configured provider."""
        if tier == "image":
            if self.image_model:
                return self.image_model
            return DEFAULT_TIER_MODELS.get(self.image_provider, {}).get("image")
        if tier == "pro" and self.llm_pro_model:
            return self.llm_pro_model
        if tier == "flash" and self.llm_model:
            return self.llm_model
        return DEFAULT_TIER_MODELS.get(self.llm_provider, {}).get(tier)
