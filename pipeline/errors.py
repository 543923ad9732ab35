"""
Exception types raised by the generation pipeline.

Most failures inside the pipeline are fail-soft and never reach callers;
these are the ones that do.
"""
from typing import Optional


class PipelineError(Exception):
    """Base class for pipeline errors."""


class LLMGatewayError(PipelineError):
    """An LLM provider call failed after all retries."""

    def __init__(self, message: str, provider: Optional[str] = None, transient: bool = False):
        super().__init__(message)
        self.provider = provider
        self.transient = transient


class LLMResponseValidationError(PipelineError):
    """The provider answered, but the JSON never matched the expected schema."""


class AnalysisRequiredError(PipelineError):
    """Write was requested without a stored analysis result and config."""

    def __init__(self, message: str = "Please run analysis first."):
        super().__init__(message)
