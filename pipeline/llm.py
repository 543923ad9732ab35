"""
LLM gateway for the generation pipeline.

One object, four capabilities:
- run_text: free-text completion
- run_json: structured completion validated against a Pydantic model
- run_vision: describe an image by URL
- generate_image: text-to-image, returns a URL or data URI

Every call returns an LLMResult carrying usage, cost and duration. Providers
are called directly over httpx; transient failures (429, 5xx, timeouts) are
retried with a fixed delay.
"""
import asyncio
import base64
import hashlib
import json
import re
import time
from typing import Optional, Type, TypeVar, Tuple

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from .config import PipelineSettings
from .errors import LLMGatewayError, LLMResponseValidationError
from .schemas import CostBreakdown, LLMResult, TokenUsage

logger = structlog.get_logger()

# Type variable for generic Pydantic model validation
T = TypeVar("T", bound=BaseModel)

RETRYABLE_STATUS = {429, 500, 502, 503, 504}

# Image sizes per aspect ratio (OpenAI / Stable Diffusion)
ASPECT_SIZES = {
    "16:9": (1792, 1024),
    "1:1": (1024, 1024),
    "4:3": (1344, 1008),
    "9:16": (1024, 1792),
}


# =============================================================================
# USAGE & COST
# =============================================================================

def estimate_tokens(text: str) -> int:
    """Rough token estimate for providers that do not report usage."""
    return len(text or "") // 4


def calculate_cost(usage: TokenUsage, tier: str, settings: PipelineSettings) -> CostBreakdown:
    """Price a call by tier. Rates are USD per million tokens."""
    input_rate, output_rate = settings.pricing.get(tier, settings.pricing.get("flash", (0.0, 0.0)))
    input_cost = (usage.input_tokens / 1_000_000) * input_rate
    output_cost = (usage.output_tokens / 1_000_000) * output_rate
    return CostBreakdown(
        input_cost=input_cost,
        output_cost=output_cost,
        total_cost=input_cost + output_cost,
    )


def extract_json_text(raw: str) -> str:
    """Strip Markdown code fences and surrounding chatter from a JSON reply."""
    text = (raw or "").strip()
    fenced = re.search(r"```(?:json)?\s*(.*?)```", text, re.DOTALL)
    if fenced:
        return fenced.group(1).strip()
    if text and text[0] not in "{[":
        start = min((i for i in (text.find("{"), text.find("[")) if i >= 0), default=-1)
        if start >= 0:
            return text[start:]
    return text


def _is_transient(error: Exception) -> bool:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code in RETRYABLE_STATUS
    return isinstance(error, (httpx.TimeoutException, httpx.TransportError))


# =============================================================================
# GATEWAY
# =============================================================================

class LLMGateway:
    """
    Provider-agnostic access to text, JSON, vision and image models.

    Args:
        settings: Pipeline settings (provider, keys, retry policy, pricing)
        transport: Optional httpx transport, used by tests to stub providers
    """

    def __init__(
        self,
        settings: Optional[PipelineSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or PipelineSettings.from_env()
        self._transport = transport

    def _client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout or self.settings.request_timeout,
            transport=self._transport,
        )

    def _config_for_tier(self, tier: str) -> dict:
        s = self.settings
        return {
            "provider": s.llm_provider,
            "model": s.model_for_tier(tier),
            "temperature": s.temperature,
            "ollama_host": s.ollama_host,
            "openai_api_key": s.openai_api_key,
            "anthropic_api_key": s.anthropic_api_key,
            "google_api_key": s.google_api_key,
        }

    def _result(self, data, usage: TokenUsage, tier: str, started: float) -> LLMResult:
        return LLMResult(
            data=data,
            usage=usage,
            cost=calculate_cost(usage, tier, self.settings),
            duration=time.monotonic() - started,
        )

    async def _with_retry(self, operation: str, provider: str, call):
        """Run `call()` with the fixed-delay retry policy for transient errors."""
        attempts = self.settings.retry_attempts + 1
        for attempt in range(attempts):
            try:
                return await call()
            except Exception as e:
                transient = _is_transient(e)
                if transient and attempt < attempts - 1:
                    logger.warning(
                        "llm_call_retrying",
                        operation=operation,
                        provider=provider,
                        attempt=attempt + 1,
                        max_attempts=attempts,
                        error=str(e),
                    )
                    await asyncio.sleep(self.settings.retry_delay)
                    continue
                logger.error(
                    "llm_call_failed",
                    operation=operation,
                    provider=provider,
                    attempts=attempt + 1,
                    error=str(e),
                )
                raise LLMGatewayError(
                    f"{operation} via {provider} failed: {e}",
                    provider=provider,
                    transient=transient,
                ) from e

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def run_text(
        self,
        prompt: str,
        tier: str = "flash",
        max_tokens: int = 4000,
        temperature: Optional[float] = None,
    ) -> LLMResult:
        """Free-text completion."""
        config = self._config_for_tier(tier)
        if temperature is not None:
            config["temperature"] = temperature
        started = time.monotonic()

        text, usage = await self._with_retry(
            "run_text",
            config["provider"],
            lambda: self._call_llm(prompt, config, max_tokens=max_tokens),
        )
        return self._result(text, usage, tier, started)

    async def run_json(
        self,
        prompt: str,
        tier: str,
        response_model: Type[T],
        max_tokens: int = 8000,
    ) -> LLMResult:
        """
        Structured completion validated against `response_model`.

        If the model returns invalid JSON or JSON that doesn't match the
        schema, we re-prompt with the validation error appended so it can
        correct itself. Usage from every attempt is accumulated.

        Raises:
            LLMGatewayError: provider call failed after retries
            LLMResponseValidationError: schema never matched
        """
        config = self._config_for_tier(tier)
        started = time.monotonic()
        pydantic_schema = response_model.model_json_schema()
        max_retries = self.settings.validation_retries

        current_prompt = prompt
        total_usage = TokenUsage()

        for attempt in range(max_retries + 1):
            response, usage = await self._with_retry(
                "run_json",
                config["provider"],
                lambda: self._call_llm(
                    current_prompt,
                    config,
                    max_tokens=max_tokens,
                    json_mode=True,
                    response_schema=pydantic_schema,
                ),
            )
            total_usage = total_usage.add(usage)

            try:
                validated = response_model.model_validate_json(extract_json_text(response))
                if attempt > 0:
                    logger.info("llm_validation_retry_succeeded", attempt=attempt + 1)
                return self._result(validated, total_usage, tier, started)

            except ValidationError as e:
                if attempt < max_retries:
                    logger.warning(
                        "llm_validation_failed_retrying",
                        attempt=attempt + 1,
                        max_retries=max_retries,
                        model=response_model.__name__,
                        error=str(e)[:500],
                    )
                    current_prompt = f"""{prompt}

IMPORTANT: Your previous response was invalid. Please fix the following validation errors and try again:

{e.json()}

Respond with valid JSON only, matching the expected schema, with no additional text or markdown formatting."""
                else:
                    logger.error(
                        "llm_validation_failed_exhausted",
                        attempts=max_retries + 1,
                        model=response_model.__name__,
                        error=str(e)[:500],
                        response_preview=response[:500] if response else "EMPTY",
                    )
                    raise LLMResponseValidationError(
                        f"LLM response validation failed after {max_retries + 1} attempts: {e}"
                    ) from e

        # Should not reach here, but just in case
        raise LLMResponseValidationError("LLM validation failed")

    async def run_vision(
        self,
        prompt: str,
        image_url: str,
        tier: str = "flash",
        max_tokens: int = 1000,
    ) -> LLMResult:
        """Describe an image given by URL."""
        config = self._config_for_tier(tier)
        started = time.monotonic()

        text, usage = await self._with_retry(
            "run_vision",
            config["provider"],
            lambda: self._call_llm(prompt, config, max_tokens=max_tokens, image_url=image_url),
        )
        return self._result(text, usage, tier, started)

    async def generate_image(self, prompt: str, aspect_ratio: str = "16:9") -> LLMResult:
        """
        Generate one image and return its URL (or data URI) as `data`.

        Supported providers (IMAGE_PROVIDER):
        - placeholder: development placeholder images
        - openai: DALL-E 3
        - gemini: Gemini native image output
        - stable-diffusion: local Automatic1111 API

        Raises:
            LLMGatewayError: generation failed or the provider is misconfigured
        """
        provider = self.settings.image_provider
        started = time.monotonic()

        url, usage = await self._with_retry(
            "generate_image",
            provider,
            lambda: self._generate_image(prompt, provider, aspect_ratio),
        )
        return self._result(url, usage, "image", started)

    # -------------------------------------------------------------------------
    # Provider dispatch
    # -------------------------------------------------------------------------

    async def _call_llm(
        self,
        prompt: str,
        config: dict,
        max_tokens: int = 4000,
        json_mode: bool = False,
        response_schema: Optional[dict] = None,
        image_url: Optional[str] = None,
    ) -> Tuple[str, TokenUsage]:
        """Call the configured LLM provider."""
        provider = config["provider"]

        if provider == "openai":
            text, usage = await self._call_openai(prompt, config, max_tokens, json_mode, image_url)
        elif provider == "anthropic":
            text, usage = await self._call_anthropic(prompt, config, max_tokens, image_url)
        elif provider == "gemini":
            text, usage = await self._call_gemini(prompt, config, max_tokens, json_mode, response_schema, image_url)
        elif provider == "ollama":
            text, usage = await self._call_ollama(prompt, config, max_tokens, json_mode, image_url)
        else:
            raise ValueError(f"Unknown LLM provider: {provider}")

        if usage.total_tokens == 0:
            input_tokens = estimate_tokens(prompt)
            output_tokens = estimate_tokens(text)
            usage = TokenUsage(
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
            )
        return text, usage

    async def _call_openai(
        self,
        prompt: str,
        config: dict,
        max_tokens: int,
        json_mode: bool,
        image_url: Optional[str] = None,
    ) -> Tuple[str, TokenUsage]:
        """Call OpenAI chat completions."""
        api_key = config["openai_api_key"]
        if not api_key:
            raise ValueError("OPENAI_API_KEY not set")

        if image_url:
            content = [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {"url": image_url}},
            ]
        else:
            content = prompt

        request_body = {
            "model": config["model"],
            "messages": [{"role": "user", "content": content}],
            "max_tokens": max_tokens,
        }
        if json_mode:
            request_body["response_format"] = {"type": "json_object"}
        if config.get("temperature") is not None:
            request_body["temperature"] = config["temperature"]

        async with self._client() as client:
            response = await client.post(
                "https://api.openai.com/v1/chat/completions",
                headers={
                    "Authorization": f"Bearer {api_key}",
                    "Content-Type": "application/json",
                },
                json=request_body,
            )
            response.raise_for_status()
            data = response.json()

        usage_block = data.get("usage") or {}
        usage = TokenUsage(
            input_tokens=usage_block.get("prompt_tokens", 0),
            output_tokens=usage_block.get("completion_tokens", 0),
            total_tokens=usage_block.get("total_tokens", 0),
        )
        return data["choices"][0]["message"]["content"] or "", usage

    async def _call_anthropic(
        self,
        prompt: str,
        config: dict,
        max_tokens: int,
        image_url: Optional[str] = None,
    ) -> Tuple[str, TokenUsage]:
        """Call Anthropic messages API."""
        api_key = config["anthropic_api_key"]
        if not api_key:
            raise ValueError("ANTHROPIC_API_KEY not set")

        if image_url:
            content = [
                {"type": "image", "source": {"type": "url", "url": image_url}},
                {"type": "text", "text": prompt},
            ]
        else:
            content = prompt

        request_body = {
            "model": config["model"],
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": content}],
        }
        if config.get("temperature") is not None:
            request_body["temperature"] = config["temperature"]

        async with self._client() as client:
            response = await client.post(
                "https://api.anthropic.com/v1/messages",
                headers={
                    "x-api-key": api_key,
                    "Content-Type": "application/json",
                    "anthropic-version": "2023-06-01",
                },
                json=request_body,
            )
            response.raise_for_status()
            data = response.json()

        usage_block = data.get("usage") or {}
        input_tokens = usage_block.get("input_tokens", 0)
        output_tokens = usage_block.get("output_tokens", 0)
        usage = TokenUsage(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
        )
        text = "".join(block.get("text", "") for block in data.get("content", []) if block.get("type") == "text")
        return text, usage

    async def _fetch_image_b64(self, image_url: str) -> Tuple[str, str]:
        """Download an image for providers that only accept inline bytes."""
        if image_url.startswith("data:"):
            header, _, payload = image_url.partition(",")
            mime_type = header[5:].split(";")[0] or "image/png"
            return mime_type, payload

        async with self._client(timeout=30) as client:
            response = await client.get(image_url, follow_redirects=True)
            response.raise_for_status()
            mime_type = response.headers.get("content-type", "image/jpeg").split(";")[0]
            return mime_type, base64.b64encode(response.content).decode()

    async def _call_ollama(
        self,
        prompt: str,
        config: dict,
        max_tokens: int,
        json_mode: bool = False,
        image_url: Optional[str] = None,
    ) -> Tuple[str, TokenUsage]:
        """Call Ollama using the chat endpoint."""
        ollama_host = config["ollama_host"]
        model = config["model"]

        logger.info("calling_ollama", host=ollama_host, model=model, prompt_len=len(prompt), json_mode=json_mode)

        message = {"role": "user", "content": prompt}
        if image_url:
            _, image_b64 = await self._fetch_image_b64(image_url)
            message["images"] = [image_b64]

        request_body = {
            "model": model,
            "messages": [message],
            "stream": False,
            "options": {
                "num_predict": max_tokens,
            },
        }
        if config.get("temperature") is not None:
            request_body["options"]["temperature"] = config["temperature"]
        if json_mode:
            request_body["format"] = "json"

        async with self._client(timeout=300) as client:
            response = await client.post(f"{ollama_host}/api/chat", json=request_body)
            response.raise_for_status()
            data = response.json()

        content = data.get("message", {}).get("content", "")
        if not content:
            logger.error("ollama_empty_response", full_response=data)

        input_tokens = data.get("prompt_eval_count", 0)
        output_tokens = data.get("eval_count", 0)
        usage = TokenUsage(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
        )
        return content, usage

    async def _call_gemini(
        self,
        prompt: str,
        config: dict,
        max_tokens: int,
        json_mode: bool = False,
        response_schema: Optional[dict] = None,
        image_url: Optional[str] = None,
    ) -> Tuple[str, TokenUsage]:
        """
        Call Google Gemini generateContent.

        API docs: https://ai.google.dev/gemini-api/docs/text-generation
        """
        api_key = config["google_api_key"]
        if not api_key:
            raise ValueError("GOOGLE_API_KEY not set")

        model = config["model"]

        # 2.5 models spend output budget on thinking; boost to avoid truncation
        is_thinking_model = "2.5" in model or "thinking" in model.lower()
        effective_max_tokens = max(max_tokens * 4, 8000) if is_thinking_model else max_tokens

        temperature = config.get("temperature")
        if temperature is None:
            temperature = 0.2 if json_mode else 0.7

        parts = [{"text": prompt}]
        if image_url:
            mime_type, image_b64 = await self._fetch_image_b64(image_url)
            parts.append({"inline_data": {"mime_type": mime_type, "data": image_b64}})

        request_body = {
            "contents": [{"parts": parts}],
            "generationConfig": {
                "maxOutputTokens": effective_max_tokens,
                "temperature": temperature,
            },
        }
        if json_mode:
            request_body["generationConfig"]["responseMimeType"] = "application/json"
            gemini_schema = convert_schema_for_gemini(response_schema) if response_schema else None
            if gemini_schema:
                request_body["generationConfig"]["responseSchema"] = gemini_schema

        logger.info(
            "calling_gemini",
            model=model,
            prompt_len=len(prompt),
            json_mode=json_mode,
            has_image=bool(image_url),
            max_tokens_effective=effective_max_tokens,
        )

        url = f"https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
        async with self._client() as client:
            response = await client.post(
                url,
                headers={
                    "Content-Type": "application/json",
                    "x-goog-api-key": api_key,
                },
                json=request_body,
            )
            response.raise_for_status()
            data = response.json()

        try:
            content = "".join(
                part.get("text", "") for part in data["candidates"][0]["content"]["parts"]
            )
        except (KeyError, IndexError) as e:
            logger.error("gemini_parse_error", error=str(e), full_response=data)
            raise ValueError(f"Failed to parse Gemini response: {data}")

        return content, _gemini_usage(data)

    # -------------------------------------------------------------------------
    # Image providers
    # -------------------------------------------------------------------------

    async def _generate_image(self, prompt: str, provider: str, aspect_ratio: str) -> Tuple[str, TokenUsage]:
        width, height = ASPECT_SIZES.get(aspect_ratio, ASPECT_SIZES["16:9"])

        if provider == "placeholder":
            prompt_hash = hashlib.md5(prompt.encode()).hexdigest()[:6]
            logger.info("placeholder_image_generated", prompt=prompt[:50])
            return f"https://placehold.co/{width}x{height}/1a1a2e/eaeaea?text=AI+Image+{prompt_hash}", TokenUsage()

        if provider == "stable-diffusion":
            async with self._client() as client:
                response = await client.post(
                    f"{self.settings.sd_api_url}/sdapi/v1/txt2img",
                    json={
                        "prompt": prompt,
                        "negative_prompt": "text, watermark, signature, blurry, low quality",
                        "width": width,
                        "height": height,
                        "steps": 20,
                        "cfg_scale": 7,
                    },
                )
                response.raise_for_status()
                data = response.json()
            logger.info("sd_image_generated", prompt=prompt[:50])
            return f"data:image/png;base64,{data['images'][0]}", TokenUsage()

        if provider == "openai":
            api_key = self.settings.openai_api_key
            if not api_key:
                raise ValueError("OPENAI_API_KEY not set")
            async with self._client() as client:
                response = await client.post(
                    "https://api.openai.com/v1/images/generations",
                    headers={
                        "Authorization": f"Bearer {api_key}",
                        "Content-Type": "application/json",
                    },
                    json={
                        "model": self.settings.model_for_tier("image") or "dall-e-3",
                        "prompt": prompt,
                        "n": 1,
                        "size": f"{width}x{height}" if aspect_ratio in ("16:9", "1:1", "9:16") else "1792x1024",
                        "quality": "standard",
                    },
                )
                response.raise_for_status()
                data = response.json()
            logger.info("dalle_image_generated", prompt=prompt[:50])
            return data["data"][0]["url"], TokenUsage()

        if provider == "gemini":
            api_key = self.settings.google_api_key
            if not api_key:
                raise ValueError("GOOGLE_API_KEY not set")
            image_model = self.settings.model_for_tier("image") or "gemini-2.5-flash-image"
            url = f"https://generativelanguage.googleapis.com/v1beta/models/{image_model}:generateContent"
            async with self._client() as client:
                response = await client.post(
                    url,
                    headers={
                        "Content-Type": "application/json",
                        "x-goog-api-key": api_key,
                    },
                    json={
                        "contents": [{"parts": [{"text": f"Generate an image: {prompt}"}]}],
                        "generationConfig": {
                            "responseModalities": ["TEXT", "IMAGE"],
                            "imageConfig": {"aspectRatio": aspect_ratio},
                        },
                    },
                )
                response.raise_for_status()
                data = response.json()

            for part in data.get("candidates", [{}])[0].get("content", {}).get("parts", []):
                inline = part.get("inlineData") or part.get("inline_data")
                if inline:
                    mime_type = inline.get("mimeType") or inline.get("mime_type") or "image/png"
                    logger.info("gemini_image_generated", prompt=prompt[:50])
                    return f"data:{mime_type};base64,{inline['data']}", _gemini_usage(data)

            logger.error("gemini_image_parse_error", full_response=data)
            raise ValueError("Gemini returned no image data")

        raise ValueError(f"Unknown image provider: {provider}")


def _gemini_usage(data: dict) -> TokenUsage:
    meta = data.get("usageMetadata") or {}
    input_tokens = meta.get("promptTokenCount", 0)
    output_tokens = meta.get("candidatesTokenCount", 0)
    return TokenUsage(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=meta.get("totalTokenCount", input_tokens + output_tokens),
    )


def convert_schema_for_gemini(pydantic_schema: dict) -> Optional[dict]:
    """
    Convert a Pydantic JSON schema to Gemini's responseSchema format.

    Gemini expects a simplified schema without $defs, additionalProperties,
    a root title or $schema. Returns None if the schema contains features
    that can't be converted, so the caller relies on JSON mode alone.

    See: https://ai.google.dev/gemini-api/docs/structured-output
    """
    has_unsupported_features = False
    defs = pydantic_schema.get("$defs", {})

    def simplify(schema: dict) -> dict:
        nonlocal has_unsupported_features

        if "$ref" in schema:
            ref_path = schema["$ref"]
            if ref_path.startswith("#/$defs/") and ref_path[8:] in defs:
                return simplify(defs[ref_path[8:]])
            return {"type": "object"}

        # Optional[X] comes through as anyOf [X, null]
        if "anyOf" in schema:
            options = [opt for opt in schema["anyOf"] if opt.get("type") != "null"]
            if len(options) == 1:
                return simplify(options[0])
            has_unsupported_features = True
            return {"type": "string"}

        if "additionalProperties" in schema and schema["additionalProperties"] not in (False, None):
            has_unsupported_features = True
            return {"type": "object"}

        result = {}
        for key in ("type", "description", "enum"):
            if key in schema:
                result[key] = schema[key]
        if "properties" in schema:
            result["properties"] = {k: simplify(v) for k, v in schema["properties"].items()}
        if "required" in schema:
            result["required"] = schema["required"]
        if "items" in schema:
            result["items"] = simplify(schema["items"])
        return result

    simplified = simplify(pydantic_schema)
    if has_unsupported_features:
        return None
    return simplified


def response_schema_hint(response_model: Type[BaseModel]) -> str:
    """Schema block appended to prompts for providers without native schemas."""
    schema = json.dumps(response_model.model_json_schema(), indent=2, ensure_ascii=False)
    return f"Respond with JSON matching this schema:\n```json\n{schema}\n```"
