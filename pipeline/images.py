"""
Post-write image phase.

Two passes:
1. plan_images_for_article: one LLM call proposes image slots for the text
2. generate_images: every planned image is generated concurrently;
   failures are recorded on the plan and never raised
"""
import asyncio
from typing import List, Sequence

import structlog

from .context import RunContext
from .llm import response_schema_hint
from .prompts import PLAN_IMAGES_PROMPT
from .schemas import ImageAssetPlan, LLMImagePlanResponse, LLMResult, ScrapedImage

logger = structlog.get_logger()

MIN_PARAGRAPH_CHARS = 50


def target_image_count(content: str, scraped_images: Sequence[ScrapedImage]) -> int:
    """Two images per substantial paragraph, at least 2, and at least references + 2."""
    paragraphs = [p for p in (content or "").split("\n") if len(p.strip()) > MIN_PARAGRAPH_CHARS]
    return max(max(2, len(paragraphs) * 2), len(scraped_images) + 2)


async def plan_images_for_article(
    gateway,
    content: str,
    scraped_images: Sequence[ScrapedImage],
    audience: str,
    visual_style: str,
) -> LLMResult:
    """
    Plan images for the finished article.

    Returns:
        LLMResult whose data is List[ImageAssetPlan] (status "idle")
    """
    max_images = target_image_count(content, scraped_images)
    image_context = "\n".join(
        f"- {img.alt_text or 'image'}: {img.ai_description or 'no description'}"
        for img in scraped_images
    ) or "none"

    prompt = PLAN_IMAGES_PROMPT.format(
        max_images=max_images,
        visual_style=visual_style or "n/a",
        audience=audience,
        image_context=image_context,
        content=content[:12000],
        response_schema=response_schema_hint(LLMImagePlanResponse),
    )
    res = await gateway.run_json(prompt, "flash", LLMImagePlanResponse)

    plans = [
        ImageAssetPlan(
            id=f"img_{index}",
            category=item.category,
            generated_prompt=item.generated_prompt,
            insert_after=item.insert_after,
        )
        for index, item in enumerate(res.data.plans[:max_images])
        if item.generated_prompt
    ]
    logger.info("images_planned", requested=max_images, planned=len(plans))
    return res.model_copy(update={"data": plans})


async def generate_images(ctx: RunContext, gateway, plans: List[ImageAssetPlan], visual_style: str = "") -> int:
    """
    Generate every planned image concurrently, updating plans in place.

    Returns:
        Number of images generated successfully
    """

    async def generate_one(plan: ImageAssetPlan) -> bool:
        if ctx.is_stopped():
            return False
        plan.status = "generating"
        prompt = f"{plan.generated_prompt}\n\nStyle: {visual_style}" if visual_style else plan.generated_prompt
        try:
            res = await gateway.generate_image(prompt, aspect_ratio="16:9")
            ctx.add_cost(res.usage, res.cost)
            plan.url = res.data
            plan.status = "done"
            logger.info("image_generated", image_id=plan.id, category=plan.category.value)
            return True
        except Exception as e:
            plan.status = "error"
            plan.error = str(e)
            logger.error("image_generation_failed", image_id=plan.id, error=str(e))
            return False

    outcomes = await asyncio.gather(*(generate_one(plan) for plan in plans))
    generated = sum(1 for ok in outcomes if ok)
    logger.info("images_generated", total=len(plans), generated=generated, failed=len(plans) - generated)
    return generated
