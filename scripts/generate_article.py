#!/usr/bin/env python3
"""
Run the full analyze + write cycle from a JSON config file.

Usage:
    python scripts/generate_article.py config.json [--out article.md] [--persist]
    python scripts/generate_article.py --resume <run_id> [--out article.md]

The config file holds GenerationConfig fields (title, reference_content,
sample_outline, target_audience, product_raw_text, ...). Provider keys
and tunables come from the environment (see pipeline/config.py).
"""
import argparse
import asyncio
import json
import sys
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import structlog

from pipeline import (
    GenerationConfig,
    GenerationOrchestrator,
    GenerationStatus,
    LLMGateway,
    PipelineSettings,
    RunContext,
)
from shared import RunStore, bind_run_context, configure_logging
from shared.database import check_db_connection, create_engine, create_session_maker, init_db

logger = structlog.get_logger()


async def confirm_on_console(missing):
    prompt = f"Analysis is missing: {', '.join(missing)}. Write anyway? [y/N] "
    answer = await asyncio.to_thread(input, prompt)
    return answer.strip().lower() in ("y", "yes")


async def main(args) -> int:
    configure_logging()
    settings = PipelineSettings.from_env()
    ctx = RunContext(settings=settings)
    gateway = LLMGateway(settings)

    run_store = None
    engine = None
    if args.persist or args.resume:
        engine = create_engine(settings.database_url)
        if not await check_db_connection(engine):
            await engine.dispose()
            print("Database is not reachable; check DATABASE_URL", file=sys.stderr)
            return 1
        await init_db(engine)
        run_store = RunStore(create_session_maker(engine))

    orchestrator = GenerationOrchestrator(
        ctx,
        gateway,
        confirm=None if args.yes else confirm_on_console,
        run_store=run_store,
    )

    try:
        if args.resume:
            if not await orchestrator.resume(args.resume):
                print(f"Run not found: {args.resume}", file=sys.stderr)
                return 1
        else:
            config = GenerationConfig.model_validate(json.loads(Path(args.config).read_text()))
            await orchestrator.analyze(config)
            if ctx.status != GenerationStatus.ANALYSIS_READY:
                print(f"Analysis failed: {ctx.error}", file=sys.stderr)
                return 1

        bind_run_context(run_id=ctx.run_id)
        await orchestrator.write()
    finally:
        if engine is not None:
            await engine.dispose()

    if ctx.status != GenerationStatus.COMPLETED:
        print(f"Generation ended with status {ctx.status.value}: {ctx.error or ''}", file=sys.stderr)
        return 1

    if args.out:
        Path(args.out).write_text(ctx.document)
    else:
        print(ctx.document)

    logger.info(
        "article_written",
        run_id=ctx.run_id,
        covered_points=len(ctx.covered_points),
        total_tokens=ctx.usage.total_tokens,
        total_cost=round(ctx.cost.total_cost, 6),
    )
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Generate a long-form article")
    parser.add_argument("config", nargs="?", help="Path to a GenerationConfig JSON file")
    parser.add_argument("--out", help="Write the article here instead of stdout")
    parser.add_argument("--persist", action="store_true", help="Save the run to DATABASE_URL")
    parser.add_argument("--resume", metavar="RUN_ID", help="Write a previously analyzed run")
    parser.add_argument("--yes", action="store_true", help="Write even if analysis is incomplete")
    parsed = parser.parse_args()

    if not parsed.config and not parsed.resume:
        parser.error("a config file or --resume is required")

    sys.exit(asyncio.run(main(parsed)))
