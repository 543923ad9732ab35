"""
Structured logging setup.

Configures structlog over the stdlib logging module with one processor
chain: JSON output by default, the console renderer when LOG_PRETTY=1.
Modules call structlog.get_logger() directly; call configure_logging()
once at process start (scripts, services, tests that need it).
"""
import logging
import os
from typing import Optional

import structlog

_configured = False


def configure_logging(level: Optional[str] = None, pretty: Optional[bool] = None, force: bool = False) -> None:
    """
    Set up structlog + stdlib bridging exactly once.

    Args:
        level: Log level name (default: LOG_LEVEL env or INFO)
        pretty: Console renderer instead of JSON (default: LOG_PRETTY env)
        force: Reconfigure even if already configured
    """
    global _configured
    if _configured and not force:
        return

    log_level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    if pretty is None:
        pretty = os.getenv("LOG_PRETTY", "0").lower() in {"1", "true", "yes"}
    renderer = structlog.dev.ConsoleRenderer() if pretty else structlog.processors.JSONRenderer()

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level, logging.INFO))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    _configured = True


def bind_run_context(run_id: Optional[str] = None, **extra) -> None:
    """Bind a run id (and any extra keys) into every subsequent log line."""
    payload = {k: v for k, v in {"run_id": run_id, **extra}.items() if v is not None}
    if payload:
        structlog.contextvars.bind_contextvars(**payload)


def clear_run_context() -> None:
    structlog.contextvars.clear_contextvars()
