"""
Shared infrastructure: logging setup and run persistence.
"""
from .logging_config import configure_logging, bind_run_context, clear_run_context
from .run_store import RunStore, RunSnapshot

__all__ = [
    "configure_logging",
    "bind_run_context",
    "clear_run_context",
    "RunStore",
    "RunSnapshot",
]
