import json
import logging

import structlog

from shared.logging_config import bind_run_context, clear_run_context, configure_logging


def test_json_logs_carry_bound_run_id(capsys):
    configure_logging(level="INFO", pretty=False, force=True)
    try:
        bind_run_context(run_id="run-42", phase=None)
        structlog.get_logger("pipeline.test").info("section_generated", title="Benefits")
    finally:
        clear_run_context()

    line = capsys.readouterr().err.strip().splitlines()[-1]
    event = json.loads(line)
    assert event["event"] == "section_generated"
    assert event["run_id"] == "run-42"
    assert event["title"] == "Benefits"
    assert "phase" not in event


def test_level_filtering(capsys):
    configure_logging(level="WARNING", pretty=False, force=True)
    structlog.get_logger("pipeline.test").info("hidden_event")
    assert "hidden_event" not in capsys.readouterr().err
    assert logging.getLogger().level == logging.WARNING
