import threading

import pytest

from scripts.generate_article import confirm_on_console


@pytest.mark.asyncio
async def test_console_confirm_reads_input_off_the_event_loop(monkeypatch):
    seen = {}

    def fake_input(prompt):
        seen["prompt"] = prompt
        seen["thread"] = threading.current_thread()
        return " Yes "

    monkeypatch.setattr("builtins.input", fake_input)

    assert await confirm_on_console(["authority", "keyword plans"])
    assert seen["prompt"].startswith("Analysis is missing: authority, keyword plans.")
    assert seen["thread"] is not threading.main_thread()


@pytest.mark.asyncio
async def test_console_confirm_defaults_to_no(monkeypatch):
    monkeypatch.setattr("builtins.input", lambda prompt: "")
    assert not await confirm_on_console(["structure"])
