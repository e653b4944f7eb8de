from __future__ import annotations

import sys

from forge import checker
from forge.checker import PreviewChecker, filter_console_errors


def test_filter_keeps_real_errors_only() -> None:
    messages = [
        "Uncaught ReferenceError: Hero is not defined",
        "Failed to load resource: net::ERR_NAME_NOT_RESOLVED",
        "Warning: Each child in a list should have a unique key prop. TypeError",
        "You are using the in-browser Babel transformer.",
        "Component error: TypeError: Cannot read properties of undefined",
        "plain log line",
    ]

    assert filter_console_errors(messages) == [
        "Uncaught ReferenceError: Hero is not defined",
        "Component error: TypeError: Cannot read properties of undefined",
    ]


def test_missing_playwright_skips_check(monkeypatch) -> None:
    sent: list = []
    monkeypatch.setitem(sys.modules, "playwright.sync_api", None)
    monkeypatch.setattr(checker, "_emit", sent.append)

    assert PreviewChecker().check("<html></html>") == []
    assert {"type": "check_result", "status": "skip", "msg": "Playwright unavailable", "detail": ""} in sent


def test_set_emit_routes_log_events(monkeypatch) -> None:
    sent: list = []
    monkeypatch.setattr(checker, "_emit", None)
    checker.set_emit(sent.append)

    checker.elog("INFO", "hello")

    assert sent == [{"type": "log", "level": "INFO", "text": "hello"}]
