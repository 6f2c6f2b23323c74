# pylint: disable=missing-module-docstring,missing-function-docstring

import json
from typing import Any

import pytest

from observability import logger


def test_log_event_emits_valid_jsonl(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """
    - log_event emits exactly one JSONL line
    - payload is serialized as-is
    - output sink is patchable
    """
    captured: list[str] = []
    monkeypatch.setattr(logger, "_print", captured.append)

    payload: dict[str, Any] = {
        "event_type": "TEST",
        "value": 123,
    }

    logger.log_event(payload)

    assert len(captured) == 1
    assert "\n" not in captured[0]
    assert json.loads(captured[0]) == payload


def test_log_event_renders_exceptions(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: list[str] = []
    monkeypatch.setattr(logger, "_print", captured.append)

    logger.log_event({"event_type": "TEST", "error": ValueError("boom")})

    assert json.loads(captured[0])["error"] == "boom"


def test_log_event_never_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: list[str] = []
    monkeypatch.setattr(logger, "_print", captured.append)

    circular: dict[str, Any] = {"event_type": "TEST", "ts_ms": 1}
    circular["self"] = circular

    logger.log_event(circular)

    decoded = json.loads(captured[0])
    assert decoded["event_type"] == "LOGGER_SERIALIZATION_ERROR"
    assert decoded["ts_ms"] == 1


def test_configure_disables_output(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: list[str] = []
    monkeypatch.setattr(logger, "_print", captured.append)
    monkeypatch.setattr(logger, "_enabled", True)

    logger.configure(enabled=False)
    logger.log_event({"event_type": "TEST"})

    assert captured == []
