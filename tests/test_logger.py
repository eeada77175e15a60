from __future__ import annotations

import logging

from rent_auction.utils.config import get_settings
from rent_auction.utils.logger import _resolve_level, get_logger


def test_explicit_level_names_are_case_insensitive() -> None:
    assert _resolve_level("debug") == logging.DEBUG
    assert _resolve_level("Warning") == logging.WARNING


def test_unknown_level_falls_back_to_info() -> None:
    assert _resolve_level("nonsense") == logging.INFO


def test_level_defaults_to_environment_setting(monkeypatch) -> None:
    monkeypatch.setenv("RENT_AUCTION_LOG_LEVEL", "error")
    get_settings.cache_clear()
    try:
        assert _resolve_level(None) == logging.ERROR
    finally:
        get_settings.cache_clear()


def test_get_logger_returns_named_logger() -> None:
    logger = get_logger("rent_auction.services.orchestrator")

    assert logger.name == "rent_auction.services.orchestrator"
