"""Logging for auction transitions, settlement runs and the HTTP layer.

Engine modules log one line per accepted or rejected transition, keyed by
``auction_id``; the level comes from ``RENT_AUCTION_LOG_LEVEL``.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

from rent_auction.utils.config import get_settings


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_configured = False


def _resolve_level(level: Optional[str]) -> int:
    name = (level or get_settings().log_level).upper()
    resolved = logging.getLevelName(name)
    # getLevelName answers "Level X" for unknown names
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(level: Optional[str] = None) -> None:
    """Route auction logs to stdout at ``level``, or the configured level.

    Only the first call installs the handler, so modules can call this at
    import time in any order.
    """
    global _configured
    if _configured:
        return

    logging.basicConfig(level=_resolve_level(level), format=LOG_FORMAT, stream=sys.stdout)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Module logger for the engine; configures logging on first use."""
    configure_logging()
    return logging.getLogger(name)
