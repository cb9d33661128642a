"""Root logger bootstrap."""

from __future__ import annotations

import logging

from src.core.config import Settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(settings: Settings) -> None:
    """Configure the root logger from settings.

    Safe to call more than once; handlers are only installed the first time.
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger().setLevel(level)
    # httpx, under the anthropic SDK, logs every request at INFO
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
