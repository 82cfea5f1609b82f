from __future__ import annotations

import logging

from teamhub.core.config import get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str | None = None) -> None:
    # Install a single stream handler on the teamhub logger tree.
    resolved = (level or get_settings().log_level).upper()
    logger = logging.getLogger("teamhub")
    logger.setLevel(resolved)
    if not any(getattr(handler, "_teamhub", False) for handler in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        handler._teamhub = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
