"""Logging configuration for the federation engine."""

from __future__ import annotations

import logging

from lumen_federation.core.settings import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Apply the configured log level to the root logger once."""
    resolved = (level or settings.log_level).upper()
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=resolved, format=LOG_FORMAT)
    root.setLevel(resolved)
    # httpx logs every request at INFO which drowns delivery logs
    logging.getLogger("httpx").setLevel(logging.WARNING)
