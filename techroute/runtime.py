from __future__ import annotations

import logging
import os
from pathlib import Path


class _MapboxTokenRedactFilter(logging.Filter):
    """Strips access tokens that urllib3/requests put in debug URLs."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not record.name.startswith(("urllib3", "requests")):
            return True
        message = record.getMessage()
        if "access_token=" in message:
            head, _, tail = message.partition("access_token=")
            _, amp, rest = tail.partition("&")
            record.msg = f"{head}access_token=***{amp}{rest}"
            record.args = ()
        return True


def configure_logging(name: str, level: str | None = None) -> logging.Logger:
    log_level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(
            level=getattr(logging, log_level, logging.INFO),
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )
    if os.getenv("REDACT_MAPBOX_TOKENS", "1").strip().lower() not in {"0", "false", "no", "off"}:
        # handler-level so records propagated from child loggers are covered too
        for handler in root_logger.handlers:
            has_filter = any(isinstance(existing, _MapboxTokenRedactFilter) for existing in handler.filters)
            if not has_filter:
                handler.addFilter(_MapboxTokenRedactFilter())
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, log_level, logging.INFO))
    return logger


def env_path(name: str, default: str) -> Path:
    return Path(os.getenv(name, default)).expanduser().resolve()
