from __future__ import annotations

import logging

from signalflow.core.config import get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging() -> None:
    # Configure root logging once; repeated app factories must not stack handlers.
    settings = get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=_LOG_FORMAT)
    root.setLevel(level)
    # SQLAlchemy echoes are noisy at INFO; keep them opt-in.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
