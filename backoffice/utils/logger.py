"""
Logging configuration
"""
import logging
import sys
from backoffice.config import get_settings

settings = get_settings()

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging() -> None:
    """Attach a single stdout handler to the root logger"""
    root = logging.getLogger()

    if not any(getattr(h, "_backoffice", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._backoffice = True
        root.addHandler(handler)

    root.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)
