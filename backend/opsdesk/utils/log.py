import logging
import sys
from typing import Optional

from opsdesk.config import settings


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Return a component logger writing to stdout with a "[NAME]" prefix.
    Handlers are attached once, so repeated calls are cheap.
    """
    log = logging.getLogger(name)
    log.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO))
    if not log.handlers:
        h = logging.StreamHandler(sys.stdout)
        h.setFormatter(logging.Formatter(f"[{name.upper()}] %(levelname)s %(message)s"))
        log.addHandler(h)
        log.propagate = False
    return log


def setup_logging():
    """Configure the root logger for the whole application."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    h = logging.StreamHandler(sys.stdout)
    h.setFormatter(logging.Formatter(settings.LOG_FORMAT))
    root.addHandler(h)

    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
