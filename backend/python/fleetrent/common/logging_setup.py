"""
Logging configuration shared by the CLI, the scheduler daemon and the web app.
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

LOG_FORMAT = '%(asctime)s | %(levelname)s | %(name)s | %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

_configured = False


def setup_logging(level: str = 'INFO', log_file: Optional[str] = None) -> None:
    """
    Configure root logging once per process.

    Args:
        level: Log level name
        log_file: Optional path for a rotating log file (10MB max, keep 5 backups)
    """
    global _configured
    if _configured:
        return

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handler = RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5)
        handler.setFormatter(formatter)
        root.addHandler(handler)

    # APScheduler is chatty at INFO
    logging.getLogger('apscheduler').setLevel(logging.WARNING)
    _configured = True


def setup_logging_from_config() -> None:
    """Configure logging from app.yaml (section `logging`)."""
    from .config_loader import get_config

    section = get_config().app.logging
    if section:
        setup_logging(section.get('level', 'INFO'), section.get('file'))
    else:
        setup_logging()
