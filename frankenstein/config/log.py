"""
Logging setup for applications embedding the engine
"""
import logging
from typing import Optional

LOG_FORMAT = '%(asctime)s [%(name)s] %(levelname)s: %(message)s'


def configure_logging(level: Optional[str] = None):
    """
    Configure root logging. Level defaults to settings.log_level.

    The library itself only creates module loggers; calling this is up to
    the application.
    """
    if level is None:
        from frankenstein.config.settings import get_settings
        level = get_settings().log_level

    logging.basicConfig(level=getattr(logging, str(level).upper(), logging.INFO), format=LOG_FORMAT)
