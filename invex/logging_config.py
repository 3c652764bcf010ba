"""
Logging setup for InvEX entry points (CLI, worker).

Library modules only ever call ``logging.getLogger(__name__)``; handlers are
attached here, once, by whoever owns the process.
"""

import logging
from typing import Optional

from invex.config.invex_config import InvexConfig

DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(config: Optional[InvexConfig] = None, level: Optional[str] = None) -> None:
    """
    Configure root logging from the ``logging`` config section.

    Args:
        config: Configuration to read; defaults to the shared instance
        level: Explicit level name overriding the configured one
    """
    config = config or InvexConfig.default()
    log_config = config.get('logging', {}) or {}

    level_name = (level or log_config.get('level') or 'INFO').upper()
    fmt = log_config.get('format') or DEFAULT_FORMAT

    handlers = [logging.StreamHandler()]
    if log_config.get('file'):
        handlers.append(logging.FileHandler(log_config['file']))

    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=fmt,
        handlers=handlers,
        force=True
    )
