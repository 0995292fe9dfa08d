"""
Logging setup for the rewards ledger.

Call setup_logging() once at startup; modules then use
logging.getLogger(__name__) or current_app.logger.
"""
import logging
import os
import sys

LOG_FORMAT = '%(asctime)s %(levelname)s [%(name)s] %(message)s'

_configured = False


def setup_logging(level: str = None) -> None:
    """
    Configure the root logger.

    Args:
        level: Log level name; defaults to the LOG_LEVEL env var, then INFO
    """
    global _configured
    if _configured:
        return

    level_name = (level or os.getenv('LOG_LEVEL', 'INFO')).upper()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level_name, logging.INFO))

    # SQL echo is controlled by SQLALCHEMY_ECHO, keep the engine logger quiet otherwise
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)

    _configured = True
