"""
Logging Configuration

Every module logs through ``logging.getLogger(__name__)``; this module only
installs the root handler once at application start.
"""

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """
    Configure the root logger with a single stream handler.

    Safe to call more than once - existing handlers are replaced.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ...)
    """
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())

    # APScheduler logs every run at INFO; the job listener already reports results
    logging.getLogger("apscheduler.executors").setLevel(logging.WARNING)
