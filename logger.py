"""
Logging for the storefront API. Level comes from LOG_LEVEL.
"""
import logging
import os
import sys

logger = logging.getLogger("storefront")
logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())

if not logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
    logger.addHandler(handler)
logger.propagate = False


def get_logger(name: str = None) -> logging.Logger:
    """Child of the `storefront` logger, e.g. `storefront.api`."""
    return logging.getLogger(f"storefront.{name}") if name else logger
