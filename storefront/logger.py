"""
Logging for the storefront service.

All modules log through children of the `storefront` logger, e.g.
`storefront.orders` or `storefront.inventory`, written to stdout.

Environment:
    LOG_LEVEL       level for the storefront loggers (default INFO)
    LOG_SQL         when "1", SQL statements from SQLAlchemy are logged too
"""
import logging
import os
import sys

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _stdout_handler(level: str) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    return handler


logger = logging.getLogger("storefront")
logger.setLevel(LOG_LEVEL)
if not logger.handlers:
    logger.addHandler(_stdout_handler(LOG_LEVEL))
# Handled here; uvicorn's root config must not print these twice
logger.propagate = False

if os.getenv("LOG_SQL", "0") == "1":
    sql_logger = logging.getLogger("sqlalchemy.engine")
    sql_logger.setLevel(logging.INFO)
    if not sql_logger.handlers:
        sql_logger.addHandler(_stdout_handler("INFO"))


def get_logger(name: str = None) -> logging.Logger:
    """Logger for a storefront module: `get_logger("orders")` -> `storefront.orders`."""
    if name:
        return logging.getLogger(f"storefront.{name}")
    return logger
