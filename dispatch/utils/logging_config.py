"""
Logging configuration for production
"""
import logging
import sys
from pathlib import Path
from dispatch.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers that flood the files at INFO
QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine")


def _handler(handler: logging.Handler, level: int) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    return handler


def setup_logging(log_dir: str = None) -> logging.Logger:
    """
    Attach stdout, app.log and error.log handlers to the root logger.
    Safe to call twice; handlers are only added once.
    """
    logs_dir = Path(log_dir or settings.LOG_DIR)
    logs_dir.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    if getattr(root_logger, "_dispatch_configured", False):
        return root_logger

    root_logger.addHandler(_handler(logging.StreamHandler(sys.stdout), logging.INFO))
    root_logger.addHandler(_handler(logging.FileHandler(logs_dir / "error.log"), logging.ERROR))
    root_logger.addHandler(_handler(logging.FileHandler(logs_dir / "app.log"), logging.INFO))
    root_logger._dispatch_configured = True

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    # Per-emit debug lines stay out of the files even at DEBUG
    logging.getLogger("dispatch.events").setLevel(logging.INFO)
    return root_logger
