import logging
import sys

from askbase.config import settings


def configure_logging(level: str = settings.log_level) -> logging.Logger:
    logger = logging.getLogger("askbase")
    logger.setLevel(level)

    # Reloaders import the app twice; keep a single handler
    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("[%(asctime)s] %(levelname)s %(name)s: %(message)s"))
    logger.addHandler(handler)
    return logger


logger = configure_logging()
