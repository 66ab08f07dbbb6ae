import os
import sys
import logging
from logging.handlers import RotatingFileHandler
from config import LOG_DIR, LOG_FILE, LOG_LEVEL

FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# chatty HTTP loggers, kept at LIBRARY_LOG_LEVEL
LIBRARY_LOGGERS = ("urllib3", "urllib3.connectionpool", "requests")


def get_logger(name: str) -> logging.Logger:
    os.makedirs(LOG_DIR, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    fmt = logging.Formatter(FORMAT)

    if not any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
        handler = RotatingFileHandler(
            os.path.join(LOG_DIR, LOG_FILE),
            maxBytes=5 * 1024 * 1024,   # 5 MB
            backupCount=5               # keep 5 logs
        )
        handler.setFormatter(fmt)
        logger.addHandler(handler)

    # RotatingFileHandler is itself a StreamHandler, so match the exact type
    if not any(type(h) is logging.StreamHandler for h in logger.handlers):
        console = logging.StreamHandler(sys.stdout)
        console.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
        console.setFormatter(fmt)
        logger.addHandler(console)

    return logger


def configure_library_log_levels(level: str = "ERROR") -> None:
    lvl = getattr(logging, str(level).upper(), logging.ERROR)
    for name in LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(lvl)
