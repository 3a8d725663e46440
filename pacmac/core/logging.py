import logging

from pacmac.core.config import config

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"


def get_logger(name: str = "pacmac") -> logging.Logger:
    level = config.log_level.upper()
    logging.basicConfig(
        format=LOG_FORMAT,
        level=getattr(logging, level, logging.INFO),
    )
    return logging.getLogger(name)
