"""
백엔드 로거 설정. / Logger setup for the backend.
"""

import logging

_ROOT_LOGGER_NAME = "tennis_shop"


def configure_logging(level: str = "INFO") -> logging.Logger:
    """
    `tennis_shop` 로거에 StreamHandler 를 한 번만 붙인다.
    Attach a single StreamHandler to the `tennis_shop` logger (idempotent).
    """
    logger = logging.getLogger(_ROOT_LOGGER_NAME)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"),
        )
        logger.addHandler(handler)
    logger.setLevel(level.upper())
    return logger
