import logging

from prbot.core.config import LOG_LEVEL

LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"

logger = logging.getLogger("prbot")


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )
