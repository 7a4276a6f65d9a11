import logging
import sys

from marketplace_messaging.core.config import settings


def configure_logging(level: str | None = None) -> None:
    # Drop handlers left over from a reload so records are not duplicated
    root = logging.getLogger()
    if root.handlers:
        root.handlers.clear()

    fmt = "%(asctime)s %(levelname)s %(name)s %(message)s"
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(fmt))

    root.setLevel((level or settings.LOG_LEVEL).upper())
    root.addHandler(handler)
