"""Root logger setup for the API process and its background engines."""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# The vendor poll loop issues a request per second per word; keep these at WARNING
QUIET_LOGGERS = ("httpx", "httpcore", "botocore", "boto3", "s3transfer")


def configure_logging(level: int | str = logging.INFO) -> logging.Logger:
    """Attach one stream handler to the root logger; safe to call again on reload."""

    root = logging.getLogger()
    root.setLevel(level)

    if not any(getattr(h, "_lingua", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._lingua = True
        root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root
