import logging

from interlink.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Install the process-wide log format. Safe to call more than once."""
    logging.basicConfig(level=(level or settings.LOG_LEVEL).upper(), format=LOG_FORMAT)
    # httpx logs every request at INFO; keep it for debugging only
    logging.getLogger("httpx").setLevel(logging.WARNING)
