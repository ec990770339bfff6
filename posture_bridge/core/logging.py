import logging

from posture_bridge.core.config import Settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(settings: Settings) -> None:
    level = logging.DEBUG if settings.debug else settings.log_level.upper()
    logging.basicConfig(level=level, format=LOG_FORMAT)
    # httpx logs every request line at INFO, including the token endpoint
    logging.getLogger("httpx").setLevel(logging.WARNING)
