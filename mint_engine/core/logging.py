import logging
import sys
from pythonjsonlogger import jsonlogger
from mint_engine.core.config import Settings


def configure_logging(settings: Settings) -> None:
    """
    Structured logging (JSON) to stdout. Context goes in `extra=`, never
    interpolated into the message, so every event name stays greppable.
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    # clear handlers if reloaded
    root.handlers = []

    handler = logging.StreamHandler(sys.stdout)
    fmt = jsonlogger.JsonFormatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s",
        rename_fields={"levelname": "level", "name": "logger"},
        static_fields={"environment": settings.environment},
    )
    handler.setFormatter(fmt)
    root.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(level)
    logging.getLogger("uvicorn.error").setLevel(level)
    # SQL echo is noisy at DEBUG
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    # upstream retries are logged by the oracle itself
    logging.getLogger("urllib3").setLevel(logging.WARNING)
