import logging
import sys
import structlog
from pythonjsonlogger import jsonlogger

from ..config import get_settings

_configured = False


def setup_logging(level: int = logging.INFO, json_output: bool = None):
    """Structured logging setup shared by the service and the console"""
    global _configured

    if json_output is None:
        json_output = get_settings().log_json

    json_formatter = jsonlogger.JsonFormatter(
        fmt="%(asctime)s %(name)s %(levelname)s %(message)s"
    )

    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Root logger gets exactly one handler, even if called twice
    logger = logging.getLogger()
    if not _configured:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(json_formatter)
        logger.addHandler(handler)
        _configured = True
    logger.setLevel(level)

    return structlog.get_logger()
