import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

import structlog

from cloudcraft.config.defaults import LogDestination
from cloudcraft.config.schemas import LoggingConfig

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s [%(caller_info)s] - %(message)s"


class DetailedFormatter(logging.Formatter):
    def format(self, record):
        record.caller_info = f"{record.module}.{record.funcName}:{record.lineno}"
        return super().format(record)


def setup_logging(logging_config: Optional[LoggingConfig] = None,
                  level: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """
    Set up logging for the CLI using the stdlib root logger plus structlog.

    Args:
        logging_config: Logging section of the application configuration.
        level: Overrides ``logging_config.level`` (e.g. from ``--log-level``).

    Returns:
        Configured structlog logger instance.
    """
    logging_config = logging_config or LoggingConfig()
    level_name = (level or logging_config.level.value).upper()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level_name, logging.WARNING))

    handlers = []
    if logging_config.destination in (LogDestination.FILE, LogDestination.BOTH):
        log_path = logging_config.file.path
        os.makedirs(os.path.dirname(log_path) or ".", exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=logging_config.file.max_size_mb * 1024 * 1024,
            backupCount=logging_config.file.backup_count,
        )
        file_handler.setFormatter(DetailedFormatter(LOG_FORMAT))
        handlers.append(file_handler)

    if logging_config.destination in (LogDestination.STDOUT, LogDestination.BOTH):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(DetailedFormatter(LOG_FORMAT))
        handlers.append(console_handler)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in handlers:
        root_logger.addHandler(handler)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logger = structlog.get_logger("cloudcraft")
    logger.debug(
        "Logging configured",
        log_level=level_name,
        log_destination=logging_config.destination.value,
    )
    return logger
