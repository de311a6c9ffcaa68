"""Process-wide structlog setup."""
import logging as py_logging

import structlog

from ..config import LoggingConfig


def configure_logging(logging_config: LoggingConfig) -> None:
    """Configures stdlib logging and the structlog processor chain.

    Called once by entry points (the CLI, or an embedding application);
    library modules only ever call ``structlog.get_logger(__name__)``.
    """
    level = getattr(py_logging, logging_config.level.upper(), py_logging.INFO)
    handlers: list[py_logging.Handler] = [py_logging.StreamHandler()]
    if logging_config.file:
        handlers.append(py_logging.FileHandler(logging_config.file, encoding="utf-8"))

    py_logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=handlers,
        force=True
    )

    renderer = (
        structlog.dev.ConsoleRenderer(colors=logging_config.file is None)
        if logging_config.format.lower() == "console"
        else structlog.processors.JSONRenderer(sort_keys=True)
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.format_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    structlog.get_logger(__name__).debug("Logging configured.", logging_level=logging_config.level, logging_format=logging_config.format)
