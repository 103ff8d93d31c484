"""
Structured Logging
==================
JSON logging for the audit pipeline and its host service.

Pipeline modules log through ``structlog.get_logger(__name__)``. This module
routes structlog and plain stdlib records (aiokafka, uvicorn) through one
handler, so both come out as a single JSON line per record.

Per-call context such as the correlation id is bound with
``structlog.contextvars`` and merged into every record.

Usage:
    from medstaff_audit.log import setup_logging

    setup_logging(service_name="ms-security")
"""

import logging
import sys

import structlog


def _service_processor(service_name: str):
    def add_service(logger, method_name, event_dict):
        event_dict.setdefault("service", service_name)
        return event_dict
    return add_service


def setup_logging(
    service_name: str,
    level: str = "INFO",
    json_output: bool = True,
) -> logging.Logger:
    """
    Configure structlog and the stdlib root logger.

    Args:
        service_name: Added to every record as ``service``
        level: Minimum level name, case-insensitive
        json_output: JSON lines when True, coloured console output otherwise

    Returns:
        The root logger
    """
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _service_processor(service_name),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    # aiokafka reports every reconnect at INFO
    logging.getLogger("aiokafka").setLevel(logging.WARNING)

    structlog.configure(
        processors=[structlog.stdlib.filter_by_level]
        + shared_processors
        + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    structlog.get_logger(__name__).info("logging_configured", level=logging.getLevelName(log_level))
    return root_logger
