import logging
import sys

import structlog

from chatbot_test_platform.config.settings import settings


def setup_logging(log_level: str = None, log_format: str = None) -> None:
    """配置 structlog（json / console / plain）"""

    level_name = (log_level or settings.LOG_LEVEL).upper()
    normalized_level = getattr(logging, level_name, logging.INFO)
    fmt = log_format or settings.LOG_FORMAT

    logging.basicConfig(
        level=normalized_level,
        stream=sys.stdout,
        format="%(message)s",
        force=True,
    )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
        structlog.processors.format_exc_info,
    ]

    if fmt == "console":
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    elif fmt == "plain":
        processors.append(structlog.dev.ConsoleRenderer(colors=False))
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(normalized_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger("chatbot_test_platform")
