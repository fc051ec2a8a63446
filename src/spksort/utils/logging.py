"""
Logging utilities for the spike sorting engine.

Library code MUST use logging.getLogger(__name__), never print().
Only entry points call setup_logging(); the level normally comes from
SortConfig.log_level.
"""

import logging
from typing import Union


FORMATS = {
    "default": "%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    "minimal": "%(levelname)s | %(message)s",
}


def resolve_level(level: Union[str, int]) -> int:
    """
    Turn a level name ("debug", "INFO") or number into a logging level.

    Raises:
        ValueError: If the name is not a logging level
    """
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Invalid log level: {level}")
    return resolved


def setup_logging(level: Union[str, int] = "INFO", format_style: str = "default") -> None:
    """
    Configure logging for a sorting run.

    Call once at the application entry point, NOT inside library modules.
    The spksort logger is set to the requested level even when the root
    logger was already configured by the host application.

    Args:
        level: Level name (DEBUG, INFO, WARNING, ERROR, CRITICAL) or number
        format_style: "default" for timestamped records, "minimal" for compact

    Example:
        >>> config = load_sort_config()
        >>> setup_logging(config.log_level)
    """
    if format_style not in FORMATS:
        raise ValueError(f"Unknown format style '{format_style}'. Available: {', '.join(FORMATS)}")
    numeric = resolve_level(level)

    logging.basicConfig(
        level=numeric,
        format=FORMATS[format_style],
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger("spksort").setLevel(numeric)


class LoggerMixin:
    """
    Mixin giving a class a logger named after its module and class.

    Usage:
        class MergeEngine(LoggerMixin):
            def step(self):
                self.logger.debug("Merging clusters")
    """

    @property
    def logger(self) -> logging.Logger:
        return logging.getLogger(f"{self.__class__.__module__}.{self.__class__.__name__}")
