"""Centralized logging configuration using loguru."""

from __future__ import annotations

import sys
from pathlib import Path

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"


def configure_logging(level: str = "INFO", log_dir: Path | str | None = None) -> None:
    """Replace loguru's default handler with the pipeline's console (and optional file) handlers.

    Args:
        level: Minimum console level
        log_dir: Directory for a rotating DEBUG log file (None = console only)
    """
    logger.remove()
    logger.add(sys.stderr, level=level, format=CONSOLE_FORMAT, colorize=True)

    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_dir / "stereo_{time}.log",
            rotation="20 MB",
            retention="10 days",
            level="DEBUG",
            format=FILE_FORMAT,
            enqueue=True,
        )


def get_logger(name: str | None = None):
    """Get a logger instance with the given name.

    Args:
        name: Module name for the logger (usually __name__)

    Returns:
        Configured logger instance
    """
    if name:
        return logger.bind(name=name)
    return logger


__all__ = ["logger", "configure_logging", "get_logger"]
