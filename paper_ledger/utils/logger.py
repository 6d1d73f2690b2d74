"""
Paper Options Ledger - Logger Configuration
Centralized logging with loguru
"""
import sys
from pathlib import Path
from loguru import logger

from paper_ledger.config import Settings, settings


CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"


def configure_logging(config: Settings = settings) -> None:
    """
    Install the console handler and, when LOG_FILE is set, a rotating file handler.

    Args:
        config: Settings to read DEBUG, LOG_LEVEL and LOG_FILE from
    """
    # Remove default handler
    logger.remove()

    logger.add(
        sys.stdout,
        colorize=True,
        format=CONSOLE_FORMAT,
        level="DEBUG" if config.DEBUG else config.LOG_LEVEL,
    )

    if config.LOG_FILE:
        log_path = Path(config.LOG_FILE)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_path,
            rotation="10 MB",
            retention="30 days",
            compression="gz",
            format=FILE_FORMAT,
            level="DEBUG",
        )


def get_logger(name: str = __name__):
    """
    Get a logger instance with the specified name.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Logger instance
    """
    return logger.bind(name=name)


configure_logging()

# Export configured logger
__all__ = ["logger", "get_logger", "configure_logging"]
