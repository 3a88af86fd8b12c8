import sys
from loguru import logger
from pathlib import Path
from typing import Optional

_configured = False

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<magenta>{extra[story]}</magenta> | <cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[story]} | {name}:{function}:{line} - {message}"


def setup_logger(log_level: str = "INFO", log_file: Optional[Path] = None):
    """Configure loguru sinks.

    Records carry a ``story`` extra (bound by the session via
    ``logger.bind(story=...)``) so interleaved runs stay readable.
    """
    global _configured

    if _configured and log_file is None:
        return logger

    logger.remove()
    logger.configure(extra={"story": "-"})

    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=log_level, colorize=True)

    # Generation runs are long; keep a full debug trail on disk when asked
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            format=FILE_FORMAT,
            level="DEBUG",
            rotation="10 MB",
            retention="7 days",
        )

    _configured = True
    return logger
