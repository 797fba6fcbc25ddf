import sys

from loguru import logger

from kaisheng.settings import settings

LOG_FORMAT_CONSOLE = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>"
)
LOG_FORMAT_FILE = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{line} | {message}"


def setup_logging(verbose: bool = False) -> None:
    """Route loguru to stderr and to a rotating file in the log directory."""
    logger.remove()
    level = "DEBUG" if verbose or settings.debug else "INFO"

    logger.add(sys.stderr, level=level, format=LOG_FORMAT_CONSOLE)

    settings.log_dir.mkdir(parents=True, exist_ok=True)
    logger.add(
        settings.log_file,
        level=level,
        format=LOG_FORMAT_FILE,
        rotation="10 MB",
        retention="10 days",
        compression="zip",
        enqueue=True,
    )
    logger.debug(f"Logging to {settings.log_file}")
