import os
import sys

from loguru import logger

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <7} | {name}:{function} | {message}"


def setup_logging(level: str | None = None) -> None:
    """Route engine logs to stdout and a rotating file.

    ``level`` overrides ``settings.log_level`` (the CLI's ``--log-level``).
    An empty ``settings.log_path`` keeps output on stdout only.
    """
    from recurrence_core.config import settings

    level = (level or settings.log_level).upper()
    logger.remove()
    logger.add(sys.stdout, level=level, format=LOG_FORMAT)
    if not settings.log_path:
        return

    log_dir = os.path.dirname(settings.log_path)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
    logger.add(
        settings.log_path,
        rotation="10 MB",
        retention=settings.log_retention,
        level=level,
        format=LOG_FORMAT,
        encoding="utf-8",
    )
