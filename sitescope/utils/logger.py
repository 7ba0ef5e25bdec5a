import os
import sys

from loguru import logger

_logger_initialized = False
_sink_ids: list[int] = []

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level} | job={extra[job_id]} | {message}"


def setup_logger(log_level: str = "INFO", log_path: str | None = "/data/logs/sitescope.log"):
    """Install the file and console sinks once per process."""
    global _logger_initialized, _sink_ids

    if not _logger_initialized:
        logger.remove()
        logger.configure(extra={"job_id": "-"})

        sinks = []
        if log_path:
            os.makedirs(os.path.dirname(log_path) or ".", exist_ok=True)
            sinks.append(
                logger.add(
                    log_path,
                    rotation="10 MB",
                    retention="7 days",
                    level=log_level,
                    format=LOG_FORMAT,
                )
            )
        sinks.append(
            logger.add(
                sys.stderr,
                colorize=True,
                level=log_level,
                format=LOG_FORMAT,
            )
        )

        _sink_ids = sinks
        _logger_initialized = True

    return logger


def job_logger(job_id):
    return logger.bind(job_id=str(job_id))
