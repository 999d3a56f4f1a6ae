from loguru import logger
import os
import sys
import uuid

_logger_initialized = False
_sink_ids: list[int] = []

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level} | run={extra[run_id]} | {name}:{function} | {message}"


def setup_logger(log_level: str = "INFO", log_path: str | None = None, run_id: str | None = None):
    """Configure loguru sinks once per process and return a logger bound to the run id."""
    global _logger_initialized, _sink_ids

    resolved_run_id = run_id or os.getenv("CRAWL_RUN_ID") or uuid.uuid4().hex[:8]

    if not _logger_initialized:
        logger.remove()
        logger.configure(extra={"run_id": resolved_run_id})

        _sink_ids = [
            logger.add(
                sys.stderr,
                colorize=True,
                level=log_level,
                format=LOG_FORMAT,
            )
        ]

        if log_path:
            os.makedirs(os.path.dirname(log_path) or ".", exist_ok=True)
            _sink_ids.append(
                logger.add(
                    log_path,
                    rotation="10 MB",
                    retention="7 days",
                    level=log_level,
                    format=LOG_FORMAT,
                )
            )

        _logger_initialized = True

    return logger.bind(run_id=resolved_run_id)


def reset_logger() -> None:
    global _logger_initialized, _sink_ids

    for sink_id in _sink_ids:
        try:
            logger.remove(sink_id)
        except ValueError:
            pass
    _sink_ids = []
    _logger_initialized = False
