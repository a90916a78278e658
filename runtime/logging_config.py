import logging
import os
from typing import Optional

LOGGER_NAME = "mesh_refiner"
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
# Refinement passes log from pool threads; debug output names the thread.
DEBUG_LOG_FORMAT = "%(asctime)s - %(levelname)s - [%(threadName)s] %(message)s"


def _attach(logger: logging.Logger, handler: logging.Handler, level: int, fmt: str) -> None:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt))
    logger.addHandler(handler)


def setup_logging(
    log_file: Optional[str] = None,
    *,
    quiet: bool = False,
    debug: bool = False,
) -> logging.Logger:
    """Configure and return the shared `mesh_refiner` logger.

    By default, no file is written. Pass `log_file` to enable file logging;
    missing parent directories are created. Calling this again replaces the
    handlers of the previous call, so repeated CLI runs in one process do not
    duplicate output.
    """
    logger = logging.getLogger(LOGGER_NAME)
    # Keep propagation enabled so test harnesses (e.g. pytest caplog) can capture
    # records even when we suppress console output.
    logger.propagate = True

    level = logging.DEBUG if debug else logging.INFO
    fmt = DEBUG_LOG_FORMAT if debug else LOG_FORMAT
    logger.setLevel(level)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    file_error = None
    if log_file:
        try:
            parent = os.path.dirname(str(log_file))
            if parent:
                os.makedirs(parent, exist_ok=True)
            _attach(logger, logging.FileHandler(log_file, mode="w"), level, fmt)
        except OSError as exc:
            file_error = exc

    if not quiet:
        _attach(logger, logging.StreamHandler(), level, fmt)

    if file_error is not None:
        logger.warning(f"Could not open log file '{log_file}': {file_error}")
    return logger
