from __future__ import annotations

import logging

from colorlog import ColoredFormatter

TRACE_LEVEL = 5

LOG_FORMAT = "%(log_color)s%(asctime)s %(levelname)s %(name)s %(message)s"

# uvicorn installs its own handlers unless told otherwise; these are routed
# through the root handler instead.
UVICORN_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


def _trace(self: logging.Logger, message: str, *args: object, **kwargs: object) -> None:
    if self.isEnabledFor(TRACE_LEVEL):
        self._log(TRACE_LEVEL, message, args, **kwargs)


def configure_logging(level: int) -> None:
    logging.addLevelName(TRACE_LEVEL, "TRACE")
    setattr(logging.Logger, "trace", _trace)
    formatter = ColoredFormatter(
        LOG_FORMAT,
        log_colors={
            "TRACE": "cyan",
            "DEBUG": "blue",
            "INFO": "green",
            "WARNING": "yellow",
            "ERROR": "red",
            "CRITICAL": "red,bg_white",
        },
    )
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    logging.basicConfig(level=level, handlers=[handler], force=True)

    for name in UVICORN_LOGGERS:
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers.clear()
        uvicorn_logger.propagate = True
    # Access lines for every scrape are noise below DEBUG.
    logging.getLogger("uvicorn.access").setLevel(
        level if level <= logging.DEBUG else logging.WARNING
    )


def resolve_log_level(verbosity: int, fallback: str) -> int:
    if verbosity >= 2:
        return TRACE_LEVEL
    if verbosity == 1:
        return logging.DEBUG
    return logging._nameToLevel.get(fallback.upper(), logging.INFO)
