"""Root logging setup for the composition root.

`configure_logging` installs two sinks on the root logger (DEBUG/INFO to
stdout, WARNING and above to stderr) and tags every record with the test run
it belongs to. Core code only emits, through `LoggingPort` or module loggers.

The run id is kept in a context variable: each asyncio task waiting on a run
carries its own value, so concurrent waits tag their own lines.
"""

from __future__ import annotations

import contextvars
import logging
import sys
from contextlib import contextmanager
from typing import Iterable, Iterator, Optional

run_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("run_id", default="-")

DEFAULT_FORMAT = "[%(asctime)s] %(levelname)s %(name)s run=%(run_id)s: %(message)s"

# Third-party loggers that are too chatty at DEBUG
NOISY_LOGGERS = ("aiohttp", "asyncio")


def coerce_level(level: int | str | None) -> int:
    """Accept 'debug', 'INFO', 10 or None (INFO); unknown names fall back to INFO."""
    if level is None:
        return logging.INFO
    if isinstance(level, int):
        return level
    return logging.getLevelNamesMapping().get(str(level).upper().strip(), logging.INFO)


@contextmanager
def bound_run_id(run_id: Optional[str]) -> Iterator[None]:
    """Tag log records emitted inside the block with `run_id`."""
    token = run_id_var.set(run_id or "-")
    try:
        yield
    finally:
        run_id_var.reset(token)


class _RunIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = run_id_var.get()
        return True


class _LevelRangeFilter(logging.Filter):
    def __init__(self, min_level: int = logging.NOTSET, max_level: int = logging.CRITICAL):
        super().__init__()
        self.min_level = min_level
        self.max_level = max_level

    def filter(self, record: logging.LogRecord) -> bool:
        return self.min_level <= record.levelno <= self.max_level


def _stream_handler(stream, level_filter: logging.Filter, formatter: logging.Formatter) -> logging.Handler:
    handler = logging.StreamHandler(stream=stream)
    handler.setLevel(logging.DEBUG)
    handler.addFilter(level_filter)
    handler.addFilter(_RunIdFilter())
    handler.setFormatter(formatter)
    return handler


def configure_logging(
    level: int | str | None = None,
    fmt: Optional[str] = None,
    quiet_loggers: Iterable[str] = NOISY_LOGGERS,
) -> None:
    """(Re)configure the root logger. Safe to call more than once."""
    numeric_level = coerce_level(level)
    formatter = logging.Formatter(fmt or DEFAULT_FORMAT)

    root = logging.getLogger()
    root.setLevel(numeric_level)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    root.addHandler(_stream_handler(sys.stdout, _LevelRangeFilter(max_level=logging.INFO), formatter))
    root.addHandler(_stream_handler(sys.stderr, _LevelRangeFilter(min_level=logging.WARNING), formatter))

    for name in quiet_loggers:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    logging.getLogger("rtr").debug(f"[logging:configure] level={logging.getLevelName(numeric_level)}")
