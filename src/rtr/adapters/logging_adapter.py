import logging

from rtr.core.interfaces.logging import LoggingPort
from rtr.core.logging_config import coerce_level


class LoggingAdapter(LoggingPort):
    """LoggingPort backed by a stdlib logger.

    Never installs handlers; sinks and the run id filter belong to
    `configure_logging`. Records propagate to the root logger.
    """

    def __init__(self, name: str = "rtr", log_level: int | str = logging.INFO):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(coerce_level(log_level))
        self.logger.propagate = True

    def log(self, level: int, msg: str, *args) -> None:
        # stacklevel points records at the caller of info()/debug(), not this adapter
        self.logger.log(level, msg, *args, stacklevel=3)

    def is_enabled_for(self, level: int) -> bool:
        return self.logger.isEnabledFor(level)
