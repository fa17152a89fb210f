import logging
from abc import ABC, abstractmethod


class LoggingPort(ABC):
    """Logging seam for core code.

    Implementations only provide `log`; the level helpers are shared.
    """

    @abstractmethod
    def log(self, level: int, msg: str, *args) -> None:
        pass

    @abstractmethod
    def is_enabled_for(self, level: int) -> bool:
        pass

    def debug(self, msg: str, *args) -> None:
        self.log(logging.DEBUG, msg, *args)

    def info(self, msg: str, *args) -> None:
        self.log(logging.INFO, msg, *args)

    def warning(self, msg: str, *args) -> None:
        self.log(logging.WARNING, msg, *args)

    def error(self, msg: str, *args) -> None:
        self.log(logging.ERROR, msg, *args)
