from typing import Callable, Protocol

from rtr.core.models.progress import ProgressEvent


class ProgressReporter(Protocol):
    """Receives lifecycle events; purely observational."""

    def report(self, event: ProgressEvent) -> None:  # pragma: no cover - protocol
        ...


class CancellationToken(Protocol):
    """Cooperative cancellation signal supplied by the caller.

    `on_cancellation_requested` registers a callback that fires once when
    cancellation is requested.
    """

    @property
    def is_cancellation_requested(self) -> bool:  # pragma: no cover - protocol
        ...

    def on_cancellation_requested(self, callback: Callable[[], None]) -> None:  # pragma: no cover - protocol
        ...
