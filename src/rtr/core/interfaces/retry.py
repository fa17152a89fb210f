from typing import Protocol, Any, Awaitable, Callable

class RetryPort(Protocol):
    """Retry interface for async platform calls.

    Keeps the run manager independent of the retry library; the tenacity
    adapter is wired in by the composition root.
    """
    async def execute(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:  # pragma: no cover - protocol
        """Execute an async callable, retrying transient failures.

        Supported keyword overrides (popped before calling `func`):
        attempts, wait_initial, wait_max, exception_types.
        Propagates the last exception once attempts are exhausted.
        """
        ...
