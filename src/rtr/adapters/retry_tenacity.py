"""RetryPort implementation on top of tenacity.

Only exceptions of the configured types are retried (by default
`TransientPlatformError`); everything else propagates on the first attempt.
Once attempts are exhausted the last exception is re-raised unchanged.
"""

import logging
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from rtr.core.exceptions import TransientPlatformError

logger = logging.getLogger(__name__)

_OVERRIDES = ("attempts", "wait_initial", "wait_max", "exception_types")


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 3
    wait_initial: float = 0.2
    # None leaves the exponential backoff uncapped
    wait_max: Optional[float] = 1.0
    exception_types: Tuple[Type[BaseException], ...] = (TransientPlatformError,)

    def build(self) -> AsyncRetrying:
        if self.wait_max is None:
            wait = wait_exponential(multiplier=self.wait_initial)
        else:
            wait = wait_exponential(multiplier=self.wait_initial, max=self.wait_max)
        return AsyncRetrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait,
            retry=retry_if_exception_type(self.exception_types),
            before_sleep=_log_retry,
            reraise=True,
        )


def _log_retry(state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome else None
    delay = state.next_action.sleep if state.next_action else 0.0
    logger.warning(
        f"[retry:attempt] {getattr(state.fn, '__name__', 'call')} failed "
        f"attempt={state.attempt_number} next_in={delay:.2f}s error={exc}"
    )


class TenacityRetryAdapter:
    """Retries async callables with exponential backoff.

    Per-call overrides are taken from kwargs (attempts, wait_initial,
    wait_max, exception_types) and never reach the wrapped callable.
    """

    def __init__(
        self,
        attempts: int = 3,
        wait_initial: float = 0.2,
        wait_max: Optional[float] = 1.0,
        exception_types: Tuple[Type[BaseException], ...] = (TransientPlatformError,),
    ) -> None:
        self.policy = RetryPolicy(attempts, wait_initial, wait_max, tuple(exception_types))

    @property
    def attempts(self) -> int:
        return self.policy.attempts

    def _policy_for(self, kwargs: dict) -> RetryPolicy:
        overrides = {name: kwargs.pop(name) for name in _OVERRIDES if name in kwargs}
        if overrides.get("wait_max", 0) is None:
            overrides.pop("wait_max")
        if "exception_types" in overrides:
            overrides["exception_types"] = tuple(overrides["exception_types"])
        return replace(self.policy, **overrides) if overrides else self.policy

    async def execute(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        policy = self._policy_for(kwargs)
        async for attempt in policy.build():  # pragma: no cover - control flow instrumentation
            with attempt:
                return await func(*args, **kwargs)
