"""Single-assignment future used wherever several callbacks race to settle one result.

`OneShot` wraps an asyncio future behind a guard flag:

* `set_result` / `set_exception` return True only for the first writer;
  later calls are ignored and return False.
* `settled` can be checked cheaply before doing expensive work.
* Awaiting is safe any number of times, from any number of tasks, before or
  after settlement. Cancelling one awaiter does not cancel the shared future.

The future is created lazily on the running loop, so instances can be built
outside of a coroutine.
"""

from __future__ import annotations

import asyncio
from typing import Any, Generator, Generic, Optional, TypeVar

T = TypeVar("T")


class OneShot(Generic[T]):
    def __init__(self) -> None:
        self._future: Optional[asyncio.Future] = None
        self._settled = False

    def _get_future(self) -> asyncio.Future:
        if self._future is None:
            self._future = asyncio.get_running_loop().create_future()
        return self._future

    @property
    def settled(self) -> bool:
        return self._settled

    def set_result(self, value: T) -> bool:
        if self._settled:
            return False
        self._settled = True
        self._get_future().set_result(value)
        return True

    def set_exception(self, exc: BaseException) -> bool:
        if self._settled:
            return False
        self._settled = True
        self._get_future().set_exception(exc)
        return True

    def result(self) -> T:
        """Return the settled value; raises if unsettled or settled with an error."""
        if not self._settled:
            raise asyncio.InvalidStateError("OneShot is not settled yet")
        return self._get_future().result()

    def __await__(self) -> Generator[Any, None, T]:
        return asyncio.shield(self._get_future()).__await__()
