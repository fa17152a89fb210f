"""Narrow port over the push-notification client.

The coordinator only ever uses these six operations; nothing else of the
underlying pub/sub client is reachable from core code.
"""

from typing import Any, Awaitable, Callable, Dict, Protocol

Message = Dict[str, Any]
MessageCallback = Callable[[Message], None]


class IncomingExtension(Protocol):
    """Intercepts every inbound protocol message before application code sees it.

    Implementations call `callback(message)` to let the message through, or
    raise to drop it.
    """

    async def incoming(self, message: Message, callback: MessageCallback) -> None:  # pragma: no cover - protocol
        ...


class PushTransportPort(Protocol):
    def handshake(self, callback: Callable[[], None]) -> None:  # pragma: no cover - protocol
        """Start protocol negotiation; `callback` fires once it succeeded."""
        ...

    def subscribe(self, channel: str, callback: MessageCallback) -> Any:  # pragma: no cover - protocol
        """Deliver every data message of `channel` to `callback`."""
        ...

    def disconnect(self) -> None:  # pragma: no cover - protocol
        ...

    def set_header(self, name: str, value: str) -> None:  # pragma: no cover - protocol
        ...

    def on(self, event: str, callback: Callable[[], None]) -> None:  # pragma: no cover - protocol
        """Register a listener for 'transport:up' / 'transport:down'."""
        ...

    def add_extension(self, extension: IncomingExtension) -> None:  # pragma: no cover - protocol
        ...


TransportFactory = Callable[[str], PushTransportPort]
"""Builds a transport for a push endpoint url."""

SubmitAction = Callable[[], Awaitable[str]]
"""Submits a test run and returns its id."""
