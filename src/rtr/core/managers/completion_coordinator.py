"""CompletionCoordinator: decides when a remote test run has finished.

One coordinator serves one wait. It races three sources that may each settle
the same outcome:

1. push listener: a notification on the test result channel for the
   subscribed run triggers a queue snapshot check
2. poll timer: the queue snapshot is checked at a fixed cadence
3. timeout guard: after `wait_timeout` the wait resolves as timed out

Errors (submission failure, fatal protocol errors, a vanished run) and caller
cancellation settle the same outcome. The first writer wins; teardown
(disconnect, clear poll timer, clear timeout) runs exactly once.

State: Idle -> Handshaking -> Subscribed -> Resolved | Cancelled | Errored.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional, Set

from pydantic import ValidationError

from rtr.core.config import CoordinatorConfig
from rtr.core.constants import (
    AUTH_INVALID_ERROR,
    HANDSHAKE_CHANNEL,
    RECONNECT_HANDSHAKE_ADVICE,
    TEST_RESULT_CHANNEL,
    TRANSPORT_DOWN_EVENT,
    TRANSPORT_UP_EVENT,
    UNKNOWN_CLIENT_ERROR,
)
from rtr.core.exceptions import (
    AuthRefreshError,
    HandshakeError,
    StreamingError,
    TestRunError,
    TestRunVanishedError,
)
from rtr.core.interfaces.connection import ToolingConnectionPort
from rtr.core.interfaces.streaming import (
    Message,
    MessageCallback,
    PushTransportPort,
    SubmitAction,
)
from rtr.core.logging_config import run_id_var
from rtr.core.managers.progress_bridge import ProgressBridge
from rtr.core.models.queue import QueueSnapshot
from rtr.core.models.stream import StreamMessage, TestResultMessage
from rtr.core.models.test_run import CancelledRun, CompletedRun, RunOutcome, TimedOutRun
from rtr.core.services.record_fetcher import RecordFetcher
from rtr.core.settings import logger
from rtr.core.utils.run_ids import is_valid_test_run_id, run_ids_match
from rtr.core.utils.settle import OneShot

QUEUE_ITEM_QUERY = (
    "SELECT Id, Status, ApexClassId, TestRunResultId, ParentJobId "
    "FROM ApexTestQueueItem WHERE ParentJobId = '{run_id}'"
)


def get_stream_url(instance_url: str, api_version: str) -> str:
    """Push endpoint for an org: <instance>/cometd/<version>."""
    return "/".join([instance_url.rstrip("/"), "cometd", api_version])


class CompletionCoordinator:
    """Races push notifications, polling and a timeout to detect run completion.

    Attributes:
        config: Poll cadence, overall timeout and push api version
    """

    def __init__(
        self,
        connection: ToolingConnectionPort,
        transport: PushTransportPort,
        config: Optional[CoordinatorConfig] = None,
        fetcher: Optional[RecordFetcher] = None,
        progress: Optional[ProgressBridge] = None,
    ) -> None:
        self._conn = connection
        self._transport = transport
        self.config = config or CoordinatorConfig()
        self._fetcher = fetcher or RecordFetcher(connection)
        self._progress = progress or ProgressBridge()

        # Subscription state, owned by this instance only
        self._subscribed_run_id: Optional[str] = None
        self._subscribed_run_id_future: OneShot[Optional[str]] = OneShot()
        self._disconnected = False

        self._handshake: OneShot[None] = OneShot()
        self._handshaking = False
        self._outcome: Optional[OneShot[RunOutcome]] = None
        self._wait_timeout: float = self.config.wait_timeout
        self._awaiting_action = False
        self._timeout_expired = False
        self._poll_task: Optional[asyncio.Task] = None
        self._timeout_handle: Optional[asyncio.TimerHandle] = None
        self._push_tasks: Set[asyncio.Task] = set()
        self._torn_down = False

        self._transport.on(TRANSPORT_UP_EVENT, self._progress.transport_up)
        self._transport.on(TRANSPORT_DOWN_EVENT, self._progress.transport_down)
        self._transport.add_extension(self)

    # ---------------- State accessors -----------------
    @property
    def subscribed_run_id(self) -> Optional[str]:
        return self._subscribed_run_id

    @property
    def subscribed_run_id_future(self) -> OneShot[Optional[str]]:
        """Resolves with the run id once bound; with None if no id was ever bound.

        Safe to await any number of times, before or after the id is known.
        """
        return self._subscribed_run_id_future

    @property
    def disconnected(self) -> bool:
        return self._disconnected

    @property
    def settled(self) -> bool:
        return self._outcome is not None and self._outcome.settled

    # ---------------- Connection lifecycle -----------------
    async def init(self) -> None:
        """Refresh the credential and apply it as the transport's authorization header."""
        try:
            await self._conn.refresh_auth()
        except Exception as exc:
            raise AuthRefreshError(f"Error refreshing auth: {exc}") from exc

        access_token = self._conn.access_token
        if not access_token:
            raise AuthRefreshError("No access token found")
        self._transport.set_header("Authorization", f"OAuth {access_token}")
        logger.debug("[coordinator:auth] authorization header applied")

    async def handshake(self) -> None:
        """Suspend until the transport reports a successful handshake."""
        self._handshaking = True
        self._transport.handshake(lambda: self._handshake.set_result(None))
        await self._handshake
        logger.debug("[coordinator:handshake] handshake complete")

    def disconnect(self) -> None:
        if self._disconnected:
            return
        self._disconnected = True
        self._transport.disconnect()
        logger.debug(f"[coordinator:disconnect] run_id={self._subscribed_run_id}")

    # ---------------- Subscription -----------------
    async def subscribe(
        self,
        action: Optional[SubmitAction] = None,
        run_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> RunOutcome:
        """Wait for a run to finish.

        With `action`, the action submits the run and its result becomes the
        subscribed id. Without it, `run_id` is attached to directly.

        Returns CompletedRun, TimedOutRun or CancelledRun. Raises when the
        action fails or a fatal error settles the wait.
        """
        if self._outcome is not None:
            raise RuntimeError("subscribe() can only be called once per coordinator")
        if action is None and run_id is None:
            raise ValueError("subscribe() needs either an action or a run id")

        self._outcome = OneShot()
        self._wait_timeout = self.config.wait_timeout if timeout is None else timeout
        self._timeout_handle = asyncio.get_running_loop().call_later(
            self._wait_timeout, self._on_timeout
        )

        try:
            self._transport.subscribe(TEST_RESULT_CHANNEL, self._on_push_message)
            if action is not None:
                self._awaiting_action = True
                try:
                    run_id = await action()
                finally:
                    self._awaiting_action = False
            self._bind_run_id(run_id)
            if self._timeout_expired:
                self._settle_timed_out()
            elif not self._disconnected and not self._outcome.settled:
                self._start_poll_timer(run_id)
        except asyncio.CancelledError:
            self._teardown()
            self._subscribed_run_id_future.set_result(self._subscribed_run_id)
            raise
        except Exception as exc:
            logger.error(f"[coordinator:subscribe] subscription failed run_id={run_id} error={exc}")
            self._reject(exc)
            self._subscribed_run_id_future.set_result(self._subscribed_run_id)

        try:
            return await self._outcome
        except asyncio.CancelledError:
            self._teardown()
            raise

    def cancel(self) -> bool:
        """Stop waiting. Returns True only if this call settled the wait."""
        if self._outcome is None:
            self.disconnect()
            return False
        if self._outcome.settled:
            return False
        self._outcome.set_result(CancelledRun(run_id=self._subscribed_run_id))
        logger.info(f"[coordinator:cancel] wait cancelled run_id={self._subscribed_run_id}")
        self._teardown()
        return True

    def _bind_run_id(self, run_id: str) -> None:
        self._subscribed_run_id = run_id
        self._subscribed_run_id_future.set_result(run_id)
        run_id_var.set(run_id)
        logger.debug(f"[coordinator:subscribe] subscribed run_id={run_id}")

    # ---------------- Completion checks -----------------
    async def handler(
        self, message: Optional[Message] = None, run_id: Optional[str] = None
    ) -> Optional[QueueSnapshot]:
        """Return the queue snapshot if the run is complete, else None.

        A push message only counts for the subscribed run (compared by id
        prefix); messages arriving before an id is bound are ignored.
        """
        if run_id is None:
            if message is None:
                raise ValueError("handler() needs a message or a run id")
            if self._subscribed_run_id is None:
                logger.debug("[coordinator:push] message before run id is known; ignoring")
                return None
            try:
                run_id = TestResultMessage.model_validate(message).sobject.Id
            except ValidationError as exc:
                logger.warning(f"[coordinator:push] unreadable test result message error={exc}")
                return None

        if not is_valid_test_run_id(run_id):
            return None
        if self._subscribed_run_id and not run_ids_match(run_id, self._subscribed_run_id):
            logger.debug(
                f"[coordinator:push] message for other run run_id={run_id} subscribed={self._subscribed_run_id}"
            )
            return None

        snapshot = await self.get_completed_test_run(run_id)
        if snapshot is None:
            self._progress.processing(run_id)
        return snapshot

    async def get_completed_test_run(self, run_id: str) -> Optional[QueueSnapshot]:
        """Fetch the queue snapshot; return it only when no item is pending."""
        result = await self._fetcher.fetch_all(
            QUEUE_ITEM_QUERY.format(run_id=run_id), "ApexTestQueueItem"
        )
        if not result.records:
            raise TestRunVanishedError(run_id)

        snapshot = QueueSnapshot.from_records(result.records)
        self._progress.queue_update(snapshot)
        if not snapshot.is_complete():
            logger.debug(
                f"[coordinator:check] run still pending run_id={run_id} "
                f"pending={len(snapshot.pending_records())}/{len(snapshot.records)}"
            )
            return None
        return snapshot

    # ---------------- Race participants -----------------
    def _on_push_message(self, message: Message) -> None:
        if self._disconnected or self.settled:
            return
        task = asyncio.get_running_loop().create_task(self._handle_push(message))
        self._push_tasks.add(task)
        task.add_done_callback(self._push_tasks.discard)

    async def _handle_push(self, message: Message) -> None:
        try:
            snapshot = await self.handler(message)
        except Exception as exc:
            self._reject(exc)
            return
        if snapshot is not None:
            logger.debug(f"[coordinator:push] run complete run_id={self._subscribed_run_id}")
            self._resolve(snapshot)

    def _start_poll_timer(self, run_id: str) -> None:
        logger.debug(
            f"[coordinator:poll] scheduling poll run_id={run_id} interval={self.config.poll_interval}s"
        )
        self._poll_task = asyncio.get_running_loop().create_task(self._poll(run_id))

    async def _poll(self, run_id: str) -> None:
        while True:
            await asyncio.sleep(self.config.poll_interval)
            if self._disconnected or self.settled:
                return
            try:
                snapshot = await self.get_completed_test_run(run_id)
            except Exception as exc:
                self._reject(exc)
                return
            if snapshot is not None:
                logger.debug(f"[coordinator:poll] run complete run_id={run_id}")
                self._resolve(snapshot)
                return

    def _on_timeout(self) -> None:
        if self.settled:
            return
        if self._awaiting_action:
            # the submitted run's id is still on its way; settle once it is bound
            logger.warning(
                f"[coordinator:timeout] timed out after {self._wait_timeout}s before the run id was known"
            )
            self._timeout_expired = True
            return
        self._settle_timed_out()

    def _settle_timed_out(self) -> None:
        if self._outcome is None or self._outcome.settled:
            return
        logger.warning(
            f"[coordinator:timeout] stopped waiting after {self._wait_timeout}s run_id={self._subscribed_run_id}"
        )
        self._outcome.set_result(TimedOutRun(run_id=self._subscribed_run_id))
        self._teardown()

    # ---------------- Settling -----------------
    def _resolve(self, snapshot: QueueSnapshot) -> None:
        if self._outcome is None or self._outcome.settled:
            return
        self._outcome.set_result(
            CompletedRun(run_id=self._subscribed_run_id, queue_item=snapshot)
        )
        self._teardown()

    def _reject(self, exc: BaseException) -> None:
        if self._outcome is None or not self._outcome.set_exception(exc):
            logger.debug(f"[coordinator:error] ignored after settle error={exc}")
            return
        self._teardown()

    def _teardown(self) -> None:
        if self._torn_down:
            return
        self._torn_down = True
        self.disconnect()
        self._clear_poll_timer()
        self._clear_timeout()
        for task in list(self._push_tasks):
            if task is not asyncio.current_task():
                task.cancel()
        # A pending submit binds the id itself; otherwise nobody waiting on it should hang
        if not self._awaiting_action:
            self._subscribed_run_id_future.set_result(self._subscribed_run_id)

    def _clear_poll_timer(self) -> None:
        task, self._poll_task = self._poll_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _clear_timeout(self) -> None:
        handle, self._timeout_handle = self._timeout_handle, None
        if handle is not None:
            handle.cancel()

    # ---------------- Incoming message extension -----------------
    async def incoming(self, message: Message, callback: MessageCallback) -> None:
        """Validate every inbound protocol message before the transport handles it."""
        parsed = StreamMessage.model_validate(message) if isinstance(message, dict) else StreamMessage()
        if not parsed.error:
            callback(message)
            return

        if parsed.channel == HANDSHAKE_CHANNEL:
            self.disconnect()
            self._fail_pending(HandshakeError(parsed.error))

        if parsed.error == AUTH_INVALID_ERROR:
            logger.info("[coordinator:auth] authentication invalid; refreshing credential")
            try:
                await self.init()
            except TestRunError as exc:
                self.disconnect()
                self._fail_pending(exc)
            callback(message)
            return

        if parsed.advice and parsed.advice.reconnect == RECONNECT_HANDSHAKE_ADVICE:
            logger.debug(f"[coordinator:advice] reconnect via handshake channel={parsed.channel}")
            callback(message)
            return

        if parsed.error == UNKNOWN_CLIENT_ERROR:
            logger.debug(f"[coordinator:advice] unknown client; transport will recover channel={parsed.channel}")
            callback(message)
            return

        self.disconnect()
        self._fail_pending(StreamingError(parsed.error, parsed.channel))

    def _fail_pending(self, exc: TestRunError) -> None:
        """Reject whatever is waiting on this coordinator, then raise to drop the message."""
        logger.error(f"[coordinator:error] fatal streaming error run_id={self._subscribed_run_id} error={exc}")
        if self._handshaking:
            self._handshake.set_exception(exc)
        self._reject(exc)
        raise exc
