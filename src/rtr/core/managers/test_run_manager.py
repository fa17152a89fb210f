"""TestRunManager: submits asynchronous test runs and turns finished runs into results.

Responsibilities:
1. Submit a run configuration (with retry on transient platform errors).
2. Wait for completion through a CompletionCoordinator (push, poll, timeout).
3. Wire caller cancellation to the wait and abort the run when cancellation wins.
4. Read the run summary and per-test results, derive the outcome and
   optionally attach code coverage.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from time import perf_counter
from typing import Any, Callable, Dict, List, Optional, Set, Union

from rtr.core.config import TestRunManagerConfig
from rtr.core.exceptions import (
    InvalidTestRunIdError,
    PlatformRequestError,
    QueryFetchError,
    TestRunError,
    TestRunSummaryNotFoundError,
    TransientPlatformError,
)
from rtr.core.interfaces.connection import ToolingConnectionPort
from rtr.core.interfaces.progress import CancellationToken, ProgressReporter
from rtr.core.interfaces.retry import RetryPort
from rtr.core.interfaces.streaming import TransportFactory
from rtr.core.logging_config import bound_run_id
from rtr.core.managers.code_coverage import CodeCoverage
from rtr.core.managers.completion_coordinator import (
    CompletionCoordinator,
    get_stream_url,
)
from rtr.core.managers.progress_bridge import ProgressBridge
from rtr.core.models.queue import QueueItemStatus, QueueSnapshot
from rtr.core.models.results import (
    FAILED_OUTCOMES,
    ApexClassInfo,
    ApexTestResultData,
    ApexTestResultOutcome,
    ApexTestResultRecord,
    TestResult,
    TestResultSummary,
)
from rtr.core.models.test_run import (
    CancelledRun,
    CompletedRun,
    RunIdResult,
    TestRunConfiguration,
    TestRunResultStatus,
    TestRunSummary,
    TimedOutRun,
)
from rtr.core.services.query_chunker import build_chunked_queries
from rtr.core.services.record_fetcher import RecordFetcher
from rtr.core.settings import logger
from rtr.core.utils.formatting import calculate_percentage, get_async_diagnostic
from rtr.core.utils.run_ids import is_valid_test_run_id

RUN_TESTS_ASYNC_PATH = "/runTestsAsynchronous"

TEST_RUN_SUMMARY_QUERY = (
    "SELECT AsyncApexJobId, Status, ClassesCompleted, ClassesEnqueued, MethodsEnqueued, "
    "StartTime, EndTime, TestTime, UserId FROM ApexTestRunResult "
    "WHERE AsyncApexJobId = '{run_id}'"
)

TEST_RESULT_QUERY = (
    "SELECT Id, QueueItemId, StackTrace, Message, RunTime, TestTimestamp, AsyncApexJobId, "
    "MethodName, Outcome, ApexLogId, ApexClass.Id, ApexClass.Name, ApexClass.NamespacePrefix "
    "FROM ApexTestResult WHERE QueueItemId IN ({ids})"
)

ABORT_QUEUE_ITEM_QUERY = "SELECT Id, Status FROM ApexTestQueueItem WHERE ParentJobId = '{run_id}'"


@dataclass
class AsyncTestResults:
    """Per-test results of a run plus the counts the summary is built from."""

    tests: List[ApexTestResultData] = field(default_factory=list)
    test_class_ids: List[str] = field(default_factory=list)
    passed: int = 0
    failed: int = 0
    skipped: int = 0


class _CancellationHook:
    """Token callback for one run; stops reacting once the run is over."""

    def __init__(self, start: Callable[[], asyncio.Task]) -> None:
        self._start = start
        self.tasks: Set[asyncio.Task] = set()
        self.closed = False

    def __call__(self) -> None:
        if self.closed:
            return
        self.tasks.add(self._start())

    def close(self, discard_pending: bool = False) -> None:
        self.closed = True
        if discard_pending:
            for task in self.tasks:
                task.cancel()


class TestRunManager:
    """Orchestrates a test run: submission, completion wait, cancellation, results.

    Attributes:
        config: Immutable configuration (coordinator timing, query limits, submit retry)
    """

    __test__ = False

    def __init__(
        self,
        connection: ToolingConnectionPort,
        transport_factory: TransportFactory,
        config: Optional[TestRunManagerConfig] = None,
        retry_port: Optional[RetryPort] = None,
        coverage: Optional[CodeCoverage] = None,
        fetcher: Optional[RecordFetcher] = None,
    ) -> None:
        self._conn = connection
        self._transport_factory = transport_factory
        self.config = config or TestRunManagerConfig()
        self._retry = retry_port
        self._fetcher = fetcher or RecordFetcher(connection)
        self._coverage = coverage or CodeCoverage(
            connection, self._fetcher, self.config.query_limits
        )

    def _create_coordinator(self, bridge: ProgressBridge) -> CompletionCoordinator:
        stream_url = get_stream_url(
            self._conn.instance_url, self.config.coordinator.streaming_api_version
        )
        logger.debug(f"[run:stream] creating push transport url={stream_url}")
        return CompletionCoordinator(
            self._conn,
            self._transport_factory(stream_url),
            self.config.coordinator,
            self._fetcher,
            bridge,
        )

    @staticmethod
    def _wrap_error(operation: str, exc: Exception, run_id: Optional[str] = None) -> TestRunError:
        if isinstance(exc, PlatformRequestError):
            diagnostic = exc.response.detail
        else:
            diagnostic = repr(exc)
        return TestRunError(f"{operation} failed: {exc}", diagnostic=diagnostic, run_id=run_id)

    # ---------------- Submission -----------------
    def _is_transient_error(self, exc: Exception) -> bool:
        """Gateway and availability errors (502/503/504) are worth another attempt.

        Client errors (4xx, including authentication) fail immediately.
        """
        if isinstance(exc, PlatformRequestError):
            if exc.response.status in (502, 503, 504):
                return True
            if 400 <= exc.response.status < 500:
                return False
        return True

    async def submit(self, configuration: TestRunConfiguration) -> str:
        """POST the run configuration and return the id of the new run."""
        body = configuration.to_request_body()

        async def do_submit_with_error_classification() -> Any:
            try:
                logger.debug(
                    f"[run:submit] POST path={RUN_TESTS_ASYNC_PATH} keys={list(body.keys())}"
                )
                return await self._conn.request("POST", RUN_TESTS_ASYNC_PATH, body)
            except TransientPlatformError:
                raise
            except PlatformRequestError as exc:
                if self._is_transient_error(exc):
                    logger.debug(f"[run:submit] transient error, will retry: status={exc.response.status}")
                    raise TransientPlatformError(exc.response) from exc
                logger.debug(f"[run:submit] non-transient error, will not retry: status={exc.response.status}")
                raise

        try:
            if self._retry:
                response = await self._retry.execute(
                    do_submit_with_error_classification,
                    attempts=self.config.submit_max_retries,
                    wait_initial=self.config.submit_retry_base_wait,
                    wait_max=self.config.submit_retry_max_wait,
                    exception_types=(TransientPlatformError,),
                )
            else:
                response = await do_submit_with_error_classification()
        except TransientPlatformError as exc:
            logger.error(
                f"[run:submit] transient error retry exhausted status={exc.response.status} title={exc.response.title}"
            )
            raise
        except PlatformRequestError as exc:
            logger.warning(
                f"[run:submit] request rejected status={exc.response.status} title={exc.response.title}"
            )
            raise

        run_id = str(response).strip().strip('"')
        if not is_valid_test_run_id(run_id):
            raise InvalidTestRunIdError(run_id)
        logger.info(f"[run:submit] test run submitted run_id={run_id}")
        return run_id

    # ---------------- Waiting -----------------
    async def run_async(
        self,
        configuration: TestRunConfiguration,
        code_coverage: bool = False,
        exit_on_run_id: bool = False,
        progress: Optional[ProgressReporter] = None,
        token: Optional[CancellationToken] = None,
        timeout: Optional[float] = None,
    ) -> Union[TestResult, RunIdResult, TimedOutRun, None]:
        """Submit a run and wait for it to finish.

        Returns:
            RunIdResult when `exit_on_run_id` is set; TimedOutRun when the wait
            timed out; None when the caller cancelled; otherwise the formatted
            TestResult.
        """
        command_started = perf_counter()
        bridge = ProgressBridge(progress)
        try:
            if exit_on_run_id:
                return RunIdResult(run_id=await self.submit(configuration))

            if token is not None and token.is_cancellation_requested:
                logger.info("[run:cancel] cancellation requested before submission; nothing submitted")
                return None

            coordinator = self._create_coordinator(bridge)
            await coordinator.init()
            await coordinator.handshake()

            hook: Optional[_CancellationHook] = None
            if token is not None:
                hook = self._wire_cancellation(token, coordinator, bridge)
                if token.is_cancellation_requested:
                    logger.info("[run:cancel] cancellation requested during handshake; nothing submitted")
                    hook.close(discard_pending=True)
                    coordinator.disconnect()
                    return None

            try:
                outcome = await coordinator.subscribe(
                    action=lambda: self.submit(configuration), timeout=timeout
                )
                if hook is not None and hook.tasks:
                    await asyncio.gather(*hook.tasks)
            finally:
                if hook is not None:
                    hook.close()

            if isinstance(outcome, CancelledRun):
                return None
            if isinstance(outcome, TimedOutRun):
                return outcome

            summary = await self._get_run_summary(outcome.run_id, bridge)
            return await self.format_async_results(
                outcome.run_id,
                outcome.queue_item,
                command_started,
                code_coverage,
                summary,
                bridge,
            )
        except TestRunError:
            raise
        except Exception as exc:
            logger.error(f"[run:error] run_async failed error={exc}")
            raise self._wrap_error("Running tests", exc) from exc

    async def await_completion(
        self,
        run_id: str,
        code_coverage: bool = False,
        token: Optional[CancellationToken] = None,
        timeout: Optional[float] = None,
        progress: Optional[ProgressReporter] = None,
    ) -> Union[TestResult, TimedOutRun, None]:
        """Attach to an existing run and return its results once it has finished."""
        with bound_run_id(run_id):
            return await self._await_completion(run_id, code_coverage, token, timeout, progress)

    async def _await_completion(
        self,
        run_id: str,
        code_coverage: bool,
        token: Optional[CancellationToken],
        timeout: Optional[float],
        progress: Optional[ProgressReporter],
    ) -> Union[TestResult, TimedOutRun, None]:
        command_started = perf_counter()
        bridge = ProgressBridge(progress)
        try:
            if token is not None and token.is_cancellation_requested:
                return None

            summary = await self._get_run_summary(run_id, bridge)
            coordinator = self._create_coordinator(bridge)

            snapshot: Optional[QueueSnapshot] = None
            if summary.is_terminal():
                snapshot = await coordinator.handler(run_id=run_id)

            if snapshot is not None:
                coordinator.disconnect()
            else:
                await coordinator.init()
                await coordinator.handshake()
                if token is not None:
                    token.on_cancellation_requested(coordinator.cancel)
                    if token.is_cancellation_requested:
                        logger.info(f"[run:cancel] cancellation requested during handshake run_id={run_id}")
                        coordinator.disconnect()
                        return None
                outcome = await coordinator.subscribe(run_id=run_id, timeout=timeout)
                if isinstance(outcome, CancelledRun):
                    return None
                if isinstance(outcome, TimedOutRun):
                    return outcome
                snapshot = outcome.queue_item
                summary = await self._get_run_summary(run_id, bridge)

            return await self.format_async_results(
                run_id, snapshot, command_started, code_coverage, summary, bridge
            )
        except TestRunError:
            raise
        except Exception as exc:
            logger.error(f"[run:error] await_completion failed run_id={run_id} error={exc}")
            raise self._wrap_error("Reporting test results", exc, run_id) from exc

    async def check_run_status(
        self, run_id: str, progress: Optional[ProgressReporter] = None
    ) -> Optional[TestRunSummary]:
        """Return the run summary if the run is in a terminal state, else None."""
        summary = await self._get_run_summary(run_id, ProgressBridge(progress))
        return summary if summary.is_terminal() else None

    async def _get_run_summary(self, run_id: str, bridge: ProgressBridge) -> TestRunSummary:
        if not is_valid_test_run_id(run_id):
            raise InvalidTestRunIdError(run_id)
        bridge.retrieving_summary()
        result = await self._fetcher.fetch_all(
            TEST_RUN_SUMMARY_QUERY.format(run_id=run_id), "ApexTestRunResult"
        )
        if not result.records:
            raise TestRunSummaryNotFoundError(run_id)
        summary = TestRunSummary.model_validate(result.records[0])
        logger.debug(f"[run:summary] run_id={run_id} status={summary.Status}")
        return summary

    # ---------------- Cancellation -----------------
    def _wire_cancellation(
        self,
        token: CancellationToken,
        coordinator: CompletionCoordinator,
        bridge: ProgressBridge,
    ) -> _CancellationHook:
        loop = asyncio.get_running_loop()
        hook = _CancellationHook(
            lambda: loop.create_task(self._handle_cancellation(coordinator, bridge))
        )
        token.on_cancellation_requested(hook)
        return hook

    async def _handle_cancellation(
        self, coordinator: CompletionCoordinator, bridge: ProgressBridge
    ) -> None:
        run_id = await coordinator.subscribed_run_id_future
        if run_id is None or not coordinator.cancel():
            logger.debug(f"[run:cancel] wait already settled; nothing to abort run_id={run_id}")
            return
        try:
            await self._abort(run_id, bridge)
        except Exception as exc:
            logger.error(f"[run:abort] abort after cancellation failed run_id={run_id} error={exc}")

    async def abort(
        self, run_id: str, progress: Optional[ProgressReporter] = None
    ) -> List[Dict[str, Any]]:
        """Mark every queue item of a run as Aborted.

        Best effort: items are updated one by one; failures are logged and
        returned, items already aborted stay aborted.
        """
        try:
            return await self._abort(run_id, ProgressBridge(progress))
        except TestRunError:
            raise
        except Exception as exc:
            raise self._wrap_error("Aborting test run", exc, run_id) from exc

    async def _abort(self, run_id: str, bridge: ProgressBridge) -> List[Dict[str, Any]]:
        bridge.aborting(run_id)
        logger.info(f"[run:abort] aborting test run run_id={run_id}")

        result = await self._fetcher.fetch_all(
            ABORT_QUEUE_ITEM_QUERY.format(run_id=run_id), "ApexTestQueueItem"
        )
        records = [
            {"Id": record["Id"], "Status": QueueItemStatus.aborted.value}
            for record in result.records
        ]
        update_results: List[Dict[str, Any]] = []
        if records:
            update_results = await self._conn.update("ApexTestQueueItem", records)
        else:
            logger.warning(f"[run:abort] no queue items to abort run_id={run_id}")

        for item in update_results:
            if not item.get("success"):
                logger.warning(
                    f"[run:abort] queue item not aborted run_id={run_id} id={item.get('id')} errors={item.get('errors')}"
                )

        bridge.abort_requested(run_id)
        return update_results

    # ---------------- Result formatting -----------------
    async def format_async_results(
        self,
        run_id: str,
        snapshot: QueueSnapshot,
        command_started: float,
        code_coverage: bool,
        summary: TestRunSummary,
        progress: Optional[ProgressBridge] = None,
    ) -> TestResult:
        bridge = progress or ProgressBridge()
        records = await self.get_async_test_results(snapshot)
        built = self.build_async_test_results(records)
        tests_ran = len(built.tests)

        outcome = summary.Status.value
        if built.failed > 0:
            outcome = TestRunResultStatus.failed.value
        elif built.passed == 0:
            outcome = TestRunResultStatus.skipped.value
        elif summary.Status == TestRunResultStatus.completed:
            outcome = TestRunResultStatus.passed.value

        result = TestResult(
            summary=TestResultSummary(
                outcome=outcome,
                tests_ran=tests_ran,
                passing=built.passed,
                failing=built.failed,
                skipped=built.skipped,
                pass_rate=calculate_percentage(built.passed, tests_ran),
                fail_rate=calculate_percentage(built.failed, tests_ran),
                skip_rate=calculate_percentage(built.skipped, tests_ran),
                test_start_time=summary.StartTime,
                test_execution_time_in_ms=summary.TestTime or 0,
                command_time_in_ms=int((perf_counter() - command_started) * 1000),
                hostname=self._conn.instance_url,
                org_id=self._conn.org_id,
                username=self._conn.username,
                test_run_id=run_id,
                user_id=summary.UserId,
            ),
            tests=built.tests,
        )
        logger.info(
            f"[run:result] run_id={run_id} outcome={outcome} ran={tests_ran} "
            f"passed={built.passed} failed={built.failed} skipped={built.skipped}"
        )

        if code_coverage:
            try:
                await self._add_code_coverage(result, built.test_class_ids, bridge)
            except QueryFetchError as exc:
                logger.warning(f"[run:coverage] coverage unavailable run_id={run_id} error={exc}")
                result.summary.coverage_error = exc.message
        return result

    async def get_async_test_results(self, snapshot: QueueSnapshot) -> List[Dict[str, Any]]:
        """ApexTestResult records of every queue item, chunked by item id."""
        queries = build_chunked_queries(
            TEST_RESULT_QUERY, snapshot.ids(), self.config.query_limits
        )
        return await self._fetcher.fetch_records(queries, "ApexTestResult")

    def build_async_test_results(self, records: List[Dict[str, Any]]) -> AsyncTestResults:
        built = AsyncTestResults()
        class_ids: Dict[str, None] = {}
        for raw in records:
            item = ApexTestResultRecord.model_validate(raw)
            if item.Outcome == ApexTestResultOutcome.passed:
                built.passed += 1
            elif item.Outcome in FAILED_OUTCOMES:
                built.failed += 1
            elif item.Outcome == ApexTestResultOutcome.skipped:
                built.skipped += 1

            class_ids[item.ApexClass.Id] = None
            class_full_name = item.ApexClass.full_name
            built.tests.append(
                ApexTestResultData(
                    id=item.Id,
                    queue_item_id=item.QueueItemId,
                    stack_trace=item.StackTrace,
                    message=item.Message,
                    async_apex_job_id=item.AsyncApexJobId,
                    method_name=item.MethodName,
                    outcome=item.Outcome,
                    apex_log_id=item.ApexLogId,
                    apex_class=ApexClassInfo(
                        id=item.ApexClass.Id,
                        name=item.ApexClass.Name,
                        namespace_prefix=item.ApexClass.NamespacePrefix,
                        full_name=class_full_name,
                    ),
                    run_time=item.RunTime or 0,
                    test_timestamp=item.TestTimestamp,
                    full_name=f"{class_full_name}.{item.MethodName}",
                    diagnostic=get_async_diagnostic(item),
                )
            )
        built.test_class_ids = list(class_ids)
        return built

    async def _add_code_coverage(
        self, result: TestResult, test_class_ids: List[str], bridge: ProgressBridge
    ) -> None:
        per_class = await self._coverage.get_per_class_code_coverage(test_class_ids)

        covered_ids: Dict[str, None] = {}
        for test in result.tests:
            # skipped tests have no coverage entry
            entries = per_class.get(f"{test.apex_class.id}-{test.method_name}")
            if entries:
                test.per_class_coverage = entries
                covered_ids.update((entry.apex_class_or_trigger_id, None) for entry in entries)

        bridge.querying_coverage()
        aggregate = await self._coverage.get_aggregate_code_coverage(list(covered_ids))
        result.codecoverage = aggregate.results
        result.summary.total_lines = aggregate.total_lines
        result.summary.covered_lines = aggregate.covered_lines
        result.summary.test_run_coverage = calculate_percentage(
            aggregate.covered_lines, aggregate.total_lines
        )
        result.summary.org_wide_coverage = await self._coverage.get_org_wide_coverage()
