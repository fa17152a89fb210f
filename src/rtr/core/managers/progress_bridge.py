"""Forwards coordinator and run manager lifecycle events to a progress reporter.

The reporter is an external observer: it may be absent, and a failing
reporter must never break a test run, so its errors are logged and dropped.
"""

import logging
from typing import Optional

from rtr.core.interfaces.progress import ProgressReporter
from rtr.core.models.progress import (
    AbortTestRunProgress,
    FormatTestResultProgress,
    ProgressEvent,
    StreamingClientProgress,
    TestQueueProgress,
)
from rtr.core.models.queue import QueueSnapshot

logger = logging.getLogger(__name__)


class ProgressBridge:
    def __init__(self, reporter: Optional[ProgressReporter] = None):
        self._reporter = reporter

    def report(self, event: ProgressEvent) -> None:
        if self._reporter is None:
            return
        try:
            self._reporter.report(event)
        except Exception as exc:
            logger.error(
                f"[progress:error] report failed reporter={type(self._reporter).__name__} "
                f"event={event.type} error={exc}"
            )

    # Convenience emitters

    def transport_up(self) -> None:
        self.report(
            StreamingClientProgress(
                value="streamingTransportUp",
                message="Listening for streaming state changes...",
            )
        )

    def transport_down(self) -> None:
        self.report(
            StreamingClientProgress(
                value="streamingTransportDown",
                message="Streaming transport went down; the transport will try to recover.",
            )
        )

    def processing(self, run_id: str) -> None:
        self.report(
            StreamingClientProgress(
                value="streamingProcessingTestRun",
                message=f"Processing test run {run_id}",
                test_run_id=run_id,
            )
        )

    def queue_update(self, snapshot: QueueSnapshot) -> None:
        self.report(TestQueueProgress(value=snapshot))

    def retrieving_summary(self) -> None:
        self.report(
            FormatTestResultProgress(
                value="retrievingTestRunSummary",
                message="Retrieving test run summary record",
            )
        )

    def querying_coverage(self) -> None:
        self.report(
            FormatTestResultProgress(
                value="queryingForAggregateCodeCoverage",
                message="Querying for aggregate code coverage results",
            )
        )

    def aborting(self, run_id: str) -> None:
        self.report(
            AbortTestRunProgress(
                value="abortingTestRun",
                message=f"Requesting abort of test run {run_id}",
                test_run_id=run_id,
            )
        )

    def abort_requested(self, run_id: str) -> None:
        self.report(
            AbortTestRunProgress(
                value="abortingTestRunRequested",
                message=f"Abort requested for test run {run_id}",
                test_run_id=run_id,
            )
        )
