"""Progress events forwarded to an external reporter.

Events are purely observational. `type` discriminates the event family and
`value` names the step (or carries the queue snapshot for queue updates).
"""

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field

from rtr.core.models.queue import QueueSnapshot


class StreamingClientProgress(BaseModel):
    type: Literal["StreamingClientProgress"] = "StreamingClientProgress"
    value: Literal["streamingTransportUp", "streamingTransportDown", "streamingProcessingTestRun"]
    message: str
    test_run_id: Optional[str] = None


class TestQueueProgress(BaseModel):
    type: Literal["TestQueueProgress"] = "TestQueueProgress"
    value: QueueSnapshot


class FormatTestResultProgress(BaseModel):
    type: Literal["FormatTestResultProgress"] = "FormatTestResultProgress"
    value: Literal["retrievingTestRunSummary", "queryingForAggregateCodeCoverage"]
    message: str


class AbortTestRunProgress(BaseModel):
    type: Literal["AbortTestRunProgress"] = "AbortTestRunProgress"
    value: Literal["abortingTestRun", "abortingTestRunRequested"]
    message: str
    test_run_id: str


ProgressEvent = Annotated[
    Union[
        StreamingClientProgress,
        TestQueueProgress,
        FormatTestResultProgress,
        AbortTestRunProgress,
    ],
    Field(discriminator="type"),
]
