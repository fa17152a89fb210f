from enum import StrEnum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class QueueItemStatus(StrEnum):
    holding = "Holding"
    queued = "Queued"
    preparing = "Preparing"
    processing = "Processing"
    aborted = "Aborted"
    completed = "Completed"
    failed = "Failed"


# Statuses that keep a test run waiting; every other status is terminal
PENDING_QUEUE_STATUSES = frozenset(
    {
        QueueItemStatus.queued,
        QueueItemStatus.holding,
        QueueItemStatus.preparing,
        QueueItemStatus.processing,
    }
)


class QueryPage(BaseModel):
    """One page of a platform query response.

    `nextRecordsUrl` is the continuation cursor; it is absent once `done`.
    """

    totalSize: int = 0
    done: bool = True
    records: List[Dict[str, Any]] = Field(default_factory=list)
    nextRecordsUrl: Optional[str] = None


class ApexTestQueueItemRecord(BaseModel):
    """One constituent unit (test class) of a test run."""

    model_config = {"extra": "ignore"}

    Id: str
    Status: QueueItemStatus
    ApexClassId: Optional[str] = None
    TestRunResultId: Optional[str] = None
    ParentJobId: Optional[str] = None


class QueueSnapshot(BaseModel):
    """Point-in-time read of all queue items of a test run."""

    done: bool = True
    totalSize: int = 0
    records: List[ApexTestQueueItemRecord] = Field(default_factory=list)

    @classmethod
    def from_records(cls, records: List[Dict[str, Any]]) -> "QueueSnapshot":
        return cls(
            done=True,
            totalSize=len(records),
            records=[ApexTestQueueItemRecord.model_validate(r) for r in records],
        )

    def pending_records(self) -> List[ApexTestQueueItemRecord]:
        return [r for r in self.records if r.Status in PENDING_QUEUE_STATUSES]

    def is_complete(self) -> bool:
        """True when no queue item is still queued, holding, preparing or processing."""
        return not any(r.Status in PENDING_QUEUE_STATUSES for r in self.records)

    def ids(self) -> List[str]:
        return [r.Id for r in self.records]
