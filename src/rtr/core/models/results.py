from enum import StrEnum
from typing import List, Optional

from pydantic import BaseModel, Field


class ApexTestResultOutcome(StrEnum):
    passed = "Pass"
    failed = "Fail"
    compile_fail = "CompileFail"
    skipped = "Skip"


FAILED_OUTCOMES = frozenset({ApexTestResultOutcome.failed, ApexTestResultOutcome.compile_fail})


class ApexClassRef(BaseModel):
    model_config = {"extra": "ignore"}

    Id: str
    Name: str
    NamespacePrefix: Optional[str] = None

    @property
    def full_name(self) -> str:
        # FullName can only be queried for single-record results, so it is built here
        if self.NamespacePrefix:
            return f"{self.NamespacePrefix}__{self.Name}"
        return self.Name


class ApexTestResultRecord(BaseModel):
    """ApexTestResult record: one executed test method."""

    model_config = {"extra": "ignore"}

    Id: str
    QueueItemId: Optional[str] = None
    StackTrace: Optional[str] = None
    Message: Optional[str] = None
    AsyncApexJobId: Optional[str] = None
    MethodName: str
    Outcome: ApexTestResultOutcome
    ApexLogId: Optional[str] = None
    ApexClass: ApexClassRef
    RunTime: Optional[int] = None
    TestTimestamp: Optional[str] = None


class ApexClassInfo(BaseModel):
    id: str
    name: str
    namespace_prefix: Optional[str] = None
    full_name: str


class ApexDiagnostic(BaseModel):
    exception_message: str = ""
    exception_stack_trace: Optional[str] = None
    compile_problem: str = ""
    line_number: Optional[int] = None
    column_number: Optional[int] = None
    class_name: Optional[str] = None


class PerClassCoverage(BaseModel):
    apex_class_or_trigger_name: str
    apex_class_or_trigger_id: str
    apex_test_class_id: str
    apex_test_method_name: str
    num_lines_covered: int
    num_lines_uncovered: int
    percentage: str
    covered_lines: Optional[List[int]] = None
    uncovered_lines: Optional[List[int]] = None


class CodeCoverageResult(BaseModel):
    apex_id: str
    name: str
    type: str
    num_lines_covered: int
    num_lines_uncovered: int
    percentage: str
    covered_lines: List[int] = Field(default_factory=list)
    uncovered_lines: List[int] = Field(default_factory=list)


class ApexTestResultData(BaseModel):
    id: str
    queue_item_id: Optional[str] = None
    stack_trace: Optional[str] = None
    message: Optional[str] = None
    async_apex_job_id: Optional[str] = None
    method_name: str
    outcome: ApexTestResultOutcome
    apex_log_id: Optional[str] = None
    apex_class: ApexClassInfo
    run_time: int = 0
    test_timestamp: Optional[str] = None
    full_name: str
    diagnostic: Optional[ApexDiagnostic] = None
    per_class_coverage: Optional[List[PerClassCoverage]] = None


class TestResultSummary(BaseModel):
    outcome: str
    tests_ran: int
    passing: int
    failing: int
    skipped: int
    pass_rate: str
    fail_rate: str
    skip_rate: str
    test_start_time: Optional[str] = None
    test_execution_time_in_ms: int = 0
    command_time_in_ms: int = 0
    hostname: Optional[str] = None
    org_id: Optional[str] = None
    username: Optional[str] = None
    test_run_id: str
    user_id: Optional[str] = None
    # coverage fields are only set when coverage was requested
    total_lines: Optional[int] = None
    covered_lines: Optional[int] = None
    test_run_coverage: Optional[str] = None
    org_wide_coverage: Optional[str] = None
    coverage_error: Optional[str] = None


class TestResult(BaseModel):
    summary: TestResultSummary
    tests: List[ApexTestResultData] = Field(default_factory=list)
    codecoverage: Optional[List[CodeCoverageResult]] = None
