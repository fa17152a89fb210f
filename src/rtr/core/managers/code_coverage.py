"""Code coverage retrieval for a finished test run.

Coverage is read in a pass separate from test results so that a coverage
failure never hides the results themselves.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from rtr.core.config import QueryLimits
from rtr.core.interfaces.connection import ToolingConnectionPort
from rtr.core.models.coverage import (
    ApexCodeCoverageAggregateRecord,
    ApexCodeCoverageRecord,
    ApexOrgWideCoverageRecord,
)
from rtr.core.models.results import CodeCoverageResult, PerClassCoverage
from rtr.core.services.query_chunker import build_chunked_queries
from rtr.core.services.record_fetcher import RecordFetcher
from rtr.core.utils.formatting import calculate_percentage
from rtr.core.utils.run_ids import is_valid_apex_class_id

logger = logging.getLogger(__name__)

ORG_WIDE_COVERAGE_QUERY = "SELECT PercentCovered FROM ApexOrgWideCoverage"

PER_CLASS_COVERAGE_QUERY = (
    "SELECT ApexTestClassId, ApexClassOrTrigger.Id, ApexClassOrTrigger.Name, TestMethodName, "
    "NumLinesCovered, NumLinesUncovered, Coverage FROM ApexCodeCoverage "
    "WHERE ApexTestClassId IN ({ids})"
)

AGGREGATE_COVERAGE_QUERY = (
    "SELECT ApexClassOrTrigger.Id, ApexClassOrTrigger.Name, NumLinesCovered, "
    "NumLinesUncovered, Coverage FROM ApexCodeCoverageAggregate "
    "WHERE ApexClassorTriggerId IN ({ids})"
)


@dataclass
class AggregateCoverage:
    results: List[CodeCoverageResult] = field(default_factory=list)
    total_lines: int = 0
    covered_lines: int = 0


class CodeCoverage:
    """Reads org-wide, per-test and aggregate coverage through the record fetcher."""

    def __init__(
        self,
        connection: ToolingConnectionPort,
        fetcher: Optional[RecordFetcher] = None,
        limits: Optional[QueryLimits] = None,
    ) -> None:
        self._conn = connection
        self._fetcher = fetcher or RecordFetcher(connection)
        self._limits = limits or QueryLimits()

    async def get_org_wide_coverage(self) -> str:
        """Org-wide coverage as a percentage string; '0%' when the org reports none."""
        result = await self._fetcher.fetch_all(ORG_WIDE_COVERAGE_QUERY, "ApexOrgWideCoverage")
        if not result.records:
            return "0%"
        record = ApexOrgWideCoverageRecord.model_validate(result.records[0])
        return f"{record.PercentCovered}%"

    async def get_per_class_code_coverage(
        self, test_class_ids: Iterable[str]
    ) -> Dict[str, List[PerClassCoverage]]:
        """Coverage of every class touched by each test method.

        Keyed by "<test class id>-<test method name>"; one test method may
        cover several classes, so each key holds a list.
        """
        queries = build_chunked_queries(PER_CLASS_COVERAGE_QUERY, test_class_ids, self._limits)
        if not queries:
            return {}

        coverage: Dict[str, List[PerClassCoverage]] = {}
        for raw in await self._fetcher.fetch_records(queries, "ApexCodeCoverage"):
            item = ApexCodeCoverageRecord.model_validate(raw)
            total_lines = item.NumLinesCovered + item.NumLinesUncovered
            entry = PerClassCoverage(
                apex_class_or_trigger_name=item.ApexClassOrTrigger.Name,
                apex_class_or_trigger_id=item.ApexClassOrTrigger.Id,
                apex_test_class_id=item.ApexTestClassId,
                apex_test_method_name=item.TestMethodName,
                num_lines_covered=item.NumLinesCovered,
                num_lines_uncovered=item.NumLinesUncovered,
                percentage=calculate_percentage(item.NumLinesCovered, total_lines),
                covered_lines=item.Coverage.coveredLines if item.Coverage else None,
                uncovered_lines=item.Coverage.uncoveredLines if item.Coverage else None,
            )
            coverage.setdefault(f"{item.ApexTestClassId}-{item.TestMethodName}", []).append(entry)
        return coverage

    async def get_aggregate_code_coverage(self, class_ids: Iterable[str]) -> AggregateCoverage:
        queries = build_chunked_queries(AGGREGATE_COVERAGE_QUERY, class_ids, self._limits)
        if not queries:
            return AggregateCoverage()

        aggregate = AggregateCoverage()
        for raw in await self._fetcher.fetch_records(queries, "ApexCodeCoverageAggregate"):
            item = ApexCodeCoverageAggregateRecord.model_validate(raw)
            total_lines = item.NumLinesCovered + item.NumLinesUncovered
            aggregate.total_lines += total_lines
            aggregate.covered_lines += item.NumLinesCovered
            aggregate.results.append(
                CodeCoverageResult(
                    apex_id=item.ApexClassOrTrigger.Id,
                    name=item.ApexClassOrTrigger.Name,
                    type="ApexClass" if is_valid_apex_class_id(item.ApexClassOrTrigger.Id) else "ApexTrigger",
                    num_lines_covered=item.NumLinesCovered,
                    num_lines_uncovered=item.NumLinesUncovered,
                    percentage=calculate_percentage(item.NumLinesCovered, total_lines),
                    covered_lines=item.Coverage.coveredLines,
                    uncovered_lines=item.Coverage.uncoveredLines,
                )
            )
        logger.debug(
            f"[coverage:aggregate] classes={len(aggregate.results)} "
            f"covered={aggregate.covered_lines}/{aggregate.total_lines}"
        )
        return aggregate
