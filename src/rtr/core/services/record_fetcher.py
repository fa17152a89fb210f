"""Query execution with auto-pagination.

RecordFetcher runs queries against the tooling connection and follows the
continuation cursor (`nextRecordsUrl`) until the platform reports `done`.
Results of chunked queries are returned per query, not merged; callers merge
as needed.

Failures never retry here. They surface as `QueryFetchError` naming the record
shape and the underlying message so the caller can decide between aborting and
degrading (e.g. reporting tests without coverage).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from time import perf_counter
from typing import Any, Dict, List, Sequence

from rtr.core.exceptions import QueryFetchError
from rtr.core.interfaces.connection import ToolingConnectionPort
from rtr.core.models.queue import QueryPage

logger = logging.getLogger(__name__)


@dataclass
class QueryResult:
    """Aggregated records of one query across all of its pages.

    Attributes:
        records: Records of every page, in page order
        total_size: Size reported by the platform for the query
        pages: Number of pages fetched
    """

    records: List[Dict[str, Any]] = field(default_factory=list)
    total_size: int = 0
    pages: int = 0


class RecordFetcher:
    """Executes queries and collects all of their pages.

    Stateless apart from the connection; safe to use from concurrent tasks.
    """

    def __init__(self, connection: ToolingConnectionPort) -> None:
        self._conn = connection

    async def fetch_all(self, query: str, record_shape: str) -> QueryResult:
        """Run one query and follow its cursor to completion.

        Args:
            query: Query text
            record_shape: Name of the object being fetched, used in errors

        Returns:
            QueryResult with every record of the query
        """
        try:
            return await self._collect_pages(query, record_shape)
        except QueryFetchError:
            raise
        except Exception as exc:
            logger.warning(f"[fetcher:error] record_shape={record_shape} error={exc}")
            raise QueryFetchError(record_shape, str(exc)) from exc

    async def fetch_chunks(self, queries: Sequence[str], record_shape: str) -> List[QueryResult]:
        """Run chunked queries concurrently, one QueryResult per query in query order."""
        if not queries:
            return []
        return list(
            await asyncio.gather(*(self.fetch_all(query, record_shape) for query in queries))
        )

    async def fetch_records(self, queries: Sequence[str], record_shape: str) -> List[Dict[str, Any]]:
        """Run chunked queries and concatenate their records."""
        results = await self.fetch_chunks(queries, record_shape)
        return [record for result in results for record in result.records]

    async def _collect_pages(self, query: str, record_shape: str) -> QueryResult:
        result = QueryResult()
        seen_cursors: set[str] = set()

        started = perf_counter()
        page = QueryPage.model_validate(await self._conn.query(query))
        while True:
            result.pages += 1
            result.records.extend(page.records)
            result.total_size = page.totalSize
            logger.debug(
                f"[fetcher:page] record_shape={record_shape} page={result.pages} "
                f"rows={len(page.records)} done={page.done} "
                f"latency_ms={(perf_counter() - started) * 1000.0:.1f}"
            )
            if page.done:
                return result
            cursor = page.nextRecordsUrl
            if not cursor:
                raise QueryFetchError(record_shape, "incomplete page without a continuation cursor")
            if cursor in seen_cursors:
                raise QueryFetchError(record_shape, f"continuation cursor repeated: {cursor}")
            seen_cursors.add(cursor)
            started = perf_counter()
            page = QueryPage.model_validate(await self._conn.query_more(cursor))
