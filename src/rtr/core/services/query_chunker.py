"""Split an id collection into queries that stay within platform limits.

Every id-driven query (`... WHERE X IN ({ids})`) goes through here so that no
single request exceeds the record or character budget in `QueryLimits`.

Guarantees for `build_chunked_queries`:
- every distinct id appears in exactly one query, none is split or dropped
- no query holds more than `record_limit` ids
- no rendered query is longer than `char_limit`
- query order follows the iteration order of the input

The last point means a `set` input yields a run-dependent assignment of ids
to queries. Nothing downstream relies on that assignment; tests that need a
fixed assignment pass a list.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from rtr.core.config import QueryLimits
from rtr.core.constants import ID_PLACEHOLDER
from rtr.core.exceptions import QueryTooLongError

logger = logging.getLogger(__name__)


def _distinct(ids: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(ids))


def chunk_ids(ids: Iterable[str], record_limit: int) -> List[List[str]]:
    """Walk the ids in fixed-size windows of `record_limit`."""
    if record_limit <= 0:
        raise ValueError("record_limit must be positive")
    ordered = _distinct(ids)
    return [ordered[i:i + record_limit] for i in range(0, len(ordered), record_limit)]


def render_query(template: str, ids: List[str]) -> str:
    return template.replace(ID_PLACEHOLDER, ",".join(f"'{record_id}'" for record_id in ids))


def _split_by_length(template: str, window: List[str], char_limit: int) -> List[str]:
    """Greedily pack a window into queries no longer than `char_limit`."""
    queries: List[str] = []
    current: List[str] = []
    for record_id in window:
        candidate = current + [record_id]
        if len(render_query(template, candidate)) <= char_limit:
            current = candidate
            continue
        if not current:
            raise QueryTooLongError(record_id, char_limit)
        queries.append(render_query(template, current))
        current = [record_id]
        if len(render_query(template, current)) > char_limit:
            raise QueryTooLongError(record_id, char_limit)
    if current:
        queries.append(render_query(template, current))
    return queries


def build_chunked_queries(
    template: str,
    ids: Iterable[str],
    limits: Optional[QueryLimits] = None,
) -> List[str]:
    """Render `template` once per chunk of ids.

    Args:
        template: Query text with exactly one `{ids}` substitution point
        ids: Ids to spread over the queries
        limits: Record and character budget (defaults to QueryLimits())

    Returns:
        Ordered list of queries; empty when there are no ids, in which case
        callers must not issue any request.
    """
    if template.count(ID_PLACEHOLDER) != 1:
        raise ValueError(f"query template must contain exactly one {ID_PLACEHOLDER} placeholder")
    limits = limits or QueryLimits()

    queries: List[str] = []
    for window in chunk_ids(ids, limits.record_limit):
        rendered = render_query(template, window)
        if len(rendered) <= limits.char_limit:
            queries.append(rendered)
        else:
            queries.extend(_split_by_length(template, window, limits.char_limit))

    logger.debug(
        f"[chunker:plan] queries={len(queries)} record_limit={limits.record_limit} char_limit={limits.char_limit}"
    )
    return queries
