"""Collect trace ids from X-Ray for a poll window.

GetTraceSummaries is paginated; each page is split into chunks of at most
five ids, the most BatchGetTraces accepts in one call.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Iterator, Optional, Sequence, TypeVar

from botocore.exceptions import BotoCoreError, ClientError

from xotel.errors import BackendCallError

logger = logging.getLogger(__name__)

MAX_BATCH_GET_TRACE_IDS = 5

T = TypeVar("T")


@dataclass(frozen=True)
class PollWindow:
    """Time range queried by one poll pass."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValueError(
                f"poll window start {self.start.isoformat()} is not before end {self.end.isoformat()}"
            )

    @classmethod
    def trailing(
        cls,
        now: datetime,
        max_look_back: timedelta,
        min_look_back: timedelta,
    ) -> PollWindow:
        """Window ``[now - max_look_back, now - min_look_back]``.

        The minimum look-back leaves X-Ray time to finish assembling traces
        that are still being ingested.
        """
        return cls(start=now - max_look_back, end=now - min_look_back)

    def overlaps(self, other: PollWindow) -> bool:
        return self.start < other.end and other.start < self.end


def chunk_by(items: Sequence[T], size: int) -> list[list[T]]:
    """Split items into consecutive chunks of ``size``; the last may be shorter."""
    if size <= 0:
        raise ValueError("chunk size must be positive")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


class TraceSummaryCollector:
    """Pages through GetTraceSummaries and yields trace id chunks."""

    def __init__(self, client: Any, chunk_size: int = MAX_BATCH_GET_TRACE_IDS):
        """Initialize the collector.

        Args:
            client: A boto3 ``xray`` client (or anything with the same
                ``get_trace_summaries`` signature)
            chunk_size: Ids per chunk, capped at the BatchGetTraces limit
        """
        if not 0 < chunk_size <= MAX_BATCH_GET_TRACE_IDS:
            raise ValueError(f"chunk_size must be between 1 and {MAX_BATCH_GET_TRACE_IDS}")
        self._client = client
        self._chunk_size = chunk_size

    def _get_page(self, window: PollWindow, next_token: Optional[str]) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "StartTime": window.start,
            "EndTime": window.end,
        }
        if next_token:
            kwargs["NextToken"] = next_token

        try:
            return self._client.get_trace_summaries(**kwargs)
        except (ClientError, BotoCoreError) as e:
            raise BackendCallError("GetTraceSummaries", e) from e

    def collect(self, window: PollWindow) -> Iterator[list[str]]:
        """Yield chunks of trace ids recorded inside ``window``.

        Each page is chunked and emitted before the next page is requested,
        reusing the same window bounds with the page's NextToken.

        Raises:
            BackendCallError: If a GetTraceSummaries call fails. Chunks from
                earlier pages have already been yielded.
        """
        logger.debug(
            "collecting trace summaries %s - %s",
            window.start.isoformat(),
            window.end.isoformat(),
        )
        next_token: Optional[str] = None
        page = 0
        while True:
            output = self._get_page(window, next_token)
            page += 1

            ids = [s["Id"] for s in output.get("TraceSummaries", []) if s.get("Id")]
            if not ids and page == 1:
                logger.info("no trace summaries found")
            else:
                logger.debug("found (%d) trace ids on page %d", len(ids), page)

            yield from chunk_by(ids, self._chunk_size)

            next_token = output.get("NextToken")
            if not next_token:
                return
