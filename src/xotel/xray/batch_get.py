"""Resolve trace id chunks into full X-Ray trace documents."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from botocore.exceptions import BotoCoreError, ClientError

from xotel.errors import BackendCallError
from xotel.xray.summaries import MAX_BATCH_GET_TRACE_IDS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RawSegment:
    """A segment as returned by BatchGetTraces: an id and a JSON document."""

    id: Optional[str]
    document: str


@dataclass(frozen=True)
class TraceDocument:
    """One X-Ray trace with its undecoded segment documents."""

    id: Optional[str]
    segments: list[RawSegment] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TraceDocument:
        """Create a TraceDocument from one entry of BatchGetTraces ``Traces``."""
        return cls(
            id=data.get("Id"),
            segments=[
                RawSegment(id=s.get("Id"), document=s.get("Document", ""))
                for s in data.get("Segments", [])
            ],
        )


class BatchTraceFetcher:
    """Issues one BatchGetTraces call per chunk, without retries."""

    def __init__(self, client: Any):
        self._client = client

    def fetch(self, chunk: list[str]) -> list[TraceDocument]:
        """Fetch the trace documents for up to five trace ids.

        Raises:
            ValueError: If the chunk exceeds the BatchGetTraces limit
            BackendCallError: If the API call fails
        """
        if len(chunk) > MAX_BATCH_GET_TRACE_IDS:
            raise ValueError(
                f"BatchGetTraces accepts at most {MAX_BATCH_GET_TRACE_IDS} ids, got {len(chunk)}"
            )
        if not chunk:
            return []

        try:
            output = self._client.batch_get_traces(TraceIds=list(chunk))
        except (ClientError, BotoCoreError) as e:
            raise BackendCallError("BatchGetTraces", e) from e

        traces = [TraceDocument.from_dict(t) for t in output.get("Traces", [])]
        for trace in traces:
            if trace.id is None:
                logger.warning("trace has no Id (%d segments)", len(trace.segments))

        unprocessed = output.get("UnprocessedTraceIds") or []
        if unprocessed:
            logger.debug("BatchGetTraces left (%d) trace ids unprocessed", len(unprocessed))

        return traces


def create_xray_client(region: Optional[str] = None) -> Any:
    """Create the boto3 X-Ray client shared by the collector and fetcher."""
    import boto3

    return boto3.client("xray", region_name=region)
