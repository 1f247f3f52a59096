"""Forward resource span groups to an OTLP collector over gRPC.

The collector is expected to run next to xotel, so the channel is plaintext.
Each call exports exactly one ResourceSpans; there is no batching.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

import grpc
from opentelemetry.proto.collector.trace.v1.trace_service_pb2 import (
    ExportTraceServiceRequest,
)
from opentelemetry.proto.collector.trace.v1.trace_service_pb2_grpc import (
    TraceServiceStub,
)
from opentelemetry.proto.trace.v1.trace_pb2 import ResourceSpans

from xotel.errors import SinkDeliveryError

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "localhost:4317"


def grpc_target(endpoint: str) -> str:
    """Strip a URL scheme from an OTLP endpoint to get a gRPC target."""
    for scheme in ("http://", "https://"):
        if endpoint.startswith(scheme):
            endpoint = endpoint[len(scheme):]
    return endpoint.rstrip("/") or DEFAULT_ENDPOINT


class SpanUploader:
    """Exports one ResourceSpans per call to the OTLP trace service."""

    def __init__(
        self,
        endpoint: str = DEFAULT_ENDPOINT,
        timeout_seconds: float = 10.0,
        stub: Any = None,
        channel: Optional[grpc.Channel] = None,
    ):
        """Initialize the uploader.

        Args:
            endpoint: Collector address, ``host:port`` or an ``http://`` URL
            timeout_seconds: Deadline for each Export call
            stub: Pre-built TraceService stub (tests inject a fake)
            channel: Pre-built channel; an insecure one is opened otherwise
        """
        self._target = grpc_target(endpoint)
        self._timeout = timeout_seconds
        self._channel = channel
        if stub is None:
            if self._channel is None:
                self._channel = grpc.insecure_channel(self._target)
            stub = TraceServiceStub(self._channel)
        self._stub = stub

    @property
    def target(self) -> str:
        return self._target

    def wait_ready(self, timeout_seconds: float) -> bool:
        """Block until the channel connects, or the timeout passes."""
        if self._channel is None:
            return True
        try:
            grpc.channel_ready_future(self._channel).result(timeout=timeout_seconds)
        except grpc.FutureTimeoutError:
            return False
        return True

    def upload(self, resource_spans: ResourceSpans) -> None:
        """Export a single resource span group.

        Raises:
            SinkDeliveryError: If the collector rejects the request or is
                unreachable. The group is not retried.
        """
        request = ExportTraceServiceRequest(resource_spans=[resource_spans])
        try:
            response = self._stub.Export(request, timeout=self._timeout)
        except grpc.RpcError as e:
            code = e.code() if hasattr(e, "code") else None
            raise SinkDeliveryError(f"export to {self._target} failed ({code}): {e}") from e

        partial = response.partial_success
        if partial.rejected_spans:
            logger.warning(
                "collector rejected (%d) spans: %s",
                partial.rejected_spans,
                partial.error_message,
            )

    def close(self) -> None:
        if self._channel is not None:
            self._channel.close()
            self._channel = None
