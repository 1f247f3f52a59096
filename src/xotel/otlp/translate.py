"""Translate X-Ray traces into OTLP resource spans.

X-Ray nests subsegments inside segments; OTLP spans are flat and point at
their parent with ``parent_span_id``. Each root segment becomes one
ResourceSpans whose spans are the flattened segment tree in post-order
(children before the span that contains them).
"""
from __future__ import annotations

import logging
from typing import Optional

from opentelemetry.proto.common.v1.common_pb2 import InstrumentationScope, KeyValue
from opentelemetry.proto.resource.v1.resource_pb2 import Resource
from opentelemetry.proto.trace.v1.trace_pb2 import ResourceSpans, ScopeSpans
from opentelemetry.proto.trace.v1.trace_pb2 import Span as PbSpan
from opentelemetry.semconv.resource import ResourceAttributes

from xotel.codec import decode_span_id, decode_timestamp, decode_trace_id
from xotel.errors import (
    MalformedIdentifierError,
    MalformedTraceIdError,
    SegmentDecodeError,
)
from xotel.otlp.attributes import (
    segment_attributes,
    segment_events,
    segment_status,
    string_value,
)
from xotel.xray.batch_get import TraceDocument
from xotel.xray.segment_model import Segment, parse_segment_document

logger = logging.getLogger(__name__)

DEFAULT_INSTRUMENTATION_NAME = "AWS::Xray"
DEFAULT_INSTRUMENTATION_VERSION = "xray-to-otel"
UNKNOWN_SPAN_NAME = "unknown"


def segment_to_spans(
    seg: Segment,
    trace_id: Optional[bytes] = None,
    parent_span_id: Optional[bytes] = None,
) -> list[PbSpan]:
    """Flatten a segment tree into spans, children first.

    Args:
        seg: The segment to convert
        trace_id: Trace id inherited from the root; decoded from the segment
            itself when not given
        parent_span_id: Span id of the enclosing segment; used when the
            segment declares no ``parent_id`` of its own

    Raises:
        MalformedIdentifierError: If this segment's own ids cannot be decoded.
            Failures inside subsegments are logged and only drop that subtree.
    """
    if trace_id is None:
        if seg.trace_id is None:
            raise MalformedTraceIdError(f"segment {seg.id} has no trace_id")
        trace_id = decode_trace_id(seg.trace_id)

    span_id = decode_span_id(seg.id)

    if seg.parent_id is not None:
        parent = decode_span_id(seg.parent_id)
    else:
        parent = parent_span_id

    spans: list[PbSpan] = []
    for sub in seg.subsegments:
        try:
            spans.extend(segment_to_spans(sub, trace_id, span_id))
        except MalformedIdentifierError as e:
            logger.warning("skipping subsegment %s of %s: %s", sub.id, seg.id, e)

    if seg.start_time is None or seg.end_time is None:
        logger.debug("skip span %s missing start/end time", seg.id)
        return spans

    spans.append(
        PbSpan(
            trace_id=trace_id,
            span_id=span_id,
            parent_span_id=parent or b"",
            name=seg.name if seg.name is not None else UNKNOWN_SPAN_NAME,
            kind=PbSpan.SPAN_KIND_INTERNAL,
            start_time_unix_nano=decode_timestamp(seg.start_time),
            end_time_unix_nano=decode_timestamp(seg.end_time),
            attributes=segment_attributes(seg),
            events=segment_events(seg),
            status=segment_status(seg),
        )
    )
    return spans


def _instrumentation_scope(seg: Segment) -> InstrumentationScope:
    name = DEFAULT_INSTRUMENTATION_NAME
    version = DEFAULT_INSTRUMENTATION_VERSION
    if seg.aws is not None and seg.aws.xray is not None:
        if seg.aws.xray.sdk is not None:
            name = seg.aws.xray.sdk
        if seg.aws.xray.sdk_version is not None:
            version = seg.aws.xray.sdk_version
    return InstrumentationScope(name=name, version=version)


def segment_to_resource_spans(
    seg: Segment,
    require_origin: bool = True,
) -> Optional[ResourceSpans]:
    """Convert one root segment into a ResourceSpans, or None if it is filtered.

    A root without ``origin`` is dropped with its whole subtree unless
    ``require_origin`` is False, in which case its name becomes the service
    name.
    """
    service_name = seg.origin
    if service_name is None:
        if require_origin:
            logger.debug("skip segment %s with no origin", seg.id)
            return None
        service_name = seg.name if seg.name is not None else UNKNOWN_SPAN_NAME

    spans = segment_to_spans(seg)

    return ResourceSpans(
        resource=Resource(
            attributes=[
                KeyValue(
                    key=ResourceAttributes.SERVICE_NAME,
                    value=string_value(service_name),
                ),
            ],
        ),
        scope_spans=[
            ScopeSpans(
                scope=_instrumentation_scope(seg),
                spans=spans,
            ),
        ],
    )


def translate_trace(
    document: TraceDocument,
    require_origin: bool = True,
) -> list[ResourceSpans]:
    """Translate one X-Ray trace into resource span groups in segment order.

    Raises:
        SegmentDecodeError: If any segment document cannot be decoded, or a
            decoded field cannot be carried by OTLP; the trace is skipped as
            a whole.
    """
    segments = [parse_segment_document(raw.document) for raw in document.segments]

    groups: list[ResourceSpans] = []
    for seg in segments:
        try:
            group = segment_to_resource_spans(seg, require_origin=require_origin)
        except MalformedIdentifierError as e:
            logger.warning(
                "unable to translate segment %s of xray trace %s: %s",
                seg.id,
                document.id,
                e,
            )
            continue
        except (TypeError, ValueError, OverflowError) as e:
            raise SegmentDecodeError(
                f"segment {seg.id} of xray trace {document.id} has an unusable field: {e}"
            ) from e
        if group is not None:
            groups.append(group)
    return groups
