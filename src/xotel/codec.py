"""Re-encode X-Ray identifiers and timestamps for OTLP.

X-Ray trace ids look like ``1-58406520-a006649127e371903a2de979``:
- the version number, ``1``
- the time of the original request in epoch seconds, 8 hex digits
- a 96-bit identifier for the trace, 24 hex digits

OTLP wants 16 raw bytes for a trace id, so the last two fields are joined.
Segment ids are already 16 hex digits (8 bytes) and decode directly.

https://docs.aws.amazon.com/xray/latest/devguide/xray-api-segmentdocuments.html
"""
from __future__ import annotations

import math
import re

from xotel.errors import MalformedSpanIdError, MalformedTraceIdError

TRACE_ID_BYTES = 16
SPAN_ID_BYTES = 8
NANOS_PER_SECOND = 1_000_000_000

_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")


def _decode_hex(value: str, size: int) -> bytes | None:
    if len(value) != size * 2 or not _HEX_RE.match(value):
        return None
    raw = bytes.fromhex(value)
    if raw == bytes(size):
        # all-zero ids are invalid in OTLP
        return None
    return raw


def decode_trace_id(native: str) -> bytes:
    """Convert an X-Ray trace id into a 16-byte OTLP trace id.

    Raises:
        MalformedTraceIdError: If the id does not have exactly three
            hyphen-separated fields or the hex part is not a valid trace id.
    """
    parts = native.split("-")
    if len(parts) != 3:
        raise MalformedTraceIdError(f"unable to parse xray trace id {native!r}")

    raw = _decode_hex(parts[1] + parts[2], TRACE_ID_BYTES)
    if raw is None:
        raise MalformedTraceIdError(f"xray trace id {native!r} is not 32 hex digits")
    return raw


def decode_span_id(native: str) -> bytes:
    """Convert a 16 hex digit X-Ray segment id into an 8-byte OTLP span id."""
    raw = _decode_hex(native, SPAN_ID_BYTES)
    if raw is None:
        raise MalformedSpanIdError(f"unable to parse xray segment id {native!r}")
    return raw


def decode_timestamp(seconds: float) -> int:
    """Convert X-Ray epoch seconds (with fraction) to epoch nanoseconds.

    The fractional part is truncated to whole nanoseconds, never rounded.
    """
    frac, whole = math.modf(seconds)
    return int(whole) * NANOS_PER_SECOND + int(frac * NANOS_PER_SECOND)
