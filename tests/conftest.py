"""xotel test configuration and fixtures."""
from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import pytest

# Add src to path for imports
SRC_DIR = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(SRC_DIR))

from xotel.xray.batch_get import RawSegment, TraceDocument  # noqa: E402

TRACE_ID = "1-58406520-a006649127e371903a2de979"
TRACE_ID_HEX = "58406520a006649127e371903a2de979"


@pytest.fixture
def fixtures_dir() -> Path:
    """Return the fixtures directory path."""
    return Path(__file__).parent.parent / "fixtures"


@pytest.fixture
def batch_get_traces_path(fixtures_dir: Path) -> Path:
    """Return the path to the saved BatchGetTraces response."""
    return fixtures_dir / "xray" / "batch_get_traces.json"


@pytest.fixture
def lambda_segment() -> dict[str, Any]:
    """A minimal Lambda function root segment."""
    return {
        "id": "abcd000000000001",
        "name": "my-function",
        "trace_id": TRACE_ID,
        "origin": "AWS::Lambda::Function",
        "start_time": 1.0,
        "end_time": 2.0,
    }


def make_trace(*segments: dict[str, Any], trace_id: str = TRACE_ID) -> TraceDocument:
    """Build a TraceDocument from segment dicts, as BatchGetTraces returns it."""
    return TraceDocument(
        id=trace_id,
        segments=[RawSegment(id=s.get("id"), document=json.dumps(s)) for s in segments],
    )
