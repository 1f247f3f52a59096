"""Tests for the pipeline coordinator, with fake X-Ray and OTLP clients."""
from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest
from botocore.exceptions import EndpointConnectionError
from opentelemetry.proto.trace.v1.trace_pb2 import ResourceSpans

from conftest import make_trace
from xotel.errors import BackendCallError, PipelineError, SinkDeliveryError
from xotel.pipeline.coordinator import (
    STAGE_COLLECT,
    STAGE_FETCH,
    ExportCounter,
    Pipeline,
)
from xotel.xray.batch_get import TraceDocument
from xotel.xray.summaries import PollWindow

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
WINDOW = PollWindow.trailing(NOW, timedelta(minutes=6), timedelta(minutes=1))


class FakeCollector:
    def __init__(self, chunks: list[list[str]], error: Exception | None = None):
        self.chunks = chunks
        self.error = error
        self.windows: list[PollWindow] = []

    def collect(self, window: PollWindow):
        self.windows.append(window)
        yield from self.chunks
        if self.error is not None:
            raise self.error


class FakeFetcher:
    def __init__(self, traces: dict[str, TraceDocument], fail_on: set[str] | None = None):
        self.traces = traces
        self.fail_on = fail_on or set()

    def fetch(self, chunk: list[str]) -> list[TraceDocument]:
        if self.fail_on & set(chunk):
            raise BackendCallError(
                "BatchGetTraces", EndpointConnectionError(endpoint_url="https://xray")
            )
        return [self.traces[i] for i in chunk if i in self.traces]


class FakeUploader:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.uploaded: list[ResourceSpans] = []
        self._lock = threading.Lock()

    def upload(self, group: ResourceSpans) -> None:
        if self.fail:
            raise SinkDeliveryError("export to localhost:4317 failed")
        with self._lock:
            self.uploaded.append(group)


def wait_for(condition: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return condition()


def _segment(span_id: str, origin: str | None = "AWS::Lambda::Function") -> dict[str, Any]:
    seg: dict[str, Any] = {
        "id": span_id,
        "name": "fn",
        "trace_id": "1-58406520-a006649127e371903a2de979",
        "start_time": 1.0,
        "end_time": 2.0,
    }
    if origin is not None:
        seg["origin"] = origin
    return seg


@pytest.fixture
def make_pipeline():
    pipelines: list[Pipeline] = []

    def factory(collector: Any, fetcher: Any, uploader: Any, **kwargs: Any) -> Pipeline:
        kwargs.setdefault("poll_interval_seconds", 0.01)
        kwargs.setdefault("report_interval_seconds", 60.0)
        pipeline = Pipeline(collector, fetcher, uploader, **kwargs)
        pipelines.append(pipeline)
        return pipeline

    yield factory
    for pipeline in pipelines:
        pipeline.stop(timeout_seconds=2.0)


class TestExportCounter:
    def test_add_and_swap(self) -> None:
        counter = ExportCounter()
        counter.add()
        counter.add(2)
        assert counter.swap() == 3
        assert counter.swap() == 0

    def test_concurrent_adds(self) -> None:
        counter = ExportCounter()

        def bump() -> None:
            for _ in range(1000):
                counter.add()

        threads = [threading.Thread(target=bump) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert counter.swap() == 8000


class TestPipeline:
    """End-to-end flow through the worker threads."""

    def test_pass_delivers_every_group(self, make_pipeline) -> None:
        traces = {
            "t1": make_trace(_segment("abcd000000000001")),
            "t2": make_trace(_segment("abcd000000000002"), _segment("abcd000000000003")),
        }
        uploader = FakeUploader()
        pipeline = make_pipeline(FakeCollector([["t1", "t2"]]), FakeFetcher(traces), uploader)
        pipeline.start()

        pipeline.run_pass(WINDOW)

        assert wait_for(lambda: len(uploader.uploaded) == 3)
        assert pipeline.report_throughput() == 3
        assert pipeline.report_throughput() == 0

    def test_origin_filter_applies(self, make_pipeline) -> None:
        traces = {"t1": make_trace(_segment("abcd000000000001", origin=None))}
        uploader = FakeUploader()
        pipeline = make_pipeline(
            FakeCollector([["t1"]]), FakeFetcher(traces), uploader, require_origin=False
        )
        pipeline.start()
        pipeline.run_pass(WINDOW)

        assert wait_for(lambda: len(uploader.uploaded) == 1)

    def test_failed_fetch_does_not_stop_pipeline(self, make_pipeline, caplog) -> None:
        traces = {"t2": make_trace(_segment("abcd000000000002"))}
        uploader = FakeUploader()
        pipeline = make_pipeline(
            FakeCollector([["t1"], ["t2"]]),
            FakeFetcher(traces, fail_on={"t1"}),
            uploader,
        )
        with caplog.at_level(logging.ERROR, logger="xotel.pipeline.coordinator"):
            pipeline.start()
            pipeline.run_pass(WINDOW)
            assert wait_for(lambda: len(uploader.uploaded) == 1)
            assert wait_for(lambda: "[fetch] XOTEL-E100" in caplog.text)

    def test_upload_failure_is_not_counted(self, make_pipeline, caplog) -> None:
        traces = {"t1": make_trace(_segment("abcd000000000001"))}
        pipeline = make_pipeline(
            FakeCollector([["t1"]]), FakeFetcher(traces), FakeUploader(fail=True)
        )
        with caplog.at_level(logging.ERROR, logger="xotel.pipeline.coordinator"):
            pipeline.start()
            pipeline.run_pass(WINDOW)
            assert wait_for(lambda: "[upload] XOTEL-E101" in caplog.text)
        assert pipeline.exported.swap() == 0

    def test_undecodable_trace_is_reported(self, make_pipeline, caplog) -> None:
        traces = {
            "bad": make_trace({"name": "no id"}),
            "good": make_trace(_segment("abcd000000000001")),
        }
        uploader = FakeUploader()
        pipeline = make_pipeline(
            FakeCollector([["bad", "good"]]), FakeFetcher(traces), uploader
        )
        with caplog.at_level(logging.ERROR, logger="xotel.pipeline.coordinator"):
            pipeline.start()
            pipeline.run_pass(WINDOW)
            assert wait_for(lambda: len(uploader.uploaded) == 1)
            assert wait_for(lambda: "[translate] XOTEL-E201" in caplog.text)

    def test_mistyped_field_is_reported_not_raised(self, make_pipeline, caplog) -> None:
        bad = _segment("abcd000000000001")
        bad["aws"] = {"ec2": {"instance_id": 12345}}
        traces = {
            "bad": make_trace(bad),
            "good": make_trace(_segment("abcd000000000002")),
        }
        uploader = FakeUploader()
        pipeline = make_pipeline(
            FakeCollector([["bad", "good"]]), FakeFetcher(traces), uploader
        )
        with caplog.at_level(logging.ERROR, logger="xotel.pipeline.coordinator"):
            pipeline.start()
            pipeline.run_pass(WINDOW)
            assert wait_for(lambda: len(uploader.uploaded) == 1)
            assert wait_for(lambda: "[translate] XOTEL-E201" in caplog.text)
        assert "XOTEL-E199" not in caplog.text

    def test_collect_failure_ends_pass_and_is_reported(self, make_pipeline) -> None:
        error = BackendCallError(
            "GetTraceSummaries", EndpointConnectionError(endpoint_url="https://xray")
        )
        pipeline = make_pipeline(FakeCollector([], error=error), FakeFetcher({}), FakeUploader())

        pipeline.run_pass(WINDOW)

        reported = pipeline.error_queue.get_nowait()
        assert isinstance(reported, PipelineError)
        assert reported.stage == STAGE_COLLECT
        assert reported.cause is error

    def test_handoff_blocks_until_consumed(self, make_pipeline) -> None:
        """With no fetch worker running, the second chunk waits in run_pass."""
        pipeline = make_pipeline(FakeCollector([["t1"], ["t2"]]), FakeFetcher({}), FakeUploader())
        runner = threading.Thread(target=pipeline.run_pass, args=(WINDOW,), daemon=True)
        runner.start()

        assert wait_for(lambda: pipeline.chunk_queue.full())
        time.sleep(0.05)
        assert runner.is_alive()

        assert pipeline.chunk_queue.get_nowait() == ["t1"]
        assert wait_for(lambda: pipeline.chunk_queue.full())
        assert pipeline.chunk_queue.get_nowait() == ["t2"]
        runner.join(timeout=2.0)
        assert not runner.is_alive()

    def test_stop_unblocks_waiting_producer(self, make_pipeline) -> None:
        pipeline = make_pipeline(FakeCollector([["t1"], ["t2"]]), FakeFetcher({}), FakeUploader())
        runner = threading.Thread(target=pipeline.run_pass, args=(WINDOW,), daemon=True)
        runner.start()
        assert wait_for(lambda: pipeline.chunk_queue.full())

        pipeline.stop()
        runner.join(timeout=2.0)
        assert not runner.is_alive()

    def test_start_and_stop_workers(self, make_pipeline) -> None:
        pipeline = make_pipeline(FakeCollector([]), FakeFetcher({}), FakeUploader())
        pipeline.start()
        assert pipeline.running
        pipeline.stop()
        assert not pipeline.running

    def test_fetch_error_reported_with_stage(self, make_pipeline) -> None:
        pipeline = make_pipeline(
            FakeCollector([]), FakeFetcher({}, fail_on={"t1"}), FakeUploader()
        )
        worker = threading.Thread(target=pipeline.fetch_worker, daemon=True)
        worker.start()
        pipeline.chunk_queue.put(["t1"])

        assert wait_for(lambda: pipeline.error_queue.full())
        reported = pipeline.error_queue.get_nowait()
        assert reported.stage == STAGE_FETCH
        assert str(reported).startswith("[fetch] XOTEL-E100")
