"""Pipeline coordinator: queues and workers between the pipeline stages.

Stages are connected by single-slot queues, so a handoff blocks the producer
until the consumer has taken the previous item. That is the only
backpressure; nothing is buffered without bound and nothing is dropped
because a consumer is slow.

    poll pass -> chunk_queue -> fetch -> trace_queue -> translate
              -> span_queue -> upload -> OTLP collector

Every stage reports failures to one shared error queue whose only consumer
logs them. No failure stops the pipeline.
"""
from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Optional

from xotel.errors import PipelineError
from xotel.otlp.translate import translate_trace
from xotel.xray.summaries import PollWindow

logger = logging.getLogger(__name__)

STAGE_COLLECT = "collect"
STAGE_FETCH = "fetch"
STAGE_TRANSLATE = "translate"
STAGE_UPLOAD = "upload"


class ExportCounter:
    """Thread-safe count of exported resource span groups."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._value = 0

    def add(self, n: int = 1) -> None:
        with self._lock:
            self._value += n

    def swap(self) -> int:
        """Return the current count and reset it to zero."""
        with self._lock:
            value, self._value = self._value, 0
            return value


class Pipeline:
    """Owns the stage queues, the export counter and the worker threads.

    Collaborators are injected so tests can replace the X-Ray and OTLP
    clients with fakes.
    """

    def __init__(
        self,
        collector: Any,
        fetcher: Any,
        uploader: Any,
        require_origin: bool = True,
        report_interval_seconds: float = 10.0,
        poll_interval_seconds: float = 0.5,
        stop_event: Optional[threading.Event] = None,
    ):
        """Initialize the pipeline.

        Args:
            collector: TraceSummaryCollector (``collect(window)``)
            fetcher: BatchTraceFetcher (``fetch(chunk)``)
            uploader: SpanUploader (``upload(resource_spans)``)
            require_origin: Drop root segments without an origin
            report_interval_seconds: Period of the throughput log line
            poll_interval_seconds: How often blocked queue waits check for stop
            stop_event: Shared stop signal; a new one is created if omitted
        """
        self.collector = collector
        self.fetcher = fetcher
        self.uploader = uploader
        self.require_origin = require_origin
        self.report_interval_seconds = report_interval_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self.stop_event = stop_event or threading.Event()

        self.chunk_queue: queue.Queue = queue.Queue(maxsize=1)
        self.trace_queue: queue.Queue = queue.Queue(maxsize=1)
        self.span_queue: queue.Queue = queue.Queue(maxsize=1)
        self.error_queue: queue.Queue = queue.Queue(maxsize=1)

        self.exported = ExportCounter()
        self._threads: list[threading.Thread] = []

    # -- queue helpers -----------------------------------------------------

    def _put(self, q: queue.Queue, item: Any) -> bool:
        """Hand an item to the next stage. Returns False if stopped first."""
        while not self.stop_event.is_set():
            try:
                q.put(item, timeout=self.poll_interval_seconds)
                return True
            except queue.Full:
                continue
        return False

    def _get(self, q: queue.Queue) -> Any:
        """Wait for the next item. Returns None if stopped first."""
        while not self.stop_event.is_set():
            try:
                return q.get(timeout=self.poll_interval_seconds)
            except queue.Empty:
                continue
        return None

    def report_error(self, stage: str, cause: BaseException) -> None:
        self._put(self.error_queue, PipelineError(stage=stage, cause=cause))

    # -- stages ------------------------------------------------------------

    def run_pass(self, window: PollWindow) -> None:
        """Collect trace ids for one window and hand the chunks downstream.

        A backend failure is reported and ends this pass only.
        """
        logger.debug(
            "poll pass %s - %s", window.start.isoformat(), window.end.isoformat()
        )
        try:
            for chunk in self.collector.collect(window):
                if not self._put(self.chunk_queue, chunk):
                    return
        except Exception as e:
            self.report_error(STAGE_COLLECT, e)

    def fetch_worker(self) -> None:
        while True:
            chunk = self._get(self.chunk_queue)
            if chunk is None:
                return
            try:
                traces = self.fetcher.fetch(chunk)
            except Exception as e:
                self.report_error(STAGE_FETCH, e)
                continue
            for trace in traces:
                if not self._put(self.trace_queue, trace):
                    return

    def translate_worker(self) -> None:
        while True:
            trace = self._get(self.trace_queue)
            if trace is None:
                return
            try:
                groups = translate_trace(trace, require_origin=self.require_origin)
            except Exception as e:
                self.report_error(STAGE_TRANSLATE, e)
                continue
            for group in groups:
                if not self._put(self.span_queue, group):
                    return

    def upload_worker(self) -> None:
        while True:
            group = self._get(self.span_queue)
            if group is None:
                return
            try:
                self.uploader.upload(group)
            except Exception as e:
                self.report_error(STAGE_UPLOAD, e)
                continue
            self.exported.add()

    def error_worker(self) -> None:
        while True:
            err = self._get(self.error_queue)
            if err is None:
                return
            logger.error("%s", err)
            logger.debug("cause of %s error", err.stage, exc_info=err.cause)

    def report_throughput(self) -> int:
        """Log and reset the number of groups exported since the last report."""
        exported = self.exported.swap()
        if exported:
            logger.info("Exported (%d) resource span groups", exported)
        else:
            logger.debug("didn't export any spans")
        return exported

    def reporter_worker(self) -> None:
        while not self.stop_event.wait(self.report_interval_seconds):
            self.report_throughput()

    # -- lifecycle ---------------------------------------------------------

    def start(self) -> None:
        """Start one daemon thread per worker."""
        workers = {
            "xotel-fetch": self.fetch_worker,
            "xotel-translate": self.translate_worker,
            "xotel-upload": self.upload_worker,
            "xotel-errors": self.error_worker,
            "xotel-reporter": self.reporter_worker,
        }
        for name, target in workers.items():
            thread = threading.Thread(target=target, name=name, daemon=True)
            thread.start()
            self._threads.append(thread)
        logger.debug("started %d pipeline workers", len(self._threads))

    def stop(self, timeout_seconds: float = 5.0) -> None:
        """Signal every worker to stop and wait for them to exit."""
        self.stop_event.set()
        for thread in self._threads:
            thread.join(timeout=timeout_seconds)
        self._threads.clear()

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)
