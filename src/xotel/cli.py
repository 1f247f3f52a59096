from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
from pathlib import Path

from google.protobuf import json_format
from opentelemetry.proto.collector.trace.v1.trace_service_pb2 import (
    ExportTraceServiceRequest,
)

from xotel.config import Config, load_config
from xotel.errors import (
    ConfigError,
    ErrorCode,
    error_exit,
    handle_exception,
    is_verbose,
    set_verbose,
)
from xotel.otlp.translate import translate_trace
from xotel.otlp.uploader import SpanUploader
from xotel.pipeline.coordinator import Pipeline
from xotel.pipeline.scheduler import PollScheduler
from xotel.preflight import run_preflight
from xotel.xray.batch_get import BatchTraceFetcher, TraceDocument, create_xray_client
from xotel.xray.summaries import TraceSummaryCollector

logger = logging.getLogger("xotel")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(debug: bool) -> None:
    """Set the root log format and level; keep AWS SDK chatter at WARNING."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=LOG_FORMAT,
        force=True,
    )
    for noisy in ("botocore", "boto3", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _load_config_or_exit(args: argparse.Namespace) -> Config:
    overrides = {"debug": True} if getattr(args, "debug", False) else {}
    try:
        return load_config(env_file=args.env_file, cli_overrides=overrides)
    except ConfigError as e:
        handle_exception(e, ErrorCode.E001)
        raise SystemExit(1)


def _cmd_run(args: argparse.Namespace) -> int:
    config = _load_config_or_exit(args)
    configure_logging(config.debug)
    logger.info("Starting xotel (%s)", ", ".join(f"{k}={v}" for k, v in config.to_dict().items()))

    xray = create_xray_client(config.aws_region)
    uploader = SpanUploader(
        endpoint=config.otlp_endpoint,
        timeout_seconds=config.export_timeout.total_seconds(),
    )

    if not args.skip_preflight:
        preflight = run_preflight(config, xray, uploader)
        if not preflight.all_passed:
            preflight.print_summary()
            uploader.close()
            names = {c.name for c in preflight.failed()}
            code = ErrorCode.E004 if names == {"otlp_sink"} else ErrorCode.E003
            error_exit(code, ", ".join(sorted(names)))

    pipeline = Pipeline(
        collector=TraceSummaryCollector(xray),
        fetcher=BatchTraceFetcher(xray),
        uploader=uploader,
        require_origin=config.require_origin,
        report_interval_seconds=config.report_interval.total_seconds(),
    )
    scheduler = PollScheduler(
        run_pass=pipeline.run_pass,
        max_look_back=config.max_look_back,
        min_look_back=config.min_look_back,
        stop_event=pipeline.stop_event,
    )

    def _on_sigterm(signum, frame):
        logger.info("Received signal %d", signum)
        pipeline.stop_event.set()

    signal.signal(signal.SIGTERM, _on_sigterm)

    pipeline.start()
    try:
        scheduler.run()
    finally:
        logger.info("Stopping xotel")
        pipeline.stop()
        uploader.close()
    return 0


def _cmd_check(args: argparse.Namespace) -> int:
    config = _load_config_or_exit(args)
    configure_logging(config.debug)

    uploader = SpanUploader(
        endpoint=config.otlp_endpoint,
        timeout_seconds=config.export_timeout.total_seconds(),
    )
    try:
        result = run_preflight(config, create_xray_client(config.aws_region), uploader)
    finally:
        uploader.close()

    result.print_summary(file=sys.stdout)
    return 0 if result.all_passed else 1


def load_batch_get_traces_file(path: Path) -> list[TraceDocument]:
    """Load a saved ``aws xray batch-get-traces`` JSON response."""
    data = json.loads(path.read_text(encoding="utf-8"))
    traces = data.get("Traces", []) if isinstance(data, dict) else data
    return [TraceDocument.from_dict(t) for t in traces]


def _cmd_translate(args: argparse.Namespace) -> int:
    """Offline: translate a BatchGetTraces response file to OTLP/JSON."""
    configure_logging(args.debug)

    in_path = Path(args.input)
    if not in_path.exists():
        error_exit(ErrorCode.E005, str(in_path))

    request = ExportTraceServiceRequest()
    failures = 0
    for trace in load_batch_get_traces_file(in_path):
        try:
            request.resource_spans.extend(
                translate_trace(trace, require_origin=not args.keep_originless)
            )
        except Exception as e:
            failures += 1
            logger.error("skipping trace %s: %s", trace.id, e)

    output = json_format.MessageToJson(request, indent=2)
    if args.out:
        Path(args.out).write_text(output + "\n", encoding="utf-8")
        print(f"Wrote {len(request.resource_spans)} resource span groups to {args.out}", file=sys.stderr)
    else:
        print(output)
    return 1 if failures else 0


def main(argv: list[str] | None = None) -> None:
    p = argparse.ArgumentParser(
        prog="xotel",
        description="Forward AWS X-Ray traces to an OpenTelemetry collector",
    )
    p.add_argument(
        "--verbose",
        action="store_true",
        help="Print full tracebacks on errors",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    # run
    p_run = sub.add_parser("run", help="Poll X-Ray and export to OTLP until interrupted")
    p_run.add_argument(
        "--env-file",
        dest="env_file",
        help="Path to .env file (default: nearest .env)",
    )
    p_run.add_argument("--debug", action="store_true", help="Debug logging (same as XOTEL_DEBUG=true)")
    p_run.add_argument(
        "--skip-preflight",
        action="store_true",
        dest="skip_preflight",
        help="Skip credential and collector checks (not recommended)",
    )
    p_run.set_defaults(func=_cmd_run)

    # check
    p_chk = sub.add_parser("check", help="Check AWS credentials, X-Ray access and the collector")
    p_chk.add_argument(
        "--env-file",
        dest="env_file",
        help="Path to .env file (default: nearest .env)",
    )
    p_chk.add_argument("--debug", action="store_true", help="Debug logging")
    p_chk.set_defaults(func=_cmd_check)

    # translate (offline)
    p_tr = sub.add_parser(
        "translate",
        help="Offline: translate a saved batch-get-traces response to OTLP/JSON",
    )
    p_tr.add_argument("--input", required=True, help="Path to a BatchGetTraces JSON file")
    p_tr.add_argument("--out", help="Output file (default: stdout)")
    p_tr.add_argument(
        "--keep-originless",
        action="store_true",
        dest="keep_originless",
        help="Keep root segments without an origin (service name from segment name)",
    )
    p_tr.add_argument("--debug", action="store_true", help="Debug logging")
    p_tr.set_defaults(func=_cmd_translate)

    args = p.parse_args(argv)
    set_verbose(args.verbose)

    try:
        rc = args.func(args)
        raise SystemExit(rc)
    except SystemExit:
        raise
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        raise SystemExit(130)
    except Exception as e:
        if is_verbose():
            import traceback
            traceback.print_exc()
        else:
            print(f"Error: {e}", file=sys.stderr)
            print("Run with --verbose for full traceback", file=sys.stderr)
        raise SystemExit(1)
