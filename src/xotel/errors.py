"""xotel error code registry and exception taxonomy.

Provides structured error codes with helpful messages and next steps.
Each error has:
- Code: XOTEL-EXXX format
- Message: Human-readable description
- Next step: Actionable command or instruction

Runtime failures inside the pipeline are raised as ``XotelError`` subclasses,
wrapped in a ``PipelineError`` and logged by the error worker. Startup
failures go through ``error_exit``.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional
import sys


class ErrorCode(Enum):
    """xotel error codes."""

    # Startup errors (E001-E099)
    E001 = "E001"  # Invalid configuration value
    E003 = "E003"  # AWS credentials not configured
    E004 = "E004"  # OTLP sink unreachable
    E005 = "E005"  # Input file not found

    # Runtime errors (E100-E199)
    E100 = "E100"  # X-Ray API call failed
    E101 = "E101"  # OTLP export failed
    E199 = "E199"  # Unexpected failure inside a pipeline stage

    # Translation errors (E200-E299)
    E200 = "E200"  # Malformed trace or span id
    E201 = "E201"  # Segment document could not be decoded


@dataclass
class ErrorReport:
    """Structured error with code, message, and next step."""

    code: ErrorCode
    message: str
    next_step: str
    details: Optional[str] = None

    def __str__(self) -> str:
        lines = [
            f"XOTEL-{self.code.value}: {self.message}",
        ]
        if self.details:
            lines.append(f"  Details: {self.details}")
        lines.append(f"  Next step: {self.next_step}")
        return "\n".join(lines)

    def print(self, file=None) -> None:
        """Print the error to stderr (or specified file)."""
        print(str(self), file=file or sys.stderr)


# Pre-defined error templates
ERROR_TEMPLATES: dict[ErrorCode, tuple[str, str]] = {
    # (message_template, next_step)
    ErrorCode.E001: (
        "Invalid configuration: {details}",
        "Check XOTEL_* variables in the environment or .env file"
    ),
    ErrorCode.E003: (
        "AWS credentials not configured or expired",
        "Run 'aws configure' or refresh your SSO session"
    ),
    ErrorCode.E004: (
        "OTLP collector not reachable: {details}",
        "Start a collector next to xotel or set OTEL_EXPORTER_OTLP_ENDPOINT"
    ),
    ErrorCode.E005: (
        "Input file not found: {details}",
        "Check the --input path"
    ),
    ErrorCode.E100: (
        "X-Ray API call failed: {details}",
        "Check AWS credentials and xray:GetTraceSummaries/BatchGetTraces permissions"
    ),
    ErrorCode.E101: (
        "OTLP export failed: {details}",
        "Check the collector logs and OTEL_EXPORTER_OTLP_ENDPOINT"
    ),
    ErrorCode.E199: (
        "Unexpected {details}",
        "Re-run with XOTEL_DEBUG=true to log the traceback and report it"
    ),
    ErrorCode.E200: (
        "Malformed identifier: {details}",
        "The segment is skipped; inspect it with 'aws xray batch-get-traces'"
    ),
    ErrorCode.E201: (
        "Segment document could not be decoded: {details}",
        "The trace is skipped; inspect it with 'aws xray batch-get-traces'"
    ),
}


def make_error(code: ErrorCode, details: Optional[str] = None) -> ErrorReport:
    """Create an ErrorReport from a code with optional details.

    Args:
        code: The error code
        details: Optional details to include in the message

    Returns:
        ErrorReport instance ready to print or log
    """
    template = ERROR_TEMPLATES.get(code, ("Unknown error", "Run 'xotel check'"))
    message_template, next_step = template

    # Format message with details if present
    if details and "{details}" in message_template:
        message = message_template.format(details=details)
    elif details:
        message = f"{message_template}: {details}"
    else:
        message = message_template.replace(": {details}", "")

    return ErrorReport(
        code=code,
        message=message,
        next_step=next_step,
        details=details if "{details}" not in message_template else None,
    )


def error_exit(code: ErrorCode, details: Optional[str] = None, exit_code: int = 1) -> None:
    """Print an error and exit with the specified code.

    Args:
        code: The error code
        details: Optional details
        exit_code: Exit code (default: 1)
    """
    err = make_error(code, details)
    err.print()
    sys.exit(exit_code)


class XotelError(Exception):
    """Base class for errors raised by xotel."""

    code: ErrorCode = ErrorCode.E001

    def report(self) -> ErrorReport:
        return make_error(self.code, str(self))


class ConfigError(XotelError, ValueError):
    """Raised when a configuration value cannot be parsed or is inconsistent."""

    code = ErrorCode.E001


class MalformedIdentifierError(XotelError, ValueError):
    """Raised when an X-Ray trace or segment id cannot be re-encoded."""

    code = ErrorCode.E200


class MalformedTraceIdError(MalformedIdentifierError):
    pass


class MalformedSpanIdError(MalformedIdentifierError):
    pass


class SegmentDecodeError(XotelError):
    """Raised when a raw segment document is not a valid segment."""

    code = ErrorCode.E201


class BackendCallError(XotelError):
    """Raised when an X-Ray API call fails."""

    code = ErrorCode.E100

    def __init__(self, operation: str, cause: Exception):
        super().__init__(f"{operation}: {cause}")
        self.operation = operation
        self.cause = cause


class SinkDeliveryError(XotelError):
    """Raised when a resource span group cannot be exported."""

    code = ErrorCode.E101


@dataclass(frozen=True)
class PipelineError:
    """A failure reported by one pipeline stage to the shared error queue."""

    stage: str
    cause: BaseException

    def report(self) -> ErrorReport:
        if isinstance(self.cause, XotelError):
            return self.cause.report()
        return make_error(
            ErrorCode.E199,
            f"{self.stage} failure: {type(self.cause).__name__}: {self.cause}",
        )

    def __str__(self) -> str:
        report = self.report()
        return f"[{self.stage}] XOTEL-{report.code.value}: {report.message}"


# Verbose mode flag (set by CLI)
_verbose_mode: bool = False


def set_verbose(verbose: bool) -> None:
    """Set verbose mode for error output."""
    global _verbose_mode
    _verbose_mode = verbose


def is_verbose() -> bool:
    """Check if verbose mode is enabled."""
    return _verbose_mode


def handle_exception(exc: Exception, code: ErrorCode, details: Optional[str] = None) -> None:
    """Handle an exception with proper error formatting.

    In verbose mode, prints the full traceback.
    Otherwise, prints a formatted error message.

    Args:
        exc: The exception that occurred
        code: The error code to use
        details: Optional additional details
    """
    import traceback

    err = make_error(code, details or str(exc))
    err.print()

    if _verbose_mode:
        print("\n--- Full Traceback ---", file=sys.stderr)
        traceback.print_exc()
