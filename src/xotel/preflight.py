"""Pre-flight checks run before the pipeline starts.

A failed check is a startup failure: xotel exits non-zero instead of running
a pipeline that cannot read from X-Ray or write to the collector.
"""
from __future__ import annotations

import sys
from dataclasses import dataclass, field
from typing import Any

from xotel.config import Config


@dataclass
class CheckResult:
    """Result of a single pre-flight check."""

    name: str
    passed: bool
    message: str
    fix: str | None = None
    details: str | None = None


@dataclass
class PreflightResult:
    """Result of all pre-flight checks."""

    checks: list[CheckResult] = field(default_factory=list)

    @property
    def all_passed(self) -> bool:
        """True if all checks passed."""
        return all(c.passed for c in self.checks)

    def failed(self) -> list[CheckResult]:
        return [c for c in self.checks if not c.passed]

    def print_summary(self, file=None) -> None:
        """Print check results."""
        file = file or sys.stderr
        for check in self.checks:
            icon = "ok  " if check.passed else "FAIL"
            print(f"[{icon}] {check.name}: {check.message}", file=file)
            if not check.passed:
                if check.details:
                    print(f"       Details: {check.details}", file=file)
                if check.fix:
                    print(f"       Fix: {check.fix}", file=file)


def check_aws_credentials(region: str | None = None, session: Any = None) -> CheckResult:
    """Check AWS credentials resolve and are not expired."""
    import boto3
    from botocore.exceptions import (
        BotoCoreError,
        ClientError,
        NoCredentialsError,
        TokenRetrievalError,
    )

    try:
        session = session or boto3.Session(region_name=region)
        sts = session.client("sts")
        identity = sts.get_caller_identity()
        return CheckResult(
            name="aws_credentials",
            passed=True,
            message=f"Valid ({identity['Account']})",
            details=identity.get("Arn", ""),
        )
    except NoCredentialsError:
        return CheckResult(
            name="aws_credentials",
            passed=False,
            message="No credentials configured",
            fix="aws configure  # or set AWS_PROFILE",
        )
    except TokenRetrievalError as e:
        return CheckResult(
            name="aws_credentials",
            passed=False,
            message="Token retrieval failed",
            fix="Refresh your SSO session",
            details=str(e)[:100],
        )
    except ClientError as e:
        error_code = e.response.get("Error", {}).get("Code", "")
        if error_code == "ExpiredTokenException":
            return CheckResult(
                name="aws_credentials",
                passed=False,
                message="Session token expired",
                fix="Refresh your credentials",
            )
        return CheckResult(
            name="aws_credentials",
            passed=False,
            message=f"AWS error: {error_code}",
            details=str(e)[:100],
        )
    except BotoCoreError as e:
        return CheckResult(
            name="aws_credentials",
            passed=False,
            message=f"AWS client error: {type(e).__name__}",
            details=str(e)[:100],
        )


def check_xray_access(client: Any) -> CheckResult:
    """Check the credentials may read X-Ray (GetTraceSummaries on an empty window)."""
    from datetime import datetime, timedelta, timezone

    from botocore.exceptions import BotoCoreError, ClientError

    end = datetime.now(timezone.utc)
    try:
        client.get_trace_summaries(StartTime=end - timedelta(seconds=1), EndTime=end)
    except ClientError as e:
        error_code = e.response.get("Error", {}).get("Code", "")
        return CheckResult(
            name="xray_access",
            passed=False,
            message=f"GetTraceSummaries denied: {error_code}",
            fix="Grant xray:GetTraceSummaries and xray:BatchGetTraces",
            details=str(e)[:100],
        )
    except BotoCoreError as e:
        return CheckResult(
            name="xray_access",
            passed=False,
            message=f"X-Ray unreachable: {type(e).__name__}",
            details=str(e)[:100],
        )
    return CheckResult(name="xray_access", passed=True, message="GetTraceSummaries allowed")


def check_sink(uploader: Any, timeout_seconds: float = 5.0) -> CheckResult:
    """Check the OTLP collector accepts connections."""
    if uploader.wait_ready(timeout_seconds):
        return CheckResult(
            name="otlp_sink",
            passed=True,
            message=f"Connected to {uploader.target}",
        )
    return CheckResult(
        name="otlp_sink",
        passed=False,
        message=f"No collector at {uploader.target}",
        fix="Start an OTLP collector or set OTEL_EXPORTER_OTLP_ENDPOINT",
    )


def run_preflight(config: Config, xray_client: Any, uploader: Any) -> PreflightResult:
    """Run all checks; X-Ray access is only checked with valid credentials."""
    result = PreflightResult()
    creds = check_aws_credentials(config.aws_region)
    result.checks.append(creds)
    if creds.passed:
        result.checks.append(check_xray_access(xray_client))
    result.checks.append(check_sink(uploader))
    return result
