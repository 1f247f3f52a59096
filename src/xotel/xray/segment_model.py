"""X-Ray segment document model and decoding.

A segment document is the JSON body X-Ray stores for one unit of work. It can
nest subsegments arbitrarily deep. Every field except ``id`` is optional;
absent keys become ``None`` (or empty collections for maps and lists).

https://docs.aws.amazon.com/xray/latest/devguide/xray-api-segmentdocuments.html
"""
from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

from jsonschema import Draft202012Validator
from jsonschema.exceptions import best_match

from xotel.errors import SegmentDecodeError

SCHEMA_PATH = Path(__file__).parent / "schemas" / "segment.schema.json"


@dataclass(frozen=True)
class HTTPRequest:
    method: Optional[str] = None
    url: Optional[str] = None
    user_agent: Optional[str] = None
    client_ip: Optional[str] = None


@dataclass(frozen=True)
class HTTPResponse:
    status: Optional[int] = None
    content_length: Optional[int] = None


@dataclass(frozen=True)
class HTTPData:
    request: Optional[HTTPRequest] = None
    response: Optional[HTTPResponse] = None


@dataclass(frozen=True)
class ExceptionData:
    """One recorded exception inside a segment's ``cause``."""

    id: Optional[str] = None
    message: Optional[str] = None
    type: Optional[str] = None
    remote: Optional[bool] = None
    truncated: Optional[int] = None
    skipped: Optional[int] = None
    cause: Optional[str] = None


@dataclass(frozen=True)
class CauseData:
    """Cause of a fault or error.

    X-Ray stores either a full cause object or just the id of an exception
    recorded on another segment; the latter sets only ``exception_id``.
    """

    exception_id: Optional[str] = None
    message: Optional[str] = None
    working_directory: Optional[str] = None
    paths: Optional[list[str]] = None
    exceptions: list[ExceptionData] = field(default_factory=list)


@dataclass(frozen=True)
class BeanstalkMetadata:
    environment: Optional[str] = None
    version_label: Optional[str] = None
    deployment_id: Optional[int] = None


@dataclass(frozen=True)
class ECSMetadata:
    container_name: Optional[str] = None
    container_id: Optional[str] = None
    task_arn: Optional[str] = None
    task_family: Optional[str] = None
    cluster_arn: Optional[str] = None
    container_arn: Optional[str] = None
    availability_zone: Optional[str] = None
    launch_type: Optional[str] = None


@dataclass(frozen=True)
class EC2Metadata:
    instance_id: Optional[str] = None
    availability_zone: Optional[str] = None
    instance_size: Optional[str] = None
    ami_id: Optional[str] = None


@dataclass(frozen=True)
class EKSMetadata:
    cluster_name: Optional[str] = None
    pod: Optional[str] = None
    container_id: Optional[str] = None


@dataclass(frozen=True)
class XRayMetadata:
    sdk: Optional[str] = None
    sdk_version: Optional[str] = None


@dataclass(frozen=True)
class AWSData:
    """The ``aws`` block of a segment."""

    account_id: Optional[str] = None
    operation: Optional[str] = None
    region: Optional[str] = None
    request_id: Optional[str] = None
    queue_url: Optional[str] = None
    table_name: Optional[str] = None
    retries: Optional[int] = None
    resource_names: Optional[list[str]] = None
    elastic_beanstalk: Optional[BeanstalkMetadata] = None
    ecs: Optional[ECSMetadata] = None
    ec2: Optional[EC2Metadata] = None
    eks: Optional[EKSMetadata] = None
    xray: Optional[XRayMetadata] = None


@dataclass(frozen=True)
class Segment:
    """A decoded X-Ray segment or subsegment."""

    id: str
    trace_id: Optional[str] = None
    parent_id: Optional[str] = None
    name: Optional[str] = None

    # Timing, epoch seconds with fraction
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    in_progress: Optional[bool] = None

    origin: Optional[str] = None
    user: Optional[str] = None
    resource_arn: Optional[str] = None
    namespace: Optional[str] = None
    type: Optional[str] = None
    precursor_ids: Optional[list[str]] = None

    http: Optional[HTTPData] = None

    # Error flags
    fault: Optional[bool] = None
    error: Optional[bool] = None
    throttle: Optional[bool] = None
    cause: Optional[CauseData] = None

    annotations: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    aws: Optional[AWSData] = None

    subsegments: list[Segment] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Segment:
        """Create a Segment (and its subsegment tree) from decoded JSON."""
        start_time = data.get("start_time")
        end_time = data.get("end_time")
        return cls(
            id=data["id"],
            trace_id=data.get("trace_id"),
            parent_id=data.get("parent_id"),
            name=data.get("name"),
            start_time=float(start_time) if start_time is not None else None,
            end_time=float(end_time) if end_time is not None else None,
            in_progress=data.get("in_progress"),
            origin=data.get("origin"),
            user=data.get("user"),
            resource_arn=data.get("resource_arn"),
            namespace=data.get("namespace"),
            type=data.get("type"),
            precursor_ids=data.get("precursor_ids"),
            http=_http_from_dict(data.get("http")),
            fault=data.get("fault"),
            error=data.get("error"),
            throttle=data.get("throttle"),
            cause=_cause_from_value(data.get("cause")),
            annotations=data.get("annotations") or {},
            metadata=data.get("metadata") or {},
            aws=_aws_from_dict(data.get("aws")),
            subsegments=[cls.from_dict(sub) for sub in data.get("subsegments") or []],
        )


def _int_or_none(value: Any) -> Optional[int]:
    return int(value) if value is not None else None


def _http_from_dict(data: Optional[dict[str, Any]]) -> Optional[HTTPData]:
    if data is None:
        return None
    request = data.get("request")
    response = data.get("response")
    return HTTPData(
        request=HTTPRequest(
            method=request.get("method"),
            url=request.get("url"),
            user_agent=request.get("user_agent"),
            client_ip=request.get("client_ip"),
        )
        if request is not None
        else None,
        response=HTTPResponse(
            status=_int_or_none(response.get("status")),
            content_length=_int_or_none(response.get("content_length")),
        )
        if response is not None
        else None,
    )


def _cause_from_value(value: Any) -> Optional[CauseData]:
    if value is None:
        return None
    if isinstance(value, str):
        return CauseData(exception_id=value)
    return CauseData(
        message=value.get("message"),
        working_directory=value.get("working_directory"),
        paths=value.get("paths"),
        exceptions=[
            ExceptionData(
                id=ex.get("id"),
                message=ex.get("message"),
                type=ex.get("type"),
                remote=ex.get("remote"),
                truncated=_int_or_none(ex.get("truncated")),
                skipped=_int_or_none(ex.get("skipped")),
                cause=ex.get("cause"),
            )
            for ex in value.get("exceptions") or []
        ],
    )


def _aws_from_dict(data: Optional[dict[str, Any]]) -> Optional[AWSData]:
    if data is None:
        return None

    beanstalk = data.get("elastic_beanstalk")
    ecs = data.get("ecs")
    ec2 = data.get("ec2")
    eks = data.get("eks")
    xray = data.get("xray")

    return AWSData(
        account_id=data.get("account_id"),
        operation=data.get("operation"),
        region=data.get("region"),
        request_id=data.get("request_id"),
        queue_url=data.get("queue_url"),
        table_name=data.get("table_name"),
        retries=_int_or_none(data.get("retries")),
        resource_names=data.get("resource_names"),
        elastic_beanstalk=BeanstalkMetadata(
            environment=beanstalk.get("environment_name"),
            version_label=beanstalk.get("version_label"),
            deployment_id=_int_or_none(beanstalk.get("deployment_id")),
        )
        if beanstalk is not None
        else None,
        ecs=ECSMetadata(
            container_name=ecs.get("container"),
            container_id=ecs.get("container_id"),
            task_arn=ecs.get("task_arn"),
            task_family=ecs.get("task_family"),
            cluster_arn=ecs.get("cluster_arn"),
            container_arn=ecs.get("container_arn"),
            availability_zone=ecs.get("availability_zone"),
            launch_type=ecs.get("launch_type"),
        )
        if ecs is not None
        else None,
        ec2=EC2Metadata(
            instance_id=ec2.get("instance_id"),
            availability_zone=ec2.get("availability_zone"),
            instance_size=ec2.get("instance_size"),
            ami_id=ec2.get("ami_id"),
        )
        if ec2 is not None
        else None,
        eks=EKSMetadata(
            cluster_name=eks.get("cluster_name"),
            pod=eks.get("pod"),
            container_id=eks.get("container_id"),
        )
        if eks is not None
        else None,
        xray=XRayMetadata(
            sdk=xray.get("sdk"),
            sdk_version=xray.get("sdk_version"),
        )
        if xray is not None
        else None,
    )


def _finite_float(text: str) -> float:
    value = float(text)
    if not math.isfinite(value):
        raise ValueError(f"number {text} is out of range")
    return value


def _reject_constant(name: str) -> float:
    raise ValueError(f"non-finite number {name} is not allowed")


@lru_cache(maxsize=1)
def _validator() -> Draft202012Validator:
    schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
    return Draft202012Validator(schema)


def parse_segment_document(raw: str) -> Segment:
    """Decode a raw segment document string into a Segment tree.

    Raises:
        SegmentDecodeError: If the document is not JSON or does not match
            the segment schema.
    """
    try:
        data = json.loads(raw, parse_float=_finite_float, parse_constant=_reject_constant)
    except (ValueError, TypeError) as e:
        raise SegmentDecodeError(f"unable to parse segment document: {e}") from e

    error = best_match(_validator().iter_errors(data))
    if error is not None:
        location = "/".join(str(p) for p in error.absolute_path) or "<root>"
        raise SegmentDecodeError(
            f"segment document invalid at {location}: {error.message}"
        )

    return Segment.from_dict(data)
