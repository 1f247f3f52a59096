"""Map X-Ray segment fields to OTLP span attributes, status and events.

Every optional field is an independent check appending to an ordered
attribute list. Keys use OpenTelemetry semantic conventions where one exists
and an ``aws.*`` key otherwise. Keys may repeat (``error`` is added once for
``fault`` and once for ``error``) and insertion order is preserved.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Optional

from opentelemetry.proto.common.v1.common_pb2 import AnyValue, ArrayValue, KeyValue
from opentelemetry.proto.trace.v1.trace_pb2 import Span as PbSpan
from opentelemetry.proto.trace.v1.trace_pb2 import Status
from opentelemetry.semconv.resource import (
    CloudPlatformValues,
    CloudProviderValues,
    ResourceAttributes,
)
from opentelemetry.semconv.trace import SpanAttributes

from xotel.codec import decode_timestamp
from xotel.xray.segment_model import Segment

logger = logging.getLogger(__name__)

ORIGIN_LAMBDA_FUNCTION = "AWS::Lambda::Function"

# Origins with a cloud.platform value that are not mapped yet:
# AWS::EC2::Instance, AWS::ECS::Container, AWS::EKS::Container,
# AWS::ElasticBeanstalk::Environment, AWS::AppRunner::Service
ORIGIN_PLATFORMS = {
    ORIGIN_LAMBDA_FUNCTION: CloudPlatformValues.AWS_LAMBDA.value,
}

EXCEPTION_EVENT_NAME = "exception"


def string_value(value: str) -> AnyValue:
    return AnyValue(string_value=value)


class AttributeBuilder:
    """Ordered list of OTLP key/values."""

    def __init__(self) -> None:
        self._items: list[KeyValue] = []

    def add_str(self, key: str, value: Optional[str]) -> AttributeBuilder:
        if value is not None:
            self._items.append(KeyValue(key=key, value=string_value(value)))
        return self

    def add_bool(self, key: str, value: Optional[bool]) -> AttributeBuilder:
        if value is not None:
            self._items.append(KeyValue(key=key, value=AnyValue(bool_value=value)))
        return self

    def add_int(self, key: str, value: Optional[int]) -> AttributeBuilder:
        if value is not None:
            self._items.append(KeyValue(key=key, value=AnyValue(int_value=value)))
        return self

    def add_str_list(self, key: str, values: Optional[list[str]]) -> AttributeBuilder:
        if values is not None:
            array = ArrayValue(values=[string_value(v) for v in values])
            self._items.append(KeyValue(key=key, value=AnyValue(array_value=array)))
        return self

    def add_json(self, key: str, value: Any) -> AttributeBuilder:
        """Add any JSON value serialized to its JSON text."""
        try:
            encoded = json.dumps(value)
        except (TypeError, ValueError) as e:
            logger.error("unable to serialize attribute %s: %s", key, e)
            encoded = str(value)
        return self.add_str(key, encoded)

    def build(self) -> list[KeyValue]:
        return list(self._items)


def segment_attributes(seg: Segment) -> list[KeyValue]:
    """Build the attribute list for one segment."""
    attrs = AttributeBuilder()
    attrs.add_str(ResourceAttributes.CLOUD_PROVIDER, CloudProviderValues.AWS.value)

    if seg.origin is not None:
        attrs.add_str(ResourceAttributes.CLOUD_PLATFORM, ORIGIN_PLATFORMS.get(seg.origin))

    attrs.add_str("aws.user", seg.user)
    attrs.add_str("aws.arn", seg.resource_arn)

    if seg.http is not None:
        if seg.http.request is not None:
            attrs.add_str(SpanAttributes.HTTP_URL, seg.http.request.url)
        if seg.http.response is not None:
            attrs.add_int(SpanAttributes.HTTP_STATUS_CODE, seg.http.response.status)
            attrs.add_int(
                SpanAttributes.HTTP_RESPONSE_CONTENT_LENGTH,
                seg.http.response.content_length,
            )

    # fault (5xx) and error (4xx) collapse onto the same key
    if seg.fault:
        attrs.add_bool("error", True)
    if seg.error:
        attrs.add_bool("error", True)
    if seg.throttle:
        attrs.add_bool("aws.throttle", True)

    if seg.cause is not None:
        attrs.add_str("aws.xray.cause.exception.message", seg.cause.message)
        attrs.add_str("aws.xray.cause.working-directory", seg.cause.working_directory)
        attrs.add_str_list(SpanAttributes.EXCEPTION_TYPE, seg.cause.paths)

    if seg.aws is not None:
        _add_aws_attributes(attrs, seg)

    for key, value in seg.annotations.items():
        attrs.add_json(key, value)
    for key, value in seg.metadata.items():
        attrs.add_json(f"aws.metadata.{key}", value)

    attrs.add_str("aws.namespace", seg.namespace)
    attrs.add_str("aws.type", seg.type)
    attrs.add_str_list("aws.precursor.ids", seg.precursor_ids)

    return attrs.build()


def _add_aws_attributes(attrs: AttributeBuilder, seg: Segment) -> None:
    aws = seg.aws
    assert aws is not None

    attrs.add_str(ResourceAttributes.CLOUD_ACCOUNT_ID, aws.account_id)
    attrs.add_str(ResourceAttributes.CLOUD_REGION, aws.region)
    attrs.add_str_list("aws.resource-names", aws.resource_names)
    attrs.add_str("aws.operation", aws.operation)
    attrs.add_str("aws.account.id", aws.account_id)
    attrs.add_str("aws.remote-region", aws.region)
    attrs.add_str("aws.request.id", aws.request_id)
    attrs.add_str("aws.queue.url", aws.queue_url)
    attrs.add_str("aws.table.name", aws.table_name)
    attrs.add_int("aws.retries", aws.retries)

    beanstalk = aws.elastic_beanstalk
    if beanstalk is not None:
        attrs.add_str("aws.beanstalk.environment", beanstalk.environment)
        attrs.add_int("aws.beanstalk.deployment.id", beanstalk.deployment_id)
        attrs.add_str("aws.beanstalk.version", beanstalk.version_label)

    ecs = aws.ecs
    if ecs is not None:
        attrs.add_str("aws.ecs.container.name", ecs.container_name)
        attrs.add_str("aws.ecs.container.id", ecs.container_id)
        attrs.add_str("aws.ecs.task.arn", ecs.task_arn)
        attrs.add_str("aws.ecs.task.family", ecs.task_family)
        attrs.add_str("aws.ecs.cluster.arn", ecs.cluster_arn)
        attrs.add_str("aws.ecs.container.arn", ecs.container_arn)
        attrs.add_str("aws.availability-zone", ecs.availability_zone)
        attrs.add_str("aws.ecs.launch-type", ecs.launch_type)

    ec2 = aws.ec2
    if ec2 is not None:
        attrs.add_str("aws.ec2.instance.id", ec2.instance_id)
        attrs.add_str("aws.availability-zone", ec2.availability_zone)
        attrs.add_str("aws.ec2.instance.size", ec2.instance_size)

    eks = aws.eks
    if eks is not None:
        attrs.add_str("aws.eks.cluster.name", eks.cluster_name)
        attrs.add_str("aws.eks.container.id", eks.container_id)
        attrs.add_str("aws.eks.pod", eks.pod)


def segment_status(seg: Segment) -> Status:
    """ERROR when the segment's error flag is set, otherwise unset."""
    if seg.error:
        return Status(code=Status.STATUS_CODE_ERROR)
    return Status()


def segment_events(seg: Segment) -> list[PbSpan.Event]:
    """One ``exception`` event per exception recorded in the segment's cause."""
    if seg.cause is None or not seg.cause.exceptions:
        return []

    time_unix_nano = decode_timestamp(seg.end_time) if seg.end_time is not None else 0
    events: list[PbSpan.Event] = []
    for ex in seg.cause.exceptions:
        attrs = (
            AttributeBuilder()
            .add_str("aws.exception.message", ex.message)
            .add_str("aws.exception.type", ex.type)
            .add_bool("aws.exception.remote", ex.remote)
            .add_int("aws.exception.truncated", ex.truncated)
            .add_int("aws.exception.skipped", ex.skipped)
        )
        events.append(
            PbSpan.Event(
                name=EXCEPTION_EVENT_NAME,
                time_unix_nano=time_unix_nano,
                attributes=attrs.build(),
            )
        )
    return events
