"""Tests for the segment attribute mapper."""
from __future__ import annotations

from typing import Any

from opentelemetry.proto.common.v1.common_pb2 import KeyValue
from opentelemetry.proto.trace.v1.trace_pb2 import Status

from xotel.otlp.attributes import (
    AttributeBuilder,
    segment_attributes,
    segment_events,
    segment_status,
)
from xotel.xray.segment_model import Segment


def _value(kv: KeyValue) -> Any:
    which = kv.value.WhichOneof("value")
    if which == "array_value":
        return [v.string_value for v in kv.value.array_value.values]
    return getattr(kv.value, which)


def _pairs(attrs: list[KeyValue]) -> list[tuple[str, Any]]:
    return [(kv.key, _value(kv)) for kv in attrs]


def _as_dict(attrs: list[KeyValue]) -> dict[str, Any]:
    return dict(_pairs(attrs))


def _segment(**fields: Any) -> Segment:
    data = {"id": "abcd000000000001", "start_time": 1.0, "end_time": 2.0}
    data.update(fields)
    return Segment.from_dict(data)


class TestAttributeBuilder:
    def test_skips_none_values(self) -> None:
        attrs = (
            AttributeBuilder()
            .add_str("a", None)
            .add_int("b", None)
            .add_bool("c", None)
            .add_str_list("d", None)
        )
        assert attrs.build() == []

    def test_keeps_duplicates_in_order(self) -> None:
        attrs = AttributeBuilder().add_bool("error", True).add_str("x", "1").add_bool("error", True)
        assert _pairs(attrs.build()) == [("error", True), ("x", "1"), ("error", True)]

    def test_json_serialization(self) -> None:
        attrs = AttributeBuilder().add_json("k", {"a": [1, 2]}).add_json("n", 5)
        assert _pairs(attrs.build()) == [("k", '{"a": [1, 2]}'), ("n", "5")]


class TestSegmentAttributes:
    """Tests for segment_attributes."""

    def test_always_has_cloud_provider(self) -> None:
        attrs = segment_attributes(_segment())
        assert _pairs(attrs) == [("cloud.provider", "aws")]

    def test_lambda_origin_sets_platform(self) -> None:
        attrs = _as_dict(segment_attributes(_segment(origin="AWS::Lambda::Function")))
        assert attrs["cloud.platform"] == "aws_lambda"

    def test_other_origins_have_no_platform(self) -> None:
        for origin in ("AWS::EC2::Instance", "AWS::ECS::Container", "AWS::Lambda"):
            attrs = _as_dict(segment_attributes(_segment(origin=origin)))
            assert "cloud.platform" not in attrs

    def test_user_and_resource_arn(self) -> None:
        attrs = _as_dict(
            segment_attributes(
                _segment(user="alice", resource_arn="arn:aws:lambda:us-east-1:123:function:f")
            )
        )
        assert attrs["aws.user"] == "alice"
        assert attrs["aws.arn"] == "arn:aws:lambda:us-east-1:123:function:f"

    def test_http(self) -> None:
        attrs = _as_dict(
            segment_attributes(
                _segment(
                    http={
                        "request": {"url": "https://example.com/"},
                        "response": {"status": 503, "content_length": 42},
                    }
                )
            )
        )
        assert attrs["http.url"] == "https://example.com/"
        assert attrs["http.status_code"] == 503
        assert attrs["http.response_content_length"] == 42

    def test_error_flag(self) -> None:
        attrs = _pairs(segment_attributes(_segment(error=True)))
        assert ("error", True) in attrs

    def test_fault_flag_maps_to_error_key(self) -> None:
        attrs = _pairs(segment_attributes(_segment(fault=True)))
        assert attrs.count(("error", True)) == 1

    def test_fault_and_error_add_the_key_twice(self) -> None:
        attrs = _pairs(segment_attributes(_segment(fault=True, error=True)))
        assert attrs.count(("error", True)) == 2

    def test_false_flags_are_omitted(self) -> None:
        attrs = _as_dict(segment_attributes(_segment(fault=False, error=False, throttle=False)))
        assert "error" not in attrs
        assert "aws.throttle" not in attrs

    def test_throttle(self) -> None:
        attrs = _as_dict(segment_attributes(_segment(throttle=True)))
        assert attrs["aws.throttle"] is True

    def test_cause(self) -> None:
        attrs = _as_dict(
            segment_attributes(
                _segment(
                    cause={
                        "message": "it broke",
                        "working_directory": "/var/task",
                        "paths": ["/var/task/handler.py", "/var/task/lib.py"],
                    }
                )
            )
        )
        assert attrs["aws.xray.cause.exception.message"] == "it broke"
        assert attrs["aws.xray.cause.working-directory"] == "/var/task"
        assert attrs["exception.type"] == ["/var/task/handler.py", "/var/task/lib.py"]

    def test_aws_block(self) -> None:
        attrs = _as_dict(
            segment_attributes(
                _segment(
                    aws={
                        "account_id": "123456789012",
                        "region": "eu-west-1",
                        "operation": "SendMessage",
                        "request_id": "req-1",
                        "queue_url": "https://sqs.eu-west-1.amazonaws.com/123/q",
                        "table_name": "orders",
                        "retries": 2,
                        "resource_names": ["q"],
                    }
                )
            )
        )
        assert attrs["cloud.account.id"] == "123456789012"
        assert attrs["cloud.region"] == "eu-west-1"
        assert attrs["aws.account.id"] == "123456789012"
        assert attrs["aws.remote-region"] == "eu-west-1"
        assert attrs["aws.operation"] == "SendMessage"
        assert attrs["aws.request.id"] == "req-1"
        assert attrs["aws.queue.url"] == "https://sqs.eu-west-1.amazonaws.com/123/q"
        assert attrs["aws.table.name"] == "orders"
        assert attrs["aws.retries"] == 2
        assert attrs["aws.resource-names"] == ["q"]

    def test_platform_blocks(self) -> None:
        attrs = _as_dict(
            segment_attributes(
                _segment(
                    aws={
                        "elastic_beanstalk": {
                            "environment_name": "prod",
                            "deployment_id": 3,
                            "version_label": "v3",
                        },
                        "ecs": {
                            "container": "web",
                            "container_id": "c-1",
                            "task_arn": "arn:task",
                            "task_family": "fam",
                            "cluster_arn": "arn:cluster",
                            "container_arn": "arn:container",
                            "availability_zone": "us-east-1b",
                            "launch_type": "EC2",
                        },
                        "eks": {"cluster_name": "main", "container_id": "k-1", "pod": "web-1"},
                    }
                )
            )
        )
        assert attrs["aws.beanstalk.environment"] == "prod"
        assert attrs["aws.beanstalk.deployment.id"] == 3
        assert attrs["aws.beanstalk.version"] == "v3"
        assert attrs["aws.ecs.container.name"] == "web"
        assert attrs["aws.ecs.container.id"] == "c-1"
        assert attrs["aws.ecs.task.arn"] == "arn:task"
        assert attrs["aws.ecs.task.family"] == "fam"
        assert attrs["aws.ecs.cluster.arn"] == "arn:cluster"
        assert attrs["aws.ecs.container.arn"] == "arn:container"
        assert attrs["aws.availability-zone"] == "us-east-1b"
        assert attrs["aws.ecs.launch-type"] == "EC2"
        assert attrs["aws.eks.cluster.name"] == "main"
        assert attrs["aws.eks.container.id"] == "k-1"
        assert attrs["aws.eks.pod"] == "web-1"

    def test_ec2_block(self) -> None:
        attrs = _pairs(
            segment_attributes(
                _segment(
                    aws={
                        "ec2": {
                            "instance_id": "i-0abc",
                            "availability_zone": "us-east-1a",
                            "instance_size": "t3.micro",
                        }
                    }
                )
            )
        )
        assert ("aws.ec2.instance.id", "i-0abc") in attrs
        assert [k for k, _ in attrs].count("aws.ec2.instance.id") == 1
        assert ("aws.availability-zone", "us-east-1a") in attrs
        assert ("aws.ec2.instance.size", "t3.micro") in attrs

    def test_absent_fields_are_omitted_not_defaulted(self) -> None:
        attrs = _as_dict(segment_attributes(_segment(aws={"ecs": {"container": "web"}})))
        assert attrs["aws.ecs.container.name"] == "web"
        assert "aws.ecs.task.arn" not in attrs
        assert "cloud.account.id" not in attrs

    def test_annotations_and_metadata(self) -> None:
        attrs = _pairs(
            segment_attributes(
                _segment(
                    annotations={"customer": "acme", "count": 3, "vip": True},
                    metadata={"default": {"items": [1, 2]}},
                )
            )
        )
        assert ("customer", '"acme"') in attrs
        assert ("count", "3") in attrs
        assert ("vip", "true") in attrs
        assert ("aws.metadata.default", '{"items": [1, 2]}') in attrs

    def test_namespace_type_and_precursors(self) -> None:
        attrs = _as_dict(
            segment_attributes(
                _segment(
                    namespace="remote",
                    type="subsegment",
                    precursor_ids=["abcd000000000009"],
                )
            )
        )
        assert attrs["aws.namespace"] == "remote"
        assert attrs["aws.type"] == "subsegment"
        assert attrs["aws.precursor.ids"] == ["abcd000000000009"]


class TestSegmentStatus:
    def test_unset_by_default(self) -> None:
        assert segment_status(_segment()).code == Status.STATUS_CODE_UNSET

    def test_error(self) -> None:
        assert segment_status(_segment(error=True)).code == Status.STATUS_CODE_ERROR

    def test_fault_alone_does_not_set_error_status(self) -> None:
        assert segment_status(_segment(fault=True)).code == Status.STATUS_CODE_UNSET


class TestSegmentEvents:
    def test_no_cause_no_events(self) -> None:
        assert segment_events(_segment()) == []

    def test_one_event_per_exception(self) -> None:
        seg = _segment(
            cause={
                "exceptions": [
                    {
                        "message": "boom",
                        "type": "ValueError",
                        "remote": True,
                        "truncated": 4,
                        "skipped": 1,
                    },
                    {"message": "second"},
                ]
            }
        )
        events = segment_events(seg)

        assert len(events) == 2
        assert events[0].name == "exception"
        assert events[0].time_unix_nano == 2_000_000_000
        assert _pairs(events[0].attributes) == [
            ("aws.exception.message", "boom"),
            ("aws.exception.type", "ValueError"),
            ("aws.exception.remote", True),
            ("aws.exception.truncated", 4),
            ("aws.exception.skipped", 1),
        ]
        assert _pairs(events[1].attributes) == [("aws.exception.message", "second")]
