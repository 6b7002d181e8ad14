"""
Test MQTT Pub/Sub (Without Real Broker)
========================================

This script tests the full publish/subscribe flow without requiring a real
MQTT broker, by simulating message passing.

Usage:
    pytest test_mqtt_pubsub.py
    python test_mqtt_pubsub.py
"""

import json

import pytest

from camstream_mqtt import (
    DetectionPublisher,
    MQTTStreamConsumer,
    MessageSubscriber,
    StreamEventPublisher,
    create_logger,
)
from camstream_mqtt.schemas import (
    SCHEMA_VERSION,
    BBox,
    Classification,
    ClassificationMessage,
    Detection,
    DetectionMessage,
    ErrorKind,
    ErrorReport,
    ErrorMessage,
    QualityMessage,
    RemoteResponseMessage,
    Timestamp,
    ValidationTickMessage,
)
from camstream_vision import QualitySample


def make_publishers(logger):
    det_pub = DetectionPublisher(
        broker_host="localhost",
        topic="camstream/data/cam_01/detections",
        classification_topic="camstream/data/cam_01/classifications",
        logger=logger,
    )
    event_pub = StreamEventPublisher(
        broker_host="localhost",
        base_topic="camstream/data/cam_01",
        logger=logger,
    )
    return det_pub, event_pub


def encode(message):
    return json.dumps(message.to_dict()).encode("utf-8")


def record_publishes(publisher, sink):
    """Replace the network publish with an in-memory recorder."""
    def publish(message_data, topic=None, retain=False):
        sink.append((topic or publisher.topic, json.loads(json.dumps(message_data)), retain))
        return True
    publisher.publish = publish


def test_message_serialization():
    """Test that messages can be serialized and deserialized."""
    print("\n" + "=" * 60)
    print("TEST: Message Serialization/Deserialization")
    print("=" * 60)

    logger = create_logger("test")
    det_pub, _ = make_publishers(logger)

    det_msg = DetectionMessage(
        schema_version=SCHEMA_VERSION,
        timestamp=Timestamp.now(),
        frame_id=123,
        service_id="cam_01",
        detections=[
            Detection("person", 0.95, BBox(x=100, y=200, width=50, height=100), class_id=0),
            Detection("Class 7", 0.55, BBox(x=300, y=150, width=45, height=95), class_id=7),
        ],
    )

    json_str = json.dumps(det_pub.format_message(det_msg))
    reconstructed = DetectionMessage.from_dict(json.loads(json_str))
    print(f"✓ DetectionMessage round trip ({len(json_str)} bytes)")

    assert reconstructed.frame_id == 123
    assert reconstructed.detection_count == 2
    assert reconstructed.detections[0].bbox.to_list() == [100, 200, 50, 100]
    assert reconstructed.get_detections_by_class("person")[0].class_id == 0

    cls_msg = ClassificationMessage(
        schema_version=SCHEMA_VERSION,
        timestamp=Timestamp.now(),
        frame_id=124,
        service_id="cam_01",
        classifications=[Classification("a cat", 0.7), Classification("a dog", 0.2)],
    )
    reconstructed = ClassificationMessage.from_dict(json.loads(json.dumps(det_pub.format_message(cls_msg))))
    assert reconstructed.top.label == "a cat"
    print("✓ ClassificationMessage round trip")


def test_stream_event_topics():
    _, event_pub = make_publishers(create_logger("test"))

    assert event_pub.topic_for("validation") == "camstream/data/cam_01/validation"
    assert event_pub.topic_for("quality") == "camstream/data/cam_01/quality"
    with pytest.raises(ValueError):
        event_pub.topic_for("zones")


def test_consumer_routes_each_output_to_its_topic():
    """MQTTStreamConsumer → publishers → topics (network publish recorded)."""
    logger = create_logger("test")
    det_pub, event_pub = make_publishers(logger)
    published = []
    record_publishes(det_pub, published)
    record_publishes(event_pub, published)

    consumer = MQTTStreamConsumer("cam_01", det_pub, event_pub)
    consumer.on_validation_tick(3.5, 0.6)
    consumer.on_detections([Detection("person", 0.9, BBox(1, 2, 3, 4), class_id=0)], frame_id=9)
    consumer.on_classifications([Classification("a cat", 0.4)], frame_id=10)
    consumer.on_remote_response("a desk with a laptop")
    consumer.on_error(ErrorReport.create(ErrorKind.REMOTE_TIMEOUT, "No response", "remote"))
    consumer.on_quality_sample(QualitySample(blur_score=812.0, lighting_score=0.43))

    topics = [topic.rsplit("/", 1)[-1] for topic, _, _ in published]
    assert topics == ["validation", "detections", "classifications", "remote", "errors", "quality"]

    retained = {topic.rsplit("/", 1)[-1] for topic, _, retain in published if retain}
    assert retained == {"remote", "quality"}

    tick = ValidationTickMessage.from_dict(published[0][1])
    assert (tick.motion_score, tick.classification_score) == (3.5, 0.6)
    assert published[1][1]["detections"][0]["class"] == "person"
    assert published[1][1]["frame_id"] == 9
    assert ErrorMessage.from_dict(published[4][1]).error.kind is ErrorKind.REMOTE_TIMEOUT
    assert QualityMessage.from_dict(published[5][1]).lighting_score == 0.43
    print("✓ Consumer routed 6 outputs")


def test_publish_without_broker_fails_softly():
    det_pub, event_pub = make_publishers(create_logger("test"))
    tick = ValidationTickMessage(
        schema_version=SCHEMA_VERSION,
        timestamp=Timestamp.now(),
        service_id="cam_01",
        motion_score=0.0,
        classification_score=0.0,
    )
    assert event_pub.publish_validation_tick(tick) is False


def test_subscriber_callbacks():
    """Test subscriber callback invocation (simulated)."""
    print("\n" + "=" * 60)
    print("TEST: Subscriber Callbacks")
    print("=" * 60)

    received_detections = []
    received_classifications = []
    received_events = []

    subscriber = MessageSubscriber(
        broker_host="localhost",
        base_topic="camstream/data/cam_01",
        logger=create_logger("test"),
        on_detection=received_detections.append,
        on_classification=received_classifications.append,
        on_event=lambda kind, msg: received_events.append((kind, msg)),
    )
    print("✓ MessageSubscriber created with callbacks")

    det_msg = DetectionMessage(
        schema_version=SCHEMA_VERSION,
        timestamp=Timestamp.now(),
        frame_id=456,
        service_id="cam_01",
        detections=[Detection("person", 0.95, BBox(100, 200, 50, 100), class_id=0)],
    )
    assert subscriber.route("camstream/data/cam_01/detections", encode(det_msg))

    cls_msg = ClassificationMessage(
        schema_version=SCHEMA_VERSION,
        timestamp=Timestamp.now(),
        frame_id=457,
        service_id="cam_01",
        classifications=[Classification("a cat", 0.8)],
    )
    assert subscriber.route("camstream/data/cam_01/classifications", encode(cls_msg))

    remote_msg = RemoteResponseMessage(
        schema_version=SCHEMA_VERSION,
        timestamp=Timestamp.now(),
        service_id="cam_01",
        text="a person: 0.91",
        score=0.91,
    )
    assert subscriber.route("camstream/data/cam_01/remote", encode(remote_msg))

    error_msg = ErrorMessage(
        schema_version=SCHEMA_VERSION,
        service_id="cam_01",
        error=ErrorReport.create(ErrorKind.LOAD_FAILURE, "weights not found", "worker"),
    )
    assert subscriber.route("camstream/data/cam_01/errors", encode(error_msg))

    assert not subscriber.route("camstream/data/cam_01/zones", b"{}")
    assert not subscriber.route("camstream/data/cam_02/errors", encode(error_msg))
    assert not subscriber.route("camstream/data/cam_01/quality", b"not json")
    assert not subscriber.route("camstream/data/cam_01/detections", b'{"frame_id": 1}')

    assert [m.frame_id for m in received_detections] == [456]
    assert received_classifications[0].top.score == 0.8
    assert [kind for kind, _ in received_events] == ["remote", "errors"]
    assert received_events[0][1].score == 0.91
    assert received_events[1][1].error.kind.is_terminal

    stats = subscriber.get_stats()
    assert stats['detections_received'] == 1
    assert stats['classifications_received'] == 1
    assert stats['remote_received'] == 1
    assert stats['errors_received'] == 1
    assert stats['validation_received'] == 0
    assert stats['rejected'] == 4
    print("✓ Callbacks invoked correctly")


def test_subscriber_topics():
    subscriber = MessageSubscriber(
        broker_host="localhost",
        base_topic="camstream/data/cam_01",
        logger=create_logger("test"),
    )
    assert set(subscriber.topics) == {
        "detections", "classifications", "validation", "remote", "errors", "quality",
    }
    assert subscriber.topics["errors"] == "camstream/data/cam_01/errors"


def test_error_kinds():
    terminal = {kind for kind in ErrorKind if kind.is_terminal}
    assert terminal == {ErrorKind.SPAWN_FAILURE, ErrorKind.LOAD_FAILURE, ErrorKind.WORKER_EXITED}

    report = ErrorReport.create(ErrorKind.INFERENCE_FAILURE, "boom", "worker")
    assert ErrorReport.from_dict(json.loads(json.dumps(report.to_dict()))) == report


def main():
    """Run all tests."""
    print("\n🎸 camstream_mqtt - Pub/Sub Integration Tests")
    print("=" * 60)
    print("Testing without real MQTT broker (simulated)")
    print("=" * 60)

    try:
        test_message_serialization()
        test_stream_event_topics()
        test_consumer_routes_each_output_to_its_topic()
        test_publish_without_broker_fails_softly()
        test_subscriber_callbacks()
        test_subscriber_topics()
        test_error_kinds()

        print("\n" + "=" * 60)
        print("✅ ALL TESTS PASSED!")
        print("=" * 60)

    except AssertionError as e:
        print(f"\n❌ TEST FAILED: {e}")
        raise


if __name__ == "__main__":
    main()
