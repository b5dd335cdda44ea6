"""
Tests for the PowerStore collector against the fake appliance.

The fake server runs in a thread; each test tweaks what it returns and
checks what lands in the sink.
"""

import json
from datetime import datetime, timezone

import httpx
import pytest

from pstore.client import PowerStoreClient
from pstore.collector.powerstore import PowerStoreCollector
from pstore.config import ConnectionConfig
from pstore.errors import (
    ApplianceConnectionError,
    CollectionCancelled,
    DecodeError,
    QueryError,
    SessionStateError,
)
from pstore.session import SessionState
from pstore.sink import ListSink


def _record(ts, used=400, total=1000, appliance="A1"):
    return {
        "timestamp": ts,
        "appliance_id": appliance,
        "physical_total": total,
        "physical_used": used,
    }


def _started(config) -> PowerStoreCollector:
    collector = PowerStoreCollector(config)
    collector.start()
    return collector


def test_single_record_becomes_one_measurement(fake_server, config):
    fake_server.records = [_record("2024-01-01T00:00:00Z")]
    collector = _started(config)
    sink = ListSink()
    try:
        assert collector.gather(sink) == 1
    finally:
        collector.stop()

    [m] = sink.measurements
    assert m.name == "PowerStoreAppliance"
    assert m.tags == {"Appliance_ID": "A1"}
    assert m.fields == {"physical_total": 1000, "physical_used": 400}
    assert m.timestamp == datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_emits_every_record_in_response_order(fake_server, config):
    fake_server.records = [
        _record(f"2024-01-01T00:{minute:02d}:00Z", used=400 + minute)
        for minute in range(0, 60, 5)
    ]
    collector = _started(config)
    sink = ListSink()
    try:
        assert collector.gather(sink) == 12
    finally:
        collector.stop()

    used = [m.fields["physical_used"] for m in sink.measurements]
    assert used == [400 + minute for minute in range(0, 60, 5)]
    assert [m.timestamp.minute for m in sink.measurements] == list(range(0, 60, 5))


def test_invalid_timestamps_are_skipped(fake_server, config):
    fake_server.records = [
        _record("2024-01-01T00:00:00Z", used=1),
        _record("not-a-date", used=2),
        _record("2024-01-01T00:10:00Z", used=3),
        _record("", used=4),
    ]
    collector = _started(config)
    sink = ListSink()
    try:
        assert collector.gather(sink) == 2
    finally:
        collector.stop()

    assert [m.fields["physical_used"] for m in sink.measurements] == [1, 3]


def test_only_invalid_timestamp_emits_nothing(fake_server, config):
    fake_server.records = [_record("not-a-date")]
    collector = _started(config)
    sink = ListSink()
    try:
        assert collector.gather(sink) == 0
    finally:
        collector.stop()
    assert len(sink) == 0


def test_empty_report_is_not_an_error(fake_server, config):
    fake_server.records = []
    collector = _started(config)
    sink = ListSink()
    try:
        assert collector.gather(sink) == 0
    finally:
        collector.stop()


def test_repeated_gather_yields_identical_batches(fake_server, config):
    fake_server.records = [_record("2024-01-01T00:00:00Z"), _record("2024-01-01T00:05:00Z", used=450)]
    collector = _started(config)
    first, second = ListSink(), ListSink()
    try:
        collector.gather(first)
        collector.gather(second)
    finally:
        collector.stop()

    assert first.measurements == second.measurements
    assert len(first) == 2


def test_request_shape(fake_server, config):
    collector = _started(config)
    try:
        collector.gather(ListSink())
    finally:
        collector.stop()

    metrics_calls = [r for r in fake_server.requests if r["path"].endswith("/metrics/generate")]
    assert len(metrics_calls) == 1
    call = metrics_calls[0]
    assert call["method"] == "POST"
    assert call["body"] == {
        "entity": "space_metrics_by_appliance",
        "entity_id": "A1",
        "interval": "Five_Mins",
    }
    assert call["query"]["select"] == ["physical_total,physical_used,timestamp"]

    paths = [r["path"] for r in fake_server.requests]
    assert paths == ["/api/rest/login_session", "/api/rest/appliance", "/api/rest/metrics/generate"]


def test_appliance_id_is_configurable(fake_server, config):
    fake_server.records = [
        _record("2024-01-01T00:00:00Z", appliance="A1"),
        _record("2024-01-01T00:00:00Z", appliance="A2", used=900),
    ]
    collector = _started(config.with_overrides(appliance_id="A2", interval="One_Hour"))
    sink = ListSink()
    try:
        collector.gather(sink)
    finally:
        collector.stop()

    assert [m.tags["Appliance_ID"] for m in sink.measurements] == ["A2"]
    body = fake_server.requests[-1]["body"]
    assert body["entity_id"] == "A2"
    assert body["interval"] == "One_Hour"


def test_start_then_stop_then_gather_is_rejected(config):
    collector = PowerStoreCollector(config)
    collector.start()
    assert collector.session.state is SessionState.ACTIVE
    collector.stop()
    assert collector.session.state is SessionState.STOPPED

    with pytest.raises(SessionStateError):
        collector.gather(ListSink())


def test_gather_before_start_is_rejected(config):
    collector = PowerStoreCollector(config)
    with pytest.raises(SessionStateError):
        collector.gather(ListSink())


def test_stop_before_start_is_noop(config):
    collector = PowerStoreCollector(config)
    collector.stop()
    collector.stop()
    assert collector.session.state is SessionState.UNINITIALIZED


def test_restart_after_stop(fake_server, config):
    fake_server.records = [_record("2024-01-01T00:00:00Z")]
    collector = _started(config)
    collector.stop()
    collector.start()
    try:
        assert collector.gather(ListSink()) == 1
    finally:
        collector.stop()


def test_wrong_password_fails_start(config):
    collector = PowerStoreCollector(config.with_overrides(password="wrong"))
    with pytest.raises(ApplianceConnectionError):
        collector.start()
    assert collector.session.state is SessionState.UNINITIALIZED


def test_unreachable_appliance_fails_start():
    config = ConnectionConfig(url="http://127.0.0.1:1/api/rest", timeout_seconds=1.0)
    collector = PowerStoreCollector(config)
    with pytest.raises(ApplianceConnectionError) as exc_info:
        collector.start()
    assert exc_info.value.retryable


def test_metrics_http_error_is_query_error(fake_server, config):
    fake_server.metrics_status = 500
    collector = _started(config)
    sink = ListSink()
    try:
        with pytest.raises(QueryError) as exc_info:
            collector.gather(sink)
    finally:
        collector.stop()

    assert exc_info.value.status_code == 500
    assert "Metrics query failed" in str(exc_info.value)
    assert len(sink) == 0


def test_capacity_failure_aborts_cycle(fake_server, config):
    fake_server.appliance_status = 503
    collector = _started(config)
    try:
        with pytest.raises(QueryError):
            collector.gather(ListSink())
    finally:
        collector.stop()

    assert not any(r["path"].endswith("/metrics/generate") for r in fake_server.requests)


def test_malformed_body_is_decode_error(fake_server, config):
    fake_server.raw_metrics_body = b"<html>gateway error</html>"
    collector = _started(config)
    try:
        with pytest.raises(DecodeError):
            collector.gather(ListSink())
    finally:
        collector.stop()


def test_non_array_body_is_decode_error(fake_server, config):
    fake_server.raw_metrics_body = json.dumps({"timestamp": "2024-01-01T00:00:00Z"}).encode()
    collector = _started(config)
    try:
        with pytest.raises(DecodeError) as exc_info:
            collector.gather(ListSink())
    finally:
        collector.stop()
    assert not exc_info.value.retryable


def test_collector_name_and_hooks(config):
    collector = PowerStoreCollector(config)
    assert "A1" in collector.name()
    assert collector.description() == "Collect Dell EMC PowerStore metrics"
    assert "[[inputs.powerstore]]" in collector.sample_config()


# -- MockTransport based: no sockets needed --


def _mock_collector(handler, **overrides):
    config = ConnectionConfig(url="https://powerstore.test/api/rest",
                              username="admin", password="admin", **overrides)

    def factory(cfg):
        return PowerStoreClient(cfg, transport=httpx.MockTransport(handler))

    return PowerStoreCollector(config, client_factory=factory)


def _appliance_api(metrics_handler):
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/login_session"):
            return httpx.Response(200, json=[], headers={"DELL-EMC-TOKEN": "t"})
        if path.endswith("/appliance"):
            return httpx.Response(200, json=[{"id": "A1", "physical_total": 10, "physical_used": 4}])
        return metrics_handler(request)
    return handler


def test_timeout_is_retryable_query_error():
    def metrics(request):
        raise httpx.ReadTimeout("timed out", request=request)

    collector = _mock_collector(_appliance_api(metrics), timeout_seconds=0.5)
    collector.start()
    try:
        with pytest.raises(QueryError) as exc_info:
            collector.gather(ListSink())
    finally:
        collector.stop()

    assert exc_info.value.retryable
    assert "timed out" in str(exc_info.value)


def test_token_header_sent_on_metrics_request():
    seen = {}

    def metrics(request):
        seen["token"] = request.headers.get("DELL-EMC-TOKEN")
        seen["content_type"] = request.headers.get("Content-Type")
        return httpx.Response(200, json=[])

    collector = _mock_collector(_appliance_api(metrics))
    collector.start()
    try:
        collector.gather(ListSink())
    finally:
        collector.stop()

    assert seen == {"token": "t", "content_type": "application/json"}


def test_stop_during_gather_cancels_before_emitting():
    collector = None

    def metrics(request):
        # stop() lands while the metrics request is in flight
        collector.stop()
        return httpx.Response(200, json=[_record("2024-01-01T00:00:00Z")])

    collector = _mock_collector(_appliance_api(metrics))
    collector.start()
    sink = ListSink()

    with pytest.raises(CollectionCancelled):
        collector.gather(sink)

    assert len(sink) == 0
    assert collector.session.state is SessionState.STOPPED


def test_sink_mutation_does_not_leak_between_records():
    class RetainingSink:
        """Keeps references without copying."""

        def __init__(self):
            self.calls = []

        def add_fields(self, measurement, fields, tags, timestamp):
            self.calls.append((fields, tags))

    def metrics(request):
        return httpx.Response(200, json=[
            _record("2024-01-01T00:00:00Z", used=1, appliance="A1"),
            _record("2024-01-01T00:05:00Z", used=2, appliance="A1"),
        ])

    collector = _mock_collector(_appliance_api(metrics))
    collector.start()
    sink = RetainingSink()
    try:
        collector.gather(sink)
    finally:
        collector.stop()

    assert [fields["physical_used"] for fields, _ in sink.calls] == [1, 2]


def test_stop_right_after_checkpoint_is_cancellation():
    def metrics(request):
        return httpx.Response(200, json=[_record("2024-01-01T00:00:00Z")])

    collector = _mock_collector(_appliance_api(metrics))
    collector.start()

    session = collector.session
    passed = []
    real_checkpoint = session.checkpoint

    def checkpoint(scope=None):
        real_checkpoint(scope)
        passed.append(scope)
        if len(passed) == 2:
            # stop() lands between the checkpoint and the metrics request
            collector.stop()

    session.checkpoint = checkpoint
    sink = ListSink()

    with pytest.raises(CollectionCancelled):
        collector.gather(sink)

    assert len(sink) == 0
    assert collector.session.state is SessionState.STOPPED


def test_restart_during_gather_does_not_revive_old_cycle():
    collector = None

    def metrics(request):
        collector.stop()
        collector.start()
        return httpx.Response(200, json=[_record("2024-01-01T00:00:00Z")])

    collector = _mock_collector(_appliance_api(metrics))
    collector.start()
    sink = ListSink()
    try:
        with pytest.raises(CollectionCancelled):
            collector.gather(sink)
        assert len(sink) == 0
        assert collector.session.state is SessionState.ACTIVE
    finally:
        collector.stop()


def test_closed_client_raises_pstore_errors():
    def handler(request):
        return httpx.Response(200, json=[])

    config = ConnectionConfig(url="https://powerstore.test/api/rest")
    client = PowerStoreClient(config, transport=httpx.MockTransport(handler))
    client.close()

    with pytest.raises(QueryError):
        client.query("GET", "appliance")
    with pytest.raises(ApplianceConnectionError):
        client.login()
