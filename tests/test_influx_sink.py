"""
Tests for the InfluxDB sink, against the fake write endpoint running in
a thread.
"""

import threading
import time
from datetime import datetime, timezone
from http.server import HTTPServer

from cephwatch.config import InfluxConfig
from cephwatch.measurement import Measurement, MeasurementKind, WireHeader
from cephwatch.mock import fake_influx_server
from cephwatch.mock.fake_influx_server import _WriteHandler
from cephwatch.sinks.influx import InfluxSink, Record, build_record, extract_fields, OSD_FIELDS

TS = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def _start_test_server(port: int) -> HTTPServer:
    fake_influx_server.reset()
    server = HTTPServer(("127.0.0.1", port), _WriteHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    time.sleep(0.2)  # let it bind
    return server


def _osd_measurement(**payload):
    return Measurement(
        MeasurementKind.STORAGE_DAEMON_STATUS,
        {"osd": payload},
        entity=Measurement.storage_daemon(1, {}, drive_name="/dev/sdb1").entity,
        timestamp=TS,
    )


def test_osd_record_line():
    record = build_record(_osd_measurement(stat_bytes=100, stat_bytes_used=40), "node1")
    assert record.to_line() == (
        "osd_daemon,drive_name=/dev/sdb1,hostname=node1,osd_num=1,type=osd "
        f"stat_bytes=100i,stat_bytes_used=40i {int(TS.timestamp())}"
    )


def test_missing_fields_are_omitted_not_zeroed():
    fields = extract_fields({"osd": {"stat_bytes": 5, "op_latency": {"avgcount": 1}}}, OSD_FIELDS)
    assert fields == {"stat_bytes": 5}


def test_nothing_to_send_gives_no_record():
    assert build_record(_osd_measurement(), "node1") is None
    assert build_record(Measurement.diagnostic("hi"), "node1") is None


def test_op_record_tags_addresses():
    header = WireHeader("10.0.0.5", 40000, "10.0.0.11", 6800)
    m = Measurement.wire_operation({"size": 4096, "object": "rbd data", "flags": 36}, header)
    line = build_record(m, "node1").to_line()
    assert line.startswith("osd_op,dst=10.0.0.11:6800,hostname=node1,src=10.0.0.5:40000 ")
    assert 'object="rbd data"' in line
    assert "size=4096i" in line


def test_smart_record_fields():
    m = Measurement.disk_health(2, "/dev/sdd", {"smart_status": False, "temperature_mkelvin": 308150})
    line = build_record(m, "node1").to_line()
    assert line.startswith("smart,disk=/dev/sdd,hostname=node1,osd_num=2 ")
    assert "smart_status=false" in line.lower()
    assert "temperature_mkelvin=308150i" in line


def test_escaping():
    record = Record("m", 1, tags={"host": "a b,c"}, fields={"msg": 'say "hi"', "x": 1.5})
    line = record.to_line()
    assert line.startswith("m,host=a\\ b\\,c ")
    assert 'msg="say \\"hi\\""' in line
    assert line.endswith(" 1")


def test_object_name_with_newline_stays_on_one_line():
    header = WireHeader("10.0.0.5", 40000, "10.0.0.11", 6800)
    m = Measurement.wire_operation({"size": 1, "object": "evil\nosd_op size=9i"}, header)
    line = build_record(m, "node1").to_line()
    assert "\n" not in line
    assert line.endswith(f",size=1i {int(m.timestamp.timestamp())}")


def test_non_finite_floats_are_left_out():
    record = build_record(_osd_measurement(
        stat_bytes=7,
        op_latency={"avgcount": 2, "sum": float("nan")},
        op_r_latency={"avgcount": 2, "sum": float("inf")},
    ), "node1")
    assert "nan" not in record.to_line().lower()
    assert record.fields == {"stat_bytes": 7}


def test_sink_posts_line_protocol_with_auth():
    server = _start_test_server(19886)
    try:
        config = InfluxConfig(host="127.0.0.1", port=19886, user="ceph", password="secret")
        sink = InfluxSink(config, hostname="node1")

        assert sink.write(_osd_measurement(stat_bytes=100, stat_bytes_used=40))
        assert sink.sent == 1
        assert fake_influx_server.received == [
            "osd_daemon,drive_name=/dev/sdb1,hostname=node1,osd_num=1,type=osd "
            f"stat_bytes=100i,stat_bytes_used=40i {int(TS.timestamp())}"
        ]
        assert fake_influx_server.received_auth == [("ceph", "secret")]
        sink.close()
    finally:
        server.shutdown()


def test_sink_counts_rejected_writes():
    server = _start_test_server(19887)
    try:
        fake_influx_server.write_status = 500
        sink = InfluxSink(InfluxConfig(host="127.0.0.1", port=19887), hostname="node1")
        assert sink.write(_osd_measurement(stat_bytes=1)) is False
        assert sink.dropped == 1
        assert fake_influx_server.received == []
        sink.close()
    finally:
        fake_influx_server.reset()
        server.shutdown()


def test_sink_unreachable_endpoint_is_dropped():
    # nothing listens here
    sink = InfluxSink(InfluxConfig(host="127.0.0.1", port=19899, timeout=0.5), hostname="node1")
    assert sink.write(_osd_measurement(stat_bytes=1)) is False
    assert sink.dropped == 1
    sink.close()


def test_sink_retries_when_configured():
    sink = InfluxSink(InfluxConfig(host="127.0.0.1", port=19899, timeout=0.5, retries=2),
                      hostname="node1", backoff_seconds=0.01)
    assert sink.write(_osd_measurement(stat_bytes=1)) is False
    assert sink.dropped == 1
    sink.close()


def test_sink_skips_empty_records():
    sink = InfluxSink(InfluxConfig(host="127.0.0.1", port=19899), hostname="node1")
    assert sink.write(_osd_measurement()) is True
    assert sink.skipped == 1
    assert not sink.accepts(MeasurementKind.DIAGNOSTIC)
    sink.close()


def test_sink_does_not_retry_once_stopping():
    stop = threading.Event()
    stop.set()
    sink = InfluxSink(InfluxConfig(host="127.0.0.1", port=19899, timeout=0.5, retries=3),
                      hostname="node1", backoff_seconds=5.0, stop=stop)
    started = time.monotonic()
    assert sink.write(_osd_measurement(stat_bytes=1)) is False
    assert time.monotonic() - started < 2.0
    assert sink.dropped == 1
    sink.close()
