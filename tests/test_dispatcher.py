"""Tests for the dispatcher and the local log sink."""

import logging
import threading
import time
from http.server import HTTPServer

from cephwatch.config import InfluxConfig
from cephwatch.measurement import Measurement, MeasurementKind
from cephwatch.mock import fake_influx_server
from cephwatch.mock.fake_influx_server import _WriteHandler
from cephwatch.pipeline.channel import DispatchChannel
from cephwatch.pipeline.dispatcher import Dispatcher
from cephwatch.sinks.base import Sink
from cephwatch.sinks.influx import InfluxSink
from cephwatch.sinks.log_sink import LogSink


class RecordingSink(Sink):
    name = "recording"

    def __init__(self):
        self.seen = []

    def write(self, measurement):
        self.seen.append(measurement)
        return True


class ExplodingSink(Sink):
    name = "exploding"

    def write(self, measurement):
        raise RuntimeError("disk full")


def test_end_to_end_osd_measurement_reaches_both_sinks(caplog):
    fake_influx_server.reset()
    server = HTTPServer(("127.0.0.1", 19888), _WriteHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    time.sleep(0.2)  # let it bind

    try:
        channel = DispatchChannel()
        influx = InfluxSink(InfluxConfig(host="127.0.0.1", port=19888), hostname="node1")
        dispatcher = Dispatcher(channel, [LogSink(), influx])

        channel.send(Measurement.storage_daemon(1, {"osd": {"stat_bytes": 100, "stat_bytes_used": 40}},
                                                drive_name="/dev/sdb1"))
        with caplog.at_level(logging.INFO, logger="cephwatch.output"):
            dispatcher.dispatch(channel.receive(timeout=0.1))

        assert any('"stat_bytes": 100' in r.getMessage() for r in caplog.records)
        assert len(fake_influx_server.received) == 1
        line = fake_influx_server.received[0]
        assert line.startswith("osd_daemon,drive_name=/dev/sdb1,hostname=node1,osd_num=1,type=osd ")
        assert "stat_bytes=100i,stat_bytes_used=40i" in line
        assert dispatcher.writes == {"stdout": 1, "influx": 1}
        influx.close()
    finally:
        server.shutdown()


def test_failing_sink_does_not_block_the_others():
    good = RecordingSink()
    dispatcher = Dispatcher(DispatchChannel(), [ExplodingSink(), good])

    dispatcher.dispatch(Measurement.monitor({"cluster": {"num_osd": 3}}))
    dispatcher.dispatch(Measurement.monitor({"cluster": {"num_osd": 3}}))

    assert len(good.seen) == 2
    assert dispatcher.failures["exploding"] == 2
    assert dispatcher.writes["recording"] == 2


def test_diagnostics_stay_local():
    remote = RecordingSink()
    local = RecordingSink()
    local.name = "stdout"
    dispatcher = Dispatcher(DispatchChannel(), [remote, local])

    dispatcher.dispatch(Measurement.diagnostic("started"))

    assert remote.seen == []
    assert len(local.seen) == 1
    assert dispatcher.by_kind[MeasurementKind.DIAGNOSTIC] == 1


def test_run_preserves_order_and_drains_on_stop():
    channel = DispatchChannel()
    sink = RecordingSink()
    dispatcher = Dispatcher(channel, [sink], poll_seconds=0.01)
    stop = threading.Event()

    for n in range(3):
        channel.send(Measurement.storage_daemon(n, {}))
    thread = threading.Thread(target=dispatcher.run, args=(stop,))
    thread.start()
    while len(sink.seen) < 3:
        stop.wait(0.01)
    for n in range(3, 6):
        channel.send(Measurement.storage_daemon(n, {}))
    stop.set()
    thread.join(2.0)

    assert not thread.is_alive()
    assert [m.entity.osd_num for m in sink.seen] == [0, 1, 2, 3, 4, 5]
    assert dispatcher.stats()["received"] == 6


def test_log_sink_levels(caplog):
    sink = LogSink()
    with caplog.at_level(logging.DEBUG, logger="cephwatch.output"):
        sink.write(Measurement.diagnostic("hello"))
        sink.write(Measurement.disk_health(0, "/dev/sdb", {"smart_status": True}))

    levels = [r.levelno for r in caplog.records]
    assert levels == [logging.DEBUG, logging.INFO]
    assert "osd.0 /dev/sdb" in caplog.records[1].getMessage()


class SlowSink(Sink):
    name = "slow"

    def __init__(self, delay):
        self.delay = delay
        self.seen = 0

    def write(self, measurement):
        time.sleep(self.delay)
        self.seen += 1
        return True


def test_drain_gives_up_at_the_deadline(caplog):
    channel = DispatchChannel()
    sink = SlowSink(0.1)
    dispatcher = Dispatcher(channel, [sink], poll_seconds=0.01, drain_seconds=0.25)
    for n in range(50):
        channel.send(Measurement.storage_daemon(n, {}))
    stop = threading.Event()
    stop.set()

    started = time.monotonic()
    with caplog.at_level(logging.WARNING, logger="cephwatch.pipeline.dispatcher"):
        dispatcher.run(stop)
    elapsed = time.monotonic() - started

    assert elapsed < 1.0
    assert 0 < sink.seen < 50
    assert channel.qsize() == 50 - sink.seen
    assert any("undelivered" in r.getMessage() for r in caplog.records)
