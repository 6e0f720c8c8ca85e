"""Local log sink: the measurement's payload, as JSON, through logging."""

from __future__ import annotations

import json
import logging

from cephwatch.measurement import Measurement, MeasurementKind
from cephwatch.sinks.base import Sink

log = logging.getLogger("cephwatch.output")


class LogSink(Sink):

    name = "stdout"

    def __init__(self, logger: logging.Logger = log):
        self._log = logger

    def write(self, measurement: Measurement) -> bool:
        try:
            body = json.dumps(measurement.payload, default=str, sort_keys=True)
        except (TypeError, ValueError):
            body = repr(measurement.payload)

        level = logging.DEBUG if measurement.kind is MeasurementKind.DIAGNOSTIC else logging.INFO
        entity = measurement.entity.describe()
        if entity:
            self._log.log(level, "%s [%s] %s", measurement.kind.value, entity, body)
        else:
            self._log.log(level, "%s %s", measurement.kind.value, body)
        return True
