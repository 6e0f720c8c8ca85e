"""
Sink interface. A sink takes one Measurement at a time and either writes
it somewhere or quietly fails -- it must never take the dispatcher down.
"""

from abc import ABC, abstractmethod

from cephwatch.measurement import Measurement, MeasurementKind


class Sink(ABC):

    name: str = ""

    def accepts(self, kind: MeasurementKind) -> bool:
        return True

    @abstractmethod
    def write(self, measurement: Measurement) -> bool:
        """Returns False if the measurement was dropped."""
        ...

    def close(self):
        pass
