"""cephwatch - host-resident telemetry collector for Ceph nodes."""

__version__ = "0.3.0"
