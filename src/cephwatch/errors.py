"""
Exception hierarchy. Everything raised on purpose by cephwatch derives
from CephwatchError so callers can tell our failures from bugs.
"""


class CephwatchError(Exception):
    pass


class ConfigError(CephwatchError):
    """Config file exists but can't be used."""


class ProbeError(CephwatchError):
    """A single entity's status query failed. Skip it for this cycle."""


class AdminSocketError(ProbeError):
    pass


class EntityAbsent(CephwatchError):
    """The entity a scanner expected isn't there any more.

    Scanners treat this as a hint that their topology snapshot is stale.
    """


class TaskExit(CephwatchError):
    """Ends the raising task for good. The supervisor won't restart it."""


class CaptureUnavailable(TaskExit):
    pass


class CaptureFilterError(TaskExit):
    pass


class DiskHealthError(CephwatchError):
    pass


class DiskUnreadable(DiskHealthError):
    """Device couldn't be opened at all -- possibly a dead drive."""


class HealthUnavailable(DiskHealthError):
    """Device opened fine but has no SMART data to give."""


class ChannelClosed(CephwatchError):
    pass
