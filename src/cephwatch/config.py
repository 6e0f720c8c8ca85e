"""
Configuration loading. One YAML file, read once at startup, turned into
frozen dataclasses that get passed into every task. Nothing re-reads it.

A missing file is fine (defaults, no outputs enabled). A file that exists
but doesn't parse raises ConfigError.
"""

from __future__ import annotations

import logging
import re
import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from cephwatch.errors import ConfigError

log = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "/etc/default/decode_ceph.yaml"

KNOWN_OUTPUTS = ("stdout", "influx")

# Grab both monitor and OSD traffic
DEFAULT_CAPTURE_FILTER = "tcp dst portrange 6789-7300"

# hostname ends up as an InfluxDB tag value; cluster prefixes socket names
_HOSTNAME_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9._-]*")
_CLUSTER_RE = re.compile(r"[A-Za-z0-9_]+")


@dataclass(frozen=True)
class InfluxConfig:
    host: str = "127.0.0.1"
    port: int = 8086
    user: str = "root"
    password: str = "root"
    database: str = "ceph"
    timeout: float = 5.0
    retries: int = 0

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"


@dataclass(frozen=True)
class SinkConfig:
    outputs: Tuple[str, ...] = ()
    influx: Optional[InfluxConfig] = None
    hostname: str = ""

    def enabled(self, output: str) -> bool:
        if output == "influx" and self.influx is None:
            return False
        return output in self.outputs


@dataclass(frozen=True)
class Intervals:
    monitor: float = 5.0
    osd: float = 5.0
    smart: float = 1800.0


@dataclass(frozen=True)
class Paths:
    mon_dir: str = "/var/lib/ceph/mon"
    run_dir: str = "/var/run/ceph"
    osd_dir: str = "/var/lib/ceph/osd"
    mounts: str = "/proc/mounts"


@dataclass(frozen=True)
class CaptureConfig:
    enabled: bool = True
    device: str = "any"
    filter: str = DEFAULT_CAPTURE_FILTER
    timeout: float = 0.1


@dataclass(frozen=True)
class Settings:
    sinks: SinkConfig = field(default_factory=SinkConfig)
    intervals: Intervals = field(default_factory=Intervals)
    paths: Paths = field(default_factory=Paths)
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    refresh_every: int = 10
    channel_maxsize: int = 0
    cluster: str = "ceph"
    config_path: str = ""


def _section(doc: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = doc.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{key}' must be a mapping, got {type(value).__name__}")
    return value


def _number(section: Dict[str, Any], key: str, default, cast=float):
    value = section.get(key, default)
    try:
        return cast(value)
    except (TypeError, ValueError):
        raise ConfigError(f"'{key}' must be a number, got {value!r}")


def _flag(section: Dict[str, Any], key: str, default: bool) -> bool:
    value = section.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"'{key}' must be true or false, got {value!r}")
    return value


def parse_config(text: str, config_path: str = "") -> Settings:
    """Build Settings from YAML text. Empty text gives the defaults."""
    try:
        doc = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigError(f"cannot load data from yaml: {e}") from e

    if doc is None:
        return Settings(
            sinks=SinkConfig(hostname=socket.gethostname()),
            config_path=config_path,
        )
    if not isinstance(doc, dict):
        raise ConfigError("top level of the config must be a mapping")

    raw_outputs = doc.get("outputs") or []
    if not isinstance(raw_outputs, list):
        raise ConfigError("'outputs' must be a list")
    outputs = tuple(str(o) for o in raw_outputs if o)
    for name in outputs:
        if name not in KNOWN_OUTPUTS:
            log.warning("Ignoring unknown output %r (known: %s)", name, ", ".join(KNOWN_OUTPUTS))
    outputs = tuple(o for o in outputs if o in KNOWN_OUTPUTS)

    influx_doc = _section(doc, "influx")
    defaults = InfluxConfig()
    influx = InfluxConfig(
        host=str(influx_doc.get("host", defaults.host)),
        # older configs quote the port
        port=_number(influx_doc, "port", defaults.port, int),
        user=str(influx_doc.get("user", defaults.user)),
        password=str(influx_doc.get("password", defaults.password)),
        database=str(influx_doc.get("database", defaults.database)),
        timeout=_number(influx_doc, "timeout", defaults.timeout),
        retries=_number(influx_doc, "retries", defaults.retries, int),
    )

    intervals_doc = _section(doc, "intervals")
    intervals = Intervals(
        monitor=_number(intervals_doc, "monitor", Intervals.monitor),
        osd=_number(intervals_doc, "osd", Intervals.osd),
        smart=_number(intervals_doc, "smart", Intervals.smart),
    )

    paths_doc = _section(doc, "paths")
    paths = Paths(**{
        name: str(paths_doc.get(name, getattr(Paths, name)))
        for name in ("mon_dir", "run_dir", "osd_dir", "mounts")
    })

    capture_doc = _section(doc, "capture")
    capture = CaptureConfig(
        enabled=_flag(capture_doc, "enabled", True),
        device=str(capture_doc.get("device", CaptureConfig.device)),
        filter=str(capture_doc.get("filter", DEFAULT_CAPTURE_FILTER)),
        timeout=_number(capture_doc, "timeout", CaptureConfig.timeout),
    )

    refresh_every = _number(doc, "refresh_every", 10, int)
    if refresh_every < 1:
        raise ConfigError("'refresh_every' must be at least 1")

    channel_doc = _section(doc, "channel")
    maxsize = _number(channel_doc, "maxsize", 0, int)

    hostname = doc.get("hostname")
    if hostname:
        hostname = str(hostname)
        if not _HOSTNAME_RE.fullmatch(hostname):
            raise ConfigError(f"'hostname' is not a plain host name: {hostname!r}")
    else:
        hostname = socket.gethostname()

    cluster = str(doc.get("cluster") or "ceph")
    if not _CLUSTER_RE.fullmatch(cluster):
        raise ConfigError(f"'cluster' must be a plain name like 'ceph', got {cluster!r}")

    return Settings(
        sinks=SinkConfig(outputs=outputs, influx=influx, hostname=hostname),
        intervals=intervals,
        paths=paths,
        capture=capture,
        refresh_every=refresh_every,
        channel_maxsize=max(0, maxsize),
        cluster=cluster,
        config_path=config_path,
    )


def load_config(path: str = DEFAULT_CONFIG_PATH) -> Settings:
    """Read the config file at `path`. Missing file -> defaults."""
    try:
        text = Path(path).read_text()
    except FileNotFoundError:
        log.info("No config at %s, using defaults", path)
        text = ""
    except OSError as e:
        raise ConfigError(f"cannot read {path}: {e}") from e

    settings = parse_config(text, config_path=path)
    log.info("Config loaded: outputs=%s", ",".join(settings.sinks.outputs) or "none")
    return settings
