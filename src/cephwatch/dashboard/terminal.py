"""Rich tables for the CLI: run stats, local topology and effective settings."""

from __future__ import annotations

from typing import Dict, FrozenSet, Optional

from rich.table import Table

from cephwatch.config import Settings


def _status_color(status: str) -> str:
    if status in ("running", "stopped"):
        return "green"
    elif status == "restarting":
        return "yellow"
    return "red"


def _count(value: int, bad_when_nonzero: bool = False) -> str:
    if bad_when_nonzero and value:
        return f"[red]{value}[/red]"
    return str(value)


def stats_table(stats: dict) -> Table:
    """Per-task counters and restart history, as collected by Agent.stats()."""
    table = Table(title=f"cephwatch -- {stats.get('uptime_seconds', 0):.0f}s", show_header=True, header_style="bold")
    table.add_column("Task")
    table.add_column("Status", width=10)
    table.add_column("Restarts", justify="right")
    table.add_column("Emitted", justify="right")
    table.add_column("Failures", justify="right")
    table.add_column("Last error", style="dim")

    for name, task in stats.get("tasks", {}).items():
        status = task.get("status", "?")
        color = _status_color(status)
        if name == "dispatcher":
            emitted = stats.get("dispatcher", {}).get("received", 0)
        else:
            emitted = task.get("emitted", 0)
        table.add_row(
            f"[cyan]{name}[/cyan]",
            f"[{color}]{status}[/{color}]",
            _count(task.get("restarts", 0), bad_when_nonzero=True),
            str(emitted),
            _count(task.get("failures", 0), bad_when_nonzero=True),
            task.get("last_error") or "",
        )

    for name, sink in stats.get("sinks", {}).items():
        table.add_row(
            f"[magenta]{name}[/magenta]",
            "sink",
            "",
            str(sink.get("writes", 0)),
            _count(sink.get("failures", 0), bad_when_nonzero=True),
            "",
        )

    channel = stats.get("channel", {})
    table.caption = (
        f"channel: {channel.get('sent', 0)} sent, {channel.get('dropped', 0)} dropped, "
        f"{channel.get('queued', 0)} queued"
    )
    return table


def topology_table(is_monitor: bool, osds: FrozenSet[int], mounts: Dict[int, Optional[str]]) -> Table:
    table = Table(title="Local daemons", show_header=True, header_style="bold")
    table.add_column("Daemon")
    table.add_column("Device")

    if is_monitor:
        table.add_row("[cyan]mon[/cyan]", "")
    for osd_num in sorted(osds):
        device = mounts.get(osd_num)
        table.add_row(f"[cyan]osd.{osd_num}[/cyan]", device or "[dim]unknown[/dim]")
    if not is_monitor and not osds:
        table.add_row("[dim]none found[/dim]", "")
    return table


def settings_table(settings: Settings) -> Table:
    table = Table(title=settings.config_path or "defaults", show_header=True, header_style="bold")
    table.add_column("Setting")
    table.add_column("Value")

    sinks = settings.sinks
    table.add_row("outputs", ", ".join(sinks.outputs) or "[dim]none[/dim]")
    table.add_row("hostname", sinks.hostname)
    table.add_row("cluster", settings.cluster)
    if sinks.influx is not None and sinks.enabled("influx"):
        influx = sinks.influx
        table.add_row("influx", f"{influx.base_url} db={influx.database} user={influx.user}")
        table.add_row("influx timeout / retries", f"{influx.timeout}s / {influx.retries}")
    table.add_row(
        "intervals",
        f"monitor {settings.intervals.monitor}s, osd {settings.intervals.osd}s, smart {settings.intervals.smart}s",
    )
    table.add_row("refresh_every", str(settings.refresh_every))
    table.add_row("mon_dir", settings.paths.mon_dir)
    table.add_row("run_dir", settings.paths.run_dir)
    capture = settings.capture
    if capture.enabled:
        table.add_row("capture", f"{capture.device}: {capture.filter}")
    else:
        table.add_row("capture", "[dim]disabled[/dim]")
    table.add_row("channel maxsize", str(settings.channel_maxsize) if settings.channel_maxsize else "unbounded")
    return table
