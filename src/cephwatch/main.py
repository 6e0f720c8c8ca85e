"""
cephwatch entry point.

Usage:
    cephwatch                        Run the agent with /etc/default/decode_ceph.yaml
    cephwatch -c my.yaml -dd         Other config, debug logging
    cephwatch --mock -d              Simulated cluster, log output
    cephwatch discover               Show the daemons found on this host
    cephwatch check-config           Validate the config and print what it resolves to
"""

from __future__ import annotations

import logging
import tempfile

import click
from rich.console import Console

from cephwatch import __version__, topology
from cephwatch.agent import Agent
from cephwatch.config import DEFAULT_CONFIG_PATH, load_config
from cephwatch.dashboard.terminal import settings_table, stats_table, topology_table
from cephwatch.errors import ConfigError


log = logging.getLogger("cephwatch")

LOG_LEVELS = {0: logging.WARNING, 1: logging.INFO}


def _load_or_exit(path: str):
    try:
        return load_config(path)
    except ConfigError as e:
        click.echo(f"Config error: {e}", err=True)
        raise SystemExit(2)


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="cephwatch")
@click.option("-c", "--config", "config_path", default=DEFAULT_CONFIG_PATH, show_default=True,
              help="YAML config file")
@click.option("-d", "--debug", count=True, help="More logging: -d info, -dd debug")
@click.option("--mock", is_flag=True, default=False, help="Use a simulated cluster instead of local daemons")
@click.pass_context
def cli(ctx, config_path: str, debug: int, mock: bool):
    """cephwatch - telemetry collector for Ceph nodes."""
    logging.basicConfig(
        level=LOG_LEVELS.get(debug, logging.DEBUG),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["mock"] = mock

    if ctx.invoked_subcommand is None:
        settings = _load_or_exit(config_path)
        agent = Agent.from_settings(settings, mock=mock)
        log.info("cephwatch %s starting (mock=%s)", __version__, mock)
        agent.run_forever()
        Console().print(stats_table(agent.stats()))


@cli.command()
@click.pass_context
def discover(ctx):
    """Show the monitor role and OSDs found on this host."""
    settings = _load_or_exit(ctx.obj["config_path"])
    console = Console()

    if ctx.obj["mock"]:
        from cephwatch.collector.mock_collector import MockClusterProtocol
        from cephwatch.mock.generator import MockCephCluster

        cluster = MockCephCluster()
        protocol = MockClusterProtocol(cluster)
        with tempfile.TemporaryDirectory(prefix="cephwatch-mock-") as scratch:
            paths = cluster.materialize(scratch, settings.cluster)
            is_monitor = topology.detect_monitor_role(paths["mon_dir"])
            osds = topology.discover_storage_daemons(paths["run_dir"], settings.cluster)
    else:
        from cephwatch.collector.admin_socket import AdminSocketProtocol

        protocol = AdminSocketProtocol(
            run_dir=settings.paths.run_dir,
            osd_dir=settings.paths.osd_dir,
            mounts_path=settings.paths.mounts,
            cluster=settings.cluster,
        )
        is_monitor = topology.detect_monitor_role(settings.paths.mon_dir)
        osds = topology.discover_storage_daemons(settings.paths.run_dir, settings.cluster)

    mounts = {osd_num: protocol.resolve_mount_point(osd_num) for osd_num in osds}
    console.print(topology_table(is_monitor, osds, mounts))


@cli.command("check-config")
@click.pass_context
def check_config(ctx):
    """Validate the config file and print the effective settings."""
    settings = _load_or_exit(ctx.obj["config_path"])
    Console().print(settings_table(settings))
    click.echo("Config OK")


if __name__ == "__main__":
    cli()
