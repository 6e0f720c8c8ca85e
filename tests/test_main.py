"""CLI tests."""

import os
import tempfile

from click.testing import CliRunner

from cephwatch import __version__
from cephwatch.main import cli


def _write_config(text):
    with tempfile.NamedTemporaryFile("w", suffix=".yaml", delete=False) as f:
        f.write(text)
        return f.name


def test_version():
    result = CliRunner().invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_check_config_prints_settings():
    path = _write_config("outputs: [stdout, influx]\ninflux: {host: 10.1.1.1, port: '8086'}\nhostname: node9\n")
    try:
        result = CliRunner().invoke(cli, ["-c", path, "check-config"])
        assert result.exit_code == 0
        assert "Config OK" in result.output
        assert "node9" in result.output
        assert "http://10.1.1.1:8086" in result.output
    finally:
        os.unlink(path)


def test_check_config_rejects_bad_yaml():
    path = _write_config("outputs: [stdout\n")
    try:
        result = CliRunner().invoke(cli, ["-c", path, "check-config"])
        assert result.exit_code == 2
    finally:
        os.unlink(path)


def test_discover_mock():
    result = CliRunner().invoke(cli, ["-c", "/nonexistent/cephwatch.yaml", "--mock", "discover"])
    assert result.exit_code == 0
    assert "mon" in result.output
    assert "osd.0" in result.output
    assert "/dev/sdb1" in result.output


def test_discover_empty_host():
    with tempfile.TemporaryDirectory() as root:
        path = _write_config(f"paths: {{mon_dir: {root}/mon, run_dir: {root}/run}}\n")
        try:
            result = CliRunner().invoke(cli, ["-c", path, "discover"])
        finally:
            os.unlink(path)
    assert result.exit_code == 0
    assert "none found" in result.output
