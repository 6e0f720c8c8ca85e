"""Tests for local topology discovery."""

import os
import tempfile

from cephwatch import topology


def _touch_all(directory, names):
    for name in names:
        open(os.path.join(directory, name), "w").close()


def test_discovers_numeric_osd_sockets_only():
    with tempfile.TemporaryDirectory() as run_dir:
        _touch_all(run_dir, ["ceph-osd.1.asok", "ceph-osd.7.asok", "ceph-mon.host.asok", "ceph-osd.x.asok"])
        assert topology.discover_storage_daemons(run_dir) == frozenset({1, 7})


def test_missing_run_dir_means_no_osds():
    assert topology.discover_storage_daemons("/nonexistent/cephwatch/run") == frozenset()


def test_unrelated_files_are_ignored():
    with tempfile.TemporaryDirectory() as run_dir:
        _touch_all(run_dir, ["README", "ceph-osd.asok", "ceph-osd.3.asok"])
        assert topology.discover_storage_daemons(run_dir) == frozenset({3})


def test_monitor_role_needs_an_instance_directory():
    with tempfile.TemporaryDirectory() as mon_dir:
        assert topology.detect_monitor_role(mon_dir) is False

        _touch_all(mon_dir, ["not-a-dir"])
        assert topology.detect_monitor_role(mon_dir) is False

        os.mkdir(os.path.join(mon_dir, "ceph-host1"))
        assert topology.detect_monitor_role(mon_dir) is True


def test_monitor_role_missing_dir_is_false():
    assert topology.detect_monitor_role("/nonexistent/cephwatch/mon") is False


def test_parse_socket_name():
    name = topology.parse_socket_name("ceph-mon.ip-172-31-22-89.asok")
    assert name is not None
    assert name.cluster == "ceph"
    assert name.role == "mon"
    assert name.ident == "ip-172-31-22-89"
    assert name.ext == "asok"

    assert topology.parse_socket_name("garbage") is None


def test_find_monitor_socket():
    with tempfile.TemporaryDirectory() as run_dir:
        assert topology.find_monitor_socket(run_dir) is None
        _touch_all(run_dir, ["ceph-osd.0.asok", "ceph-mon.node1.asok"])
        assert topology.find_monitor_socket(run_dir) == os.path.join(run_dir, "ceph-mon.node1.asok")


def test_osd_paths():
    assert topology.osd_socket_path(4, "/var/run/ceph") == "/var/run/ceph/ceph-osd.4.asok"
    assert topology.osd_data_dir(4, "/var/lib/ceph/osd") == "/var/lib/ceph/osd/ceph-4"


def test_non_ascii_digits_are_not_osd_ids():
    with tempfile.TemporaryDirectory() as run_dir:
        _touch_all(run_dir, ["ceph-osd.1.asok", "ceph-osd.².asok", "ceph-osd.٣.asok"])
        assert topology.discover_storage_daemons(run_dir) == frozenset({1})


def test_discovery_is_limited_to_one_cluster():
    with tempfile.TemporaryDirectory() as run_dir:
        _touch_all(run_dir, ["backup-osd.3.asok", "backup-mon.node1.asok", "ceph-osd.1.asok"])
        assert topology.discover_storage_daemons(run_dir) == frozenset({1})
        assert topology.discover_storage_daemons(run_dir, cluster="backup") == frozenset({3})
        assert topology.find_monitor_socket(run_dir) is None
        assert topology.find_monitor_socket(run_dir, cluster="backup") == os.path.join(
            run_dir, "backup-mon.node1.asok")
        assert topology.osd_socket_path(3, run_dir, cluster="backup") == os.path.join(
            run_dir, "backup-osd.3.asok")
