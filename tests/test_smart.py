"""Tests for smartctl JSON parsing."""

import pytest

from cephwatch.collector.smart import SmartctlDiskHealth, parse_smartctl
from cephwatch.errors import DiskUnreadable, HealthUnavailable

ATA_DOC = {
    "smartctl": {"exit_status": 0},
    "smart_status": {"passed": True},
    "temperature": {"current": 35},
    "power_on_time": {"hours": 100},
    "ata_smart_attributes": {
        "table": [
            {"id": 5, "name": "Reallocated_Sector_Ct", "raw": {"value": 2}},
            {"id": 9, "name": "Power_On_Hours", "raw": {"value": 100}},
            {"id": 197, "name": "Current_Pending_Sector", "raw": {"value": 3}},
        ]
    },
}


def test_ata_report():
    report = parse_smartctl(ATA_DOC, "/dev/sdb")
    assert report.healthy is True
    assert report.temperature_mkelvin == 308150
    assert report.power_on_ms == 100 * 3600 * 1000
    assert report.bad_sectors == 5


def test_failing_scsi_drive():
    doc = {
        "smartctl": {"exit_status": 4},
        "smart_status": {"passed": False},
        "scsi_grown_defect_list": 12,
    }
    report = parse_smartctl(doc, "/dev/sdc")
    assert report.healthy is False
    assert report.bad_sectors == 12
    assert report.temperature_mkelvin is None


def test_unopenable_device():
    doc = {
        "smartctl": {
            "exit_status": 2,
            "messages": [{"string": "Smartctl open device: /dev/sdz failed: No such device", "severity": "error"}],
        }
    }
    with pytest.raises(DiskUnreadable, match="No such device"):
        parse_smartctl(doc, "/dev/sdz")


def test_no_smart_status():
    with pytest.raises(HealthUnavailable):
        parse_smartctl({"smartctl": {"exit_status": 0}}, "/dev/loop0")


def test_missing_binary():
    disks = SmartctlDiskHealth(smartctl="/nonexistent/smartctl")
    assert not disks.available
    with pytest.raises(HealthUnavailable):
        disks.query("/dev/sdb")
