import os

import pytest

from mnet.local.telemetry import HEALTH_STATES, build_health_report


@pytest.mark.parametrize("status", HEALTH_STATES)
def test_report_shape(status):
    report = build_health_report(status)

    assert report["status"] == status
    assert report["uptime"] >= 0
    assert report["memoryUsage"]["rss"] > 0
    assert "managedRss" not in report["memoryUsage"]


def test_managed_process_memory_is_reported():
    report = build_health_report("healthy", managed_pid=os.getpid())
    assert report["memoryUsage"]["managedRss"] > 0


def test_vanished_managed_process_is_skipped():
    report = build_health_report("degraded", managed_pid=2 ** 31 - 2)
    assert "managedRss" not in report["memoryUsage"]


def test_unknown_status_is_rejected():
    with pytest.raises(ValueError):
        build_health_report("sleepy")
