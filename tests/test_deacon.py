"""Tests for gtdash.deacon: lock and log file inspection."""

import json
import os
import subprocess
import sys
from datetime import datetime, timezone

from gtdash.deacon import parse_interval, parse_last_activity, pid_alive, read_deacon_status

LOG = """\
time=2026-01-12T10:00:00Z level=INFO msg="Daemon started (interval: 30s)"
time=2026-01-12T10:00:30Z level=INFO msg="sync complete"
time=2026-01-12T10:01:00Z level=WARN msg="slow export"
time=2026-01-12T10:01:30Z level=INFO msg="sync complete"
time=2026-01-12T10:02:00Z level=ERROR msg="flush failed"
time=2026-01-12T10:02:30Z level=INFO msg="sync complete"
time=2026-01-12T10:03:00Z level=INFO msg="sync complete"
"""


def _dead_pid() -> int:
    proc = subprocess.Popen([sys.executable, "-c", "pass"])
    proc.wait()
    return proc.pid


class TestPid:
    def test_self_is_alive(self):
        assert pid_alive(os.getpid())

    def test_reaped_process_is_dead(self):
        assert not pid_alive(_dead_pid())


class TestLogParsing:
    def test_interval(self):
        assert parse_interval(LOG.splitlines()) == "30s"

    def test_interval_default(self):
        assert parse_interval(["time=x msg=hello"]) == "5s"
        assert parse_interval([]) == "5s"

    def test_last_activity(self):
        assert parse_last_activity(LOG.splitlines()) == "2026-01-12T10:03:00Z"
        assert parse_last_activity(["no timestamp"]) is None
        assert parse_last_activity([]) is None


class TestReadStatus:
    """Assembled from <beads>/daemon.lock and <beads>/daemon.log."""

    def test_missing_files_give_defaults(self, tmp_path):
        status = read_deacon_status(str(tmp_path))
        assert status.alive is False
        assert status.pid is None
        assert status.interval == "5s"
        assert status.recent_logs == []
        assert status.error_logs == []

    def test_running_daemon(self, tmp_path):
        (tmp_path / "daemon.lock").write_text(json.dumps({
            "pid": os.getpid(), "version": "0.30.0", "started_at": "2026-01-12T10:00:00Z",
        }))
        (tmp_path / "daemon.log").write_text(LOG)
        now = datetime(2026, 1, 12, 11, 0, 0, tzinfo=timezone.utc)

        status = read_deacon_status(str(tmp_path), now=now)
        assert status.alive is True
        assert status.version == "0.30.0"
        assert status.uptime_seconds == 3600
        assert status.interval == "30s"
        assert status.last_activity == "2026-01-12T10:03:00Z"
        assert len(status.recent_logs) == 5
        assert status.recent_logs[-1].endswith('"sync complete"')
        assert len(status.error_logs) == 2
        assert "flush failed" in status.error_logs[-1]

    def test_stale_lock(self, tmp_path):
        (tmp_path / "daemon.lock").write_text(json.dumps({"pid": _dead_pid()}))
        status = read_deacon_status(str(tmp_path))
        assert status.pid is not None
        assert status.alive is False
        assert status.uptime_seconds is None

    def test_corrupt_lock(self, tmp_path):
        (tmp_path / "daemon.lock").write_text("{oops")
        status = read_deacon_status(str(tmp_path))
        assert status.alive is False
        assert status.pid is None
