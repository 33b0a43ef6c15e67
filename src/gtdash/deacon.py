"""Deacon (beads daemon) status from its lock and log files."""

from __future__ import annotations

import json
import logging
import os
import re
from collections import deque
from datetime import datetime, timezone
from pathlib import Path

from gtdash.models import DeaconStatus
from gtdash.reconciler import timestamp_key

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = "5s"
LOG_TAIL = 5

_INTERVAL = re.compile(r"interval.*?(\d+[smh])", re.IGNORECASE)
_LOG_TIME = re.compile(r"time=(\S+)")
_ERROR_LINE = re.compile(r"error|warn", re.IGNORECASE)


def pid_alive(pid: int) -> bool:
    """Signal 0 checks for existence without touching the process."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except (OSError, OverflowError):
        return False
    return True


def read_lock(lock_path: Path) -> dict | None:
    try:
        data = json.loads(lock_path.read_text())
    except FileNotFoundError:
        return None
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Unreadable daemon lock %s: %s", lock_path, e)
        return None
    return data if isinstance(data, dict) else None


def _read_log_lines(log_path: Path) -> list[str]:
    try:
        with log_path.open(errors="replace") as f:
            return [line.rstrip("\n") for line in f if line.strip()]
    except FileNotFoundError:
        return []
    except OSError as e:
        logger.warning("Unreadable daemon log %s: %s", log_path, e)
        return []


def parse_interval(lines: list[str]) -> str:
    for line in lines:
        if "Daemon started" in line and "interval" in line:
            match = _INTERVAL.search(line)
            if match:
                return match.group(1)
    return DEFAULT_INTERVAL


def parse_last_activity(lines: list[str]) -> str | None:
    if not lines:
        return None
    match = _LOG_TIME.search(lines[-1])
    return match.group(1) if match else None


def read_deacon_status(beads_path: str, now: datetime | None = None) -> DeaconStatus:
    """Assemble DeaconStatus from `<beads>/daemon.lock` and `<beads>/daemon.log`."""
    base = Path(beads_path)
    status = DeaconStatus()

    lock = read_lock(base / "daemon.lock")
    if lock is not None:
        pid = lock.get("pid")
        status.pid = pid if isinstance(pid, int) else None
        status.version = lock.get("version")
        status.started_at = lock.get("started_at")
        status.alive = status.pid is not None and pid_alive(status.pid)
        if status.alive and status.started_at:
            started = timestamp_key(status.started_at)
            if started != float("-inf"):
                now = now or datetime.now(timezone.utc)
                status.uptime_seconds = max(0, int(now.timestamp() - started))

    lines = _read_log_lines(base / "daemon.log")
    status.interval = parse_interval(lines)
    status.last_activity = parse_last_activity(lines)
    status.recent_logs = list(deque(lines, maxlen=LOG_TAIL))
    status.error_logs = list(deque((l for l in lines if _ERROR_LINE.search(l)), maxlen=LOG_TAIL))
    return status
