"""Tests for gtdash.invoker: real subprocesses via the Python interpreter."""

import asyncio
import os
import sys
import time

import pytest

from gtdash.classifier import NUDGE, RIG, ErrorKind
from gtdash.config import PathsConfig
from gtdash.errors import ConfigError, InvocationError
from gtdash.invoker import GtRunner, StatusCache, run_command

PY = sys.executable


def _gone(pid: int) -> bool:
    """True once `pid` no longer exists or is an unreaped zombie."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return True
    try:
        with open(f"/proc/{pid}/stat") as f:
            return f.read().rsplit(")", 1)[1].split()[0] == "Z"
    except (OSError, IndexError):
        return False


class TestRunCommand:
    """Argument-vector execution with a mandatory timeout."""

    @pytest.mark.asyncio
    async def test_captures_stdout_and_stderr(self, tmp_path):
        result = await run_command(
            [PY, "-c", "import sys; print('out'); print('err', file=sys.stderr)"],
            cwd=str(tmp_path),
            timeout=10,
        )
        assert result.stdout.strip() == "out"
        assert result.stderr.strip() == "err"
        assert result.exit_code == 0

    @pytest.mark.asyncio
    async def test_arguments_are_not_shell_interpreted(self, tmp_path):
        payload = "it's; echo pwned && $(whoami)"
        result = await run_command(
            [PY, "-c", "import sys; print(sys.argv[1])", payload], cwd=str(tmp_path), timeout=10
        )
        assert result.stdout.rstrip("\n") == payload

    @pytest.mark.asyncio
    async def test_runs_in_cwd(self, tmp_path):
        result = await run_command([PY, "-c", "import os; print(os.getcwd())"], cwd=str(tmp_path), timeout=10)
        assert os.path.samefile(result.stdout.strip(), tmp_path)

    @pytest.mark.asyncio
    async def test_non_zero_exit(self, tmp_path):
        with pytest.raises(InvocationError) as exc:
            await run_command(
                [PY, "-c", "import sys; print('partial'); sys.stderr.write('boom'); sys.exit(3)"],
                cwd=str(tmp_path),
                timeout=10,
            )
        err = exc.value
        assert err.exit_code == 3
        assert err.stderr == "boom"
        assert err.stdout.strip() == "partial"
        assert err.details == "boom"
        assert not err.timed_out

    @pytest.mark.asyncio
    async def test_missing_cwd(self, tmp_path):
        with pytest.raises(ConfigError, match="Working directory does not exist"):
            await run_command([PY, "-c", "pass"], cwd=str(tmp_path / "nope"), timeout=10)

    @pytest.mark.asyncio
    async def test_missing_binary(self, tmp_path):
        with pytest.raises(InvocationError, match="Failed to start") as exc:
            await run_command(["gtdash-no-such-binary-xyz"], cwd=str(tmp_path), timeout=10)
        assert exc.value.exit_code is None

    @pytest.mark.asyncio
    async def test_timeout_is_mandatory(self, tmp_path):
        with pytest.raises(ValueError):
            await run_command([PY, "-c", "pass"], cwd=str(tmp_path), timeout=0)
        with pytest.raises(ValueError):
            await run_command([], cwd=str(tmp_path), timeout=5)


class TestTimeout:
    """A hung process is killed and reported as UNKNOWN."""

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self, tmp_path):
        pid_file = tmp_path / "pid"
        script = (
            "import os, sys, time\n"
            f"open({str(pid_file)!r}, 'w').write(str(os.getpid()))\n"
            "sys.stdout.flush()\n"
            "time.sleep(60)\n"
        )
        runner = GtRunner(PathsConfig(gt_base_path=str(tmp_path)))
        started = time.monotonic()
        with pytest.raises(InvocationError) as exc:
            await runner.run([PY, "-c", script], timeout=2.0, cwd=str(tmp_path), classifier=NUDGE)
        assert time.monotonic() - started < 10

        err = exc.value
        assert err.timed_out
        assert err.kind is ErrorKind.UNKNOWN
        assert err.exit_code is None

        assert _gone(int(pid_file.read_text()))

    @pytest.mark.asyncio
    async def test_timeout_kills_grandchildren(self, tmp_path):
        pid_file = tmp_path / "child"
        child = f"import os, time; open({str(pid_file)!r}, 'w').write(str(os.getpid())); time.sleep(60)"
        parent = (
            "import subprocess, sys, time\n"
            f"subprocess.Popen([sys.executable, '-c', {child!r}])\n"
            "time.sleep(60)\n"
        )
        with pytest.raises(InvocationError):
            await run_command([PY, "-c", parent], cwd=str(tmp_path), timeout=2.0)

        for _ in range(50):
            if pid_file.exists() and pid_file.read_text():
                break
            await asyncio.sleep(0.05)
        pid = int(pid_file.read_text())
        for _ in range(50):
            if _gone(pid):
                break
            await asyncio.sleep(0.05)
        else:
            pytest.fail("grandchild still running after timeout")


class TestGtRunner:
    @pytest.mark.asyncio
    async def test_classifies_with_call_site_table(self, tmp_path):
        runner = GtRunner(PathsConfig(gt_bin=PY, gt_base_path=str(tmp_path)))
        with pytest.raises(InvocationError) as exc:
            await runner.gt(
                "-c", "import sys; sys.stderr.write('Error: no session found for agent x'); sys.exit(1)",
                timeout=10,
                classifier=NUDGE,
            )
        assert exc.value.kind is ErrorKind.NOT_RUNNING

    @pytest.mark.asyncio
    async def test_unmatched_failure_is_unknown_with_raw_text(self, tmp_path):
        runner = GtRunner(PathsConfig(gt_bin=PY, gt_base_path=str(tmp_path)))
        with pytest.raises(InvocationError) as exc:
            await runner.gt("-c", "import sys; sys.stderr.write('weird'); sys.exit(2)", timeout=10)
        assert exc.value.kind is ErrorKind.UNKNOWN
        assert exc.value.to_dict() == {
            "error": exc.value.message,
            "kind": "unknown",
            "details": "weird",
            "exit_code": 2,
        }

    @pytest.mark.asyncio
    async def test_missing_base_path_is_not_classified(self, tmp_path):
        runner = GtRunner(PathsConfig(gt_bin=PY, gt_base_path=str(tmp_path / "gone")))
        with pytest.raises(ConfigError):
            await runner.gt("rig", "start", "gastown", timeout=10, classifier=RIG)

    @pytest.mark.asyncio
    async def test_spawn_failure_is_unknown(self, tmp_path):
        runner = GtRunner(PathsConfig(gt_bin="gtdash-not-found-xyz", gt_base_path=str(tmp_path)))
        with pytest.raises(InvocationError) as exc:
            await runner.gt("rig", "start", "gastown", timeout=10, classifier=RIG)
        assert exc.value.kind is ErrorKind.UNKNOWN

    @pytest.mark.asyncio
    async def test_command_line_is_not_classified(self, tmp_path):
        runner = GtRunner(PathsConfig(gt_bin=PY, gt_base_path=str(tmp_path)))
        with pytest.raises(InvocationError) as exc:
            await runner.gt(
                "-c", "import sys; sys.stderr.write('disk quota exceeded'); sys.exit(1)",
                "no session found",
                timeout=10,
                classifier=NUDGE,
            )
        assert exc.value.kind is ErrorKind.UNKNOWN
        assert "no session found" in exc.value.command

    @pytest.mark.asyncio
    async def test_bd_uses_bd_binary(self, tmp_path):
        runner = GtRunner(PathsConfig(bd_bin=PY, gt_base_path=str(tmp_path)))
        result = await runner.bd("-c", "print('bd')", timeout=10)
        assert result.stdout.strip() == "bd"
        assert result.argv[0] == PY


class TestStatusCache:
    """Single-flight TTL cache."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_fetch(self):
        calls = 0

        async def fetch():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.05)
            return {"n": calls}

        cache = StatusCache(fetch, ttl=5)
        results = await asyncio.gather(*(cache.get() for _ in range(10)))
        assert calls == 1
        assert all(r == {"n": 1} for r in results)

    @pytest.mark.asyncio
    async def test_expires_after_ttl(self):
        now = [0.0]
        calls = 0

        async def fetch():
            nonlocal calls
            calls += 1
            return calls

        cache = StatusCache(fetch, ttl=5, clock=lambda: now[0])
        assert await cache.get() == 1
        now[0] = 4.9
        assert await cache.get() == 1
        now[0] = 5.0
        assert await cache.get() == 2

    @pytest.mark.asyncio
    async def test_failures_not_cached(self):
        attempts = 0

        async def fetch():
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                raise InvocationError("down")
            return "ok"

        cache = StatusCache(fetch, ttl=5)
        with pytest.raises(InvocationError):
            await cache.get()
        assert await cache.get() == "ok"

    @pytest.mark.asyncio
    async def test_reset(self):
        calls = 0

        async def fetch():
            nonlocal calls
            calls += 1
            return calls

        cache = StatusCache(fetch, ttl=60)
        await cache.get()
        cache.reset()
        assert await cache.get() == 2
