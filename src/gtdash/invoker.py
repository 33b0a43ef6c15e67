"""Process invocation for the gt and bd CLIs.

Commands run as argument vectors (no shell) with a mandatory timeout.
A timed-out process group is killed and reaped before the error is raised.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from gtdash.classifier import GENERIC, ErrorKind, FailureClassifier
from gtdash.config import PathsConfig
from gtdash.errors import ConfigError, InvocationError
from gtdash.sanitize import render_command

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Captured output of a successful command."""

    argv: list[str]
    stdout: str
    stderr: str
    exit_code: int = 0
    duration: float = 0.0

    @property
    def command(self) -> str:
        return render_command(self.argv)


def _kill_process_tree(proc: asyncio.subprocess.Process) -> None:
    """Kill the process group started for `proc` (falls back to the process)."""
    if proc.returncode is not None:
        return
    with contextlib.suppress(ProcessLookupError, PermissionError):
        if hasattr(os, "killpg"):
            os.killpg(proc.pid, signal.SIGKILL)
            return
    with contextlib.suppress(ProcessLookupError):
        proc.kill()


async def run_command(
    argv: Sequence[str],
    *,
    cwd: str | None,
    timeout: float,
    env: dict[str, str] | None = None,
) -> CommandResult:
    """Execute `argv` and return its output, or raise InvocationError.

    A missing `cwd` is a configuration problem and raises ConfigError.
    """
    if not argv:
        raise ValueError("argv must not be empty")
    if timeout is None or timeout <= 0:
        raise ValueError("timeout must be a positive number of seconds")

    argv = [str(a) for a in argv]
    command = render_command(argv)

    if cwd is not None and not Path(cwd).is_dir():
        raise ConfigError(f"Working directory does not exist: {cwd}")

    started = time.monotonic()
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            env={**os.environ, **env} if env else None,
            start_new_session=True,
        )
    except OSError as e:
        raise InvocationError(
            f"Failed to start {argv[0]}: {e}",
            command=command,
            stderr=str(e),
        ) from e

    try:
        stdout_b, stderr_b = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError as e:
        _kill_process_tree(proc)
        with contextlib.suppress(ProcessLookupError):
            await proc.wait()
        raise InvocationError(
            f"Command timed out after {timeout:g}s: {command}",
            command=command,
            timed_out=True,
        ) from e
    except asyncio.CancelledError:
        _kill_process_tree(proc)
        raise

    stdout = stdout_b.decode(errors="replace")
    stderr = stderr_b.decode(errors="replace")
    duration = time.monotonic() - started

    if proc.returncode != 0:
        raise InvocationError(
            f"Command failed with exit code {proc.returncode}: {command}",
            command=command,
            stdout=stdout,
            stderr=stderr,
            exit_code=proc.returncode,
        )

    return CommandResult(
        argv=argv,
        stdout=stdout,
        stderr=stderr,
        exit_code=0,
        duration=duration,
    )


class GtRunner:
    """Binds run_command to the configured gt/bd binaries and working dirs."""

    def __init__(self, paths: PathsConfig | None = None):
        self.paths = paths or PathsConfig()

    @property
    def base_path(self) -> str:
        return self.paths.gt_base_path or os.getcwd()

    @property
    def beads_path(self) -> str:
        return self.paths.resolved_beads_path()

    async def gt(
        self,
        *args: str,
        timeout: float,
        cwd: str | None = None,
        classifier: FailureClassifier = GENERIC,
    ) -> CommandResult:
        return await self.run(
            [self.paths.gt_bin, *args],
            timeout=timeout,
            cwd=cwd or self.base_path,
            classifier=classifier,
        )

    async def bd(
        self,
        *args: str,
        timeout: float,
        cwd: str | None = None,
        classifier: FailureClassifier = GENERIC,
    ) -> CommandResult:
        return await self.run(
            [self.paths.bd_bin, *args],
            timeout=timeout,
            cwd=cwd or self.base_path,
            classifier=classifier,
        )

    async def run(
        self,
        argv: Sequence[str],
        *,
        timeout: float,
        cwd: str | None,
        classifier: FailureClassifier = GENERIC,
    ) -> CommandResult:
        """Run and classify failures with the call site's phrase table."""
        logger.debug("exec: %s (cwd=%s, timeout=%ss)", render_command(argv), cwd, timeout)
        try:
            result = await run_command(argv, cwd=cwd, timeout=timeout)
        except InvocationError as e:
            e.kind = classifier.classify(e.diagnostic) if e.exited else ErrorKind.UNKNOWN
            logger.warning(
                "%s failed [%s/%s]: %s",
                e.command,
                classifier.name,
                e.kind.value,
                (e.details or e.message)[:500],
            )
            raise
        if result.stderr.strip():
            logger.debug("%s stderr: %s", result.command, result.stderr.strip()[:500])
        return result


class StatusCache:
    """Single-flight TTL cache around an async fetch.

    Concurrent callers share one in-flight fetch; a fresh value is served
    without spawning anything. Failures are not cached.
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[Any]],
        ttl: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._fetch = fetch
        self._ttl = ttl
        self._clock = clock
        self._value: Any = None
        self._stamp: float | None = None
        self._lock = asyncio.Lock()

    def _fresh(self) -> bool:
        return self._stamp is not None and (self._clock() - self._stamp) < self._ttl

    async def get(self) -> Any:
        if self._fresh():
            return self._value
        async with self._lock:
            if self._fresh():
                return self._value
            value = await self._fetch()
            self._value = value
            self._stamp = self._clock()
            return value

    def reset(self) -> None:
        self._value = None
        self._stamp = None
