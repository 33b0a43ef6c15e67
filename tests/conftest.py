"""Shared test fixtures for the gtdash test suite."""

from dataclasses import dataclass
from pathlib import Path

import pytest

from gtdash.classifier import ErrorKind
from gtdash.config import DashboardConfig, PathsConfig
from gtdash.errors import ConfigError, InvocationError
from gtdash.invoker import CommandResult, GtRunner
from gtdash.reconciler import MessageReconciler
from gtdash.sanitize import render_command
from gtdash.service import DashboardService


@dataclass
class Scripted:
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    timed_out: bool = False


class FakeRunner(GtRunner):
    """GtRunner that answers from a script instead of spawning processes.

    Responses are keyed by argv prefix; the longest matching prefix wins.
    Unscripted commands succeed with empty output. A missing cwd and
    failures are handled with the call site's table exactly as the real
    runner does.
    """

    def __init__(self, paths: PathsConfig):
        super().__init__(paths)
        self.calls: list[dict] = []
        self._script: dict[tuple[str, ...], Scripted] = {}

    def on(self, *argv: str, stdout: str = "", stderr: str = "", exit_code: int = 0, timed_out: bool = False):
        self._script[tuple(argv)] = Scripted(stdout, stderr, exit_code, timed_out)

    def argvs(self) -> list[list[str]]:
        return [c["argv"] for c in self.calls]

    def _lookup(self, argv: list[str]) -> Scripted:
        best = None
        for key, scripted in self._script.items():
            if tuple(argv[: len(key)]) == key and (best is None or len(key) > len(best[0])):
                best = (key, scripted)
        return best[1] if best else Scripted()

    async def run(self, argv, *, timeout, cwd, classifier=None):
        argv = list(argv)
        if cwd is not None and not Path(cwd).is_dir():
            raise ConfigError(f"Working directory does not exist: {cwd}")
        self.calls.append({"argv": argv, "timeout": timeout, "cwd": cwd})
        scripted = self._lookup(argv)
        if scripted.timed_out or scripted.exit_code != 0:
            error = InvocationError(
                f"Command failed: {render_command(argv)}",
                command=render_command(argv),
                stdout=scripted.stdout,
                stderr=scripted.stderr,
                exit_code=None if scripted.timed_out else scripted.exit_code,
                timed_out=scripted.timed_out,
            )
            if error.exited and classifier is not None:
                error.kind = classifier.classify(error.diagnostic)
            else:
                error.kind = ErrorKind.UNKNOWN
            raise error
        return CommandResult(argv=argv, stdout=scripted.stdout, stderr=scripted.stderr)


@pytest.fixture
def town(tmp_path):
    """A Gas Town root with a .beads directory."""
    root = tmp_path / "town"
    (root / ".beads").mkdir(parents=True)
    (root / "mayor").mkdir()
    return root


@pytest.fixture
def config(town):
    cfg = DashboardConfig()
    cfg.paths.gt_base_path = str(town)
    cfg.paths.beads_path = str(town / ".beads")
    return cfg


@pytest.fixture
def runner(config):
    return FakeRunner(config.paths)


@pytest.fixture
def reconciler():
    return MessageReconciler()


@pytest.fixture
def service(config, runner, reconciler):
    return DashboardService(config, runner=runner, reconciler=reconciler)
