"""Dashboard error taxonomy.

ValidationError is raised before any process is spawned, InvocationError
when the external tool fails, ParseError only inside parsers (it never
crosses a parser boundary).
"""

from __future__ import annotations

from gtdash.classifier import ErrorKind


class DashboardError(Exception):
    """Base exception for dashboard domain errors."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str, details: str | None = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        data = {"error": self.message, "kind": self.kind.value}
        if self.details:
            data["details"] = self.details
        return data


class ValidationError(DashboardError):
    """Raised when caller input is missing or unsafe."""

    kind = ErrorKind.INVALID_INPUT

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class ConfigError(DashboardError):
    """Raised when a required path or binary is not configured."""


class ParseError(DashboardError):
    """Raised inside a parser when output does not have the expected shape."""


class InvocationError(DashboardError):
    """External command failed, timed out, or could not be spawned."""

    def __init__(
        self,
        message: str,
        *,
        command: str = "",
        stdout: str = "",
        stderr: str = "",
        exit_code: int | None = None,
        timed_out: bool = False,
        kind: ErrorKind = ErrorKind.UNKNOWN,
    ):
        super().__init__(message, details=stderr.strip() or stdout.strip() or None)
        self.command = command
        self.stdout = stdout
        self.stderr = stderr
        self.exit_code = exit_code
        self.timed_out = timed_out
        self.kind = kind

    @property
    def diagnostic(self) -> str:
        """The tool's own output: stderr, or stdout when stderr is empty."""
        return self.stderr.strip() or self.stdout.strip()

    @property
    def exited(self) -> bool:
        """True when the process ran to a non-zero exit (not spawn failure or timeout)."""
        return self.exit_code is not None and not self.timed_out

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["exit_code"] = self.exit_code
        if self.timed_out:
            data["timed_out"] = True
        return data
