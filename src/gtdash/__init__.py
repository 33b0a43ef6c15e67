"""gtdash: Operational dashboard core for the gt and bd CLIs."""

__version__ = "0.1.0"

from gtdash.classifier import ErrorKind, FailureClassifier, PhraseRule
from gtdash.config import DashboardConfig
from gtdash.errors import (
    ConfigError,
    DashboardError,
    InvocationError,
    ParseError,
    ValidationError,
)
from gtdash.invoker import CommandResult, GtRunner, StatusCache, run_command
from gtdash.line_scanner import LineScanner
from gtdash.parsers import ParseResult
from gtdash.reconciler import MessageReconciler
from gtdash.service import DashboardService

__all__ = [
    "ErrorKind",
    "FailureClassifier",
    "PhraseRule",
    "DashboardConfig",
    "ConfigError",
    "DashboardError",
    "InvocationError",
    "ParseError",
    "ValidationError",
    "CommandResult",
    "GtRunner",
    "StatusCache",
    "run_command",
    "LineScanner",
    "ParseResult",
    "MessageReconciler",
    "DashboardService",
]
