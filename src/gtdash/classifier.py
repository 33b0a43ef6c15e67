"""Failure classification for external command errors.

The gt tool reports failures only as free text on stderr, so classification
is phrase matching. The same phrase means different things for different
commands ("not found" is a stopped agent for nudge but a missing workspace
for crew remove), so every call site owns its own table.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorKind(Enum):
    """Semantic category of a failed invocation."""

    NOT_RUNNING = "not_running"
    ALREADY_RUNNING = "already_running"
    NOT_FOUND = "not_found"
    DIRTY_WORKSPACE = "dirty_workspace"
    INVALID_INPUT = "invalid_input"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class PhraseRule:
    """Map any of `phrases` (case-insensitive substrings) to `kind`."""

    kind: ErrorKind
    phrases: tuple[str, ...]
    message: str = ""

    def matches(self, lowered: str) -> bool:
        return any(phrase in lowered for phrase in self.phrases)


class FailureClassifier:
    """Ordered phrase table; the first matching rule wins."""

    def __init__(self, name: str, rules: list[PhraseRule] | tuple[PhraseRule, ...] = ()):
        self.name = name
        self.rules = tuple(rules)

    def classify(self, text: str | None) -> ErrorKind:
        if not text:
            return ErrorKind.UNKNOWN
        lowered = text.lower()
        for rule in self.rules:
            if rule.matches(lowered):
                return rule.kind
        return ErrorKind.UNKNOWN

    def describe(self, kind: ErrorKind, fallback: str, **context) -> str:
        """Short user-facing message for `kind`, formatted with `context`."""
        for rule in self.rules:
            if rule.kind is kind and rule.message:
                return rule.message.format(**context)
        return fallback.format(**context)


# --- Per-call-site tables ---

NUDGE = FailureClassifier(
    "nudge",
    [
        PhraseRule(
            ErrorKind.NOT_RUNNING,
            ("no session", "not found", "does not exist"),
            "{target} is not running. Cannot send nudge to a stopped agent.",
        ),
    ],
)

CREW_START = FailureClassifier(
    "crew-start",
    [
        PhraseRule(
            ErrorKind.ALREADY_RUNNING,
            ("already running", "already exists"),
            "Crew member {target} is already running",
        ),
    ],
)

CREW_REMOVE = FailureClassifier(
    "crew-remove",
    [
        PhraseRule(
            ErrorKind.DIRTY_WORKSPACE,
            ("uncommitted", "unpushed", "dirty", "safety check"),
            "Cannot remove {target}: workspace has uncommitted or unpushed changes",
        ),
        PhraseRule(
            ErrorKind.NOT_FOUND,
            ("not found", "does not exist"),
            "Crew member {target} not found",
        ),
    ],
)

CREW_ADD = FailureClassifier(
    "crew-add",
    [
        PhraseRule(
            ErrorKind.ALREADY_RUNNING,
            ("already exists",),
            "Crew workspace {target} already exists",
        ),
    ],
)

MAYOR_RESTART = FailureClassifier(
    "mayor-restart",
    [
        PhraseRule(
            ErrorKind.ALREADY_RUNNING,
            ("session already running", "already running"),
            "Mayor is already running",
        ),
    ],
)

WITNESS_START = FailureClassifier(
    "witness-start",
    [
        PhraseRule(
            ErrorKind.ALREADY_RUNNING,
            ("already running",),
            "Witness for {target} is already running",
        ),
        PhraseRule(
            ErrorKind.NOT_FOUND,
            ("not found", "unknown rig", "does not exist"),
            "Rig {target} not found",
        ),
    ],
)

RIG = FailureClassifier(
    "rig",
    [
        PhraseRule(
            ErrorKind.NOT_FOUND,
            ("not found", "unknown rig", "does not exist"),
            "Rig {target} not found",
        ),
        PhraseRule(
            ErrorKind.ALREADY_RUNNING,
            ("already exists",),
            "Rig {target} already exists",
        ),
    ],
)

ISSUE = FailureClassifier(
    "issue",
    [
        PhraseRule(
            ErrorKind.NOT_FOUND,
            ("not found", "no issue", "does not exist"),
            "Issue {target} not found",
        ),
    ],
)

REFINERY = FailureClassifier(
    "refinery",
    [
        PhraseRule(
            ErrorKind.NOT_RUNNING,
            ("no refinery", "refinery not running"),
            "Refinery for {target} is not running",
        ),
        PhraseRule(
            ErrorKind.NOT_FOUND,
            ("not found", "unknown rig", "does not exist"),
            "Rig {target} not found",
        ),
    ],
)

GENERIC = FailureClassifier("generic")
