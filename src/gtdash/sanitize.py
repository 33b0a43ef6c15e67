"""Input validation and shell quoting for values bound for the gt/bd CLIs.

Identifiers are fail-closed: anything outside [A-Za-z0-9_-] is rejected,
never stripped. Free text keeps its content and is only length-bounded;
quoting is applied when a command line is rendered for humans.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from gtdash.errors import ValidationError

_UNSAFE_IDENTIFIER = re.compile(r"[^A-Za-z0-9_-]")
_NAME = re.compile(r"^[A-Za-z][A-Za-z0-9_-]*$")
_BEAD_ID = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]*$")
_LABEL = re.compile(r"[A-Za-z0-9_][A-Za-z0-9_.:/=@+-]*")
_PLAIN_TOKEN = re.compile(r"^[A-Za-z0-9_./:=@%+,-]+$")


def validate_identifier(value, field: str) -> str:
    """Return `value` if it is a safe identifier, else raise ValidationError."""
    if not isinstance(value, str) or not value:
        raise ValidationError(f"{field} is required", field=field)
    if _UNSAFE_IDENTIFIER.sub("", value) != value:
        raise ValidationError(f"Invalid {field}", field=field)
    return value


def validate_name(value, field: str) -> str:
    """Identifier that must also start with a letter."""
    validate_identifier(value, field)
    if not _NAME.match(value):
        raise ValidationError(
            f"{field} must start with a letter and contain only letters, "
            "numbers, underscores, and hyphens",
            field=field,
        )
    return value


def validate_bead_id(value, field: str = "id") -> str:
    """Bead or message id such as gd-abc.1: dots allowed, no leading hyphen."""
    if not isinstance(value, str) or not value:
        raise ValidationError(f"{field} is required", field=field)
    if not _BEAD_ID.fullmatch(value):
        raise ValidationError(f"Invalid {field}", field=field)
    return value


def validate_label(value, field: str = "label") -> str:
    """Issue label such as `thread:gd-1` or `area/ui`; no commas or spaces."""
    if not isinstance(value, str) or not _LABEL.fullmatch(value):
        raise ValidationError(f"Invalid {field}", field=field)
    return value


def validate_address(value, field: str = "address") -> str:
    """Agent address: identifier segments joined by '/', e.g. rig/crew/max or mayor/."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", field=field)
    value = value.strip()
    segments = value.split("/")
    if segments[-1] == "":
        segments = segments[:-1]
    if not segments:
        raise ValidationError(f"Invalid {field}", field=field)
    for segment in segments:
        if not segment or _UNSAFE_IDENTIFIER.sub("", segment) != segment:
            raise ValidationError(f"Invalid {field}", field=field)
    return value


def check_free_text(
    value,
    field: str,
    max_length: int,
    *,
    required: bool = True,
    default: str | None = None,
) -> str:
    """Trim and length-check user text. Content is otherwise preserved."""
    if value is None or (isinstance(value, str) and not value.strip()):
        if default is not None:
            return default
        if required:
            raise ValidationError(f"{field} is required", field=field)
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", field=field)
    text = value.strip()
    if len(text) > max_length:
        raise ValidationError(
            f"{field} too long (max {max_length} characters)", field=field
        )
    return text


def escape_single_quotes(text: str) -> str:
    return text.replace("'", "'\\''")


def shell_quote(text: str) -> str:
    """Wrap `text` for single-quoted shell interpolation."""
    return f"'{escape_single_quotes(text)}'"


def render_command(argv: Sequence[str]) -> str:
    """Human-readable command line; plain tokens stay bare, the rest are quoted."""
    return " ".join(
        arg if arg and _PLAIN_TOKEN.match(arg) else shell_quote(arg) for arg in argv
    )


def validate_git_url(value, field: str = "git_url", max_length: int = 500) -> str:
    """Repository URL passed as a single argument: no whitespace, no leading '-'."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", field=field)
    if len(value) > max_length or value.startswith("-") or any(c.isspace() for c in value):
        raise ValidationError(f"Invalid {field}", field=field)
    return value
