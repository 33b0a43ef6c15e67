"""Parsers for gt/bd output.

JSON-mode parsers handle commands run with --json; text parsers handle the
commands that only print human-readable output. Every parser returns a
ParseResult and never raises: the tools' output is not a contract we
control, so malformed output degrades to an empty or partial result and a
logged warning.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import wraps
from typing import Any

from gtdash.errors import ParseError
from gtdash.line_scanner import AttributeRule, HeaderRule, LineScanner
from gtdash.reconciler import thread_info_from_labels

logger = logging.getLogger(__name__)

NO_SUBJECT = "(no subject)"
UNKNOWN_SENDER = "unknown"


@dataclass
class ParseResult:
    """Envelope produced by every parser."""

    records: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def first(self) -> dict[str, Any] | None:
        return self.records[0] if self.records else None


def _parser(name: str):
    """Keep parse failures inside the parser boundary."""

    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs) -> ParseResult:
            try:
                return fn(*args, **kwargs)
            except Exception as e:
                logger.warning("%s: unparseable output (%s: %s)", name, type(e).__name__, e)
                return ParseResult(error=f"{type(e).__name__}: {e}")

        return wrapper

    return decorator


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _text(value, default: str = "") -> str:
    if value is None or value == "":
        return default
    return str(value)


def _opt_text(value) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _bool(value, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "y")
    return bool(value)


def _int(value, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _str_list(value) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v is not None and str(v) != ""]


def _load_json(text: str | None, empty: Any) -> Any:
    stripped = (text or "").strip()
    if not stripped:
        return empty
    try:
        return json.loads(stripped)
    except json.JSONDecodeError as e:
        raise ParseError(f"malformed JSON at line {e.lineno} column {e.colno}") from e


# --- JSON mode ---


@_parser("json-list")
def parse_json_list(text: str | None) -> ParseResult:
    """Any JSON array of objects; non-object items are skipped."""
    data = _load_json(text, [])
    if not isinstance(data, list):
        raise ParseError(f"expected a JSON array, got {type(data).__name__}")
    return ParseResult(records=[item for item in data if isinstance(item, dict)])


def _role_from_address(address: str) -> str:
    segments = [s for s in address.lower().split("/") if s]
    for role in ("crew", "witness", "deacon", "mayor"):
        if role in segments:
            return role
    if "polecat" in segments or "polecats" in segments:
        return "polecat"
    return "unknown"


def _normalize_agent(raw: dict) -> dict:
    name = _text(raw.get("name"))
    address = _text(raw.get("address"), name)
    return {
        "name": name or address.rstrip("/").split("/")[-1],
        "address": address,
        "role": _text(raw.get("role")) or _role_from_address(address),
        "running": _bool(raw.get("running")),
        "has_work": _bool(raw.get("has_work")),
        "unread_mail": _int(raw.get("unread_mail")),
        "state": _opt_text(raw.get("state")),
        "session": _opt_text(raw.get("session")),
        "first_subject": _opt_text(raw.get("first_subject")),
    }


def _normalize_rig(raw: dict) -> dict:
    polecats = _str_list(raw.get("polecats"))
    crews = _str_list(raw.get("crews"))
    agents = [_normalize_agent(a) for a in raw.get("agents") or [] if isinstance(a, dict)]
    return {
        "name": _text(raw.get("name")),
        "polecats": polecats,
        "polecat_count": _int(raw.get("polecat_count"), len(polecats)),
        "crews": crews,
        "crew_count": _int(raw.get("crew_count"), len(crews)),
        "has_witness": _bool(raw.get("has_witness")),
        "has_refinery": _bool(raw.get("has_refinery")),
        "agents": [a for a in agents if a["address"]],
    }


@_parser("gt-status")
def parse_status_json(text: str | None) -> ParseResult:
    """`gt status --json`: either an agent array or {name, agents, rigs, mayor}."""
    data = _load_json(text, {})
    status: dict[str, Any] = {"name": "Gas Town", "agents": [], "rigs": [], "mayor": None}
    if isinstance(data, list):
        raw_agents, raw_rigs = data, []
    elif isinstance(data, dict):
        status["name"] = _text(data.get("name"), "Gas Town")
        raw_agents = data.get("agents") or []
        raw_rigs = data.get("rigs") or []
        if isinstance(data.get("mayor"), dict):
            status["mayor"] = data["mayor"]
    else:
        raise ParseError(f"unexpected status payload: {type(data).__name__}")

    status["agents"] = [
        a for a in (_normalize_agent(r) for r in raw_agents if isinstance(r, dict)) if a["address"]
    ]
    status["rigs"] = [
        r for r in (_normalize_rig(r) for r in raw_rigs if isinstance(r, dict)) if r["name"]
    ]
    return ParseResult(records=[status])


def _normalize_message(raw: dict, default_recipient: str, captured_at: str) -> dict | None:
    message_id = _text(raw.get("id"))
    if not message_id:
        logger.debug("Dropping mail record without id: %s", str(raw)[:200])
        return None
    labels = _str_list(raw.get("labels"))
    label_thread, label_reply = thread_info_from_labels(labels)
    return {
        "id": message_id,
        "sender": _text(raw.get("from"), UNKNOWN_SENDER),
        "recipient": _text(raw.get("to"), default_recipient),
        "subject": _text(raw.get("subject"), NO_SUBJECT),
        "body": _text(raw.get("body")) or _text(raw.get("content")),
        "timestamp": _text(raw.get("timestamp")) or _text(raw.get("date"), captured_at),
        "read": _bool(raw.get("read")),
        "thread_id": _opt_text(raw.get("thread_id")) or label_thread,
        "reply_to": _opt_text(raw.get("reply_to")) or label_reply,
        "priority": _opt_text(raw.get("priority")),
        "message_type": _opt_text(raw.get("type")),
        "labels": labels,
        "ephemeral": _bool(raw.get("ephemeral")),
    }


@_parser("gt-mail-inbox")
def parse_inbox_json(
    text: str | None,
    address: str = "overseer",
    captured_at: str | None = None,
) -> ParseResult:
    """`gt mail inbox [address] --json`."""
    listing = parse_json_list(text)
    if not listing.ok:
        return listing
    captured_at = captured_at or now_iso()
    records = []
    for raw in listing.records:
        message = _normalize_message(raw, address, captured_at)
        if message:
            records.append(message)
    return ParseResult(records=records)


@_parser("bd-sent-mail")
def parse_sent_json(
    text: str | None,
    sender: str = "overseer",
    captured_at: str | None = None,
) -> ParseResult:
    """`bd list --type message --json`, keeping beads created by `sender`."""
    listing = parse_json_list(text)
    if not listing.ok:
        return listing
    captured_at = captured_at or now_iso()
    records = []
    for raw in listing.records:
        if raw.get("created_by") != sender:
            continue
        message_id = _text(raw.get("id"))
        if not message_id:
            continue
        labels = _str_list(raw.get("labels"))
        thread_id, reply_to = thread_info_from_labels(labels)
        records.append({
            "id": message_id,
            "sender": _text(raw.get("created_by"), sender),
            "recipient": _text(raw.get("assignee")),
            "subject": _text(raw.get("title"), NO_SUBJECT),
            "body": _text(raw.get("description")),
            "timestamp": _text(raw.get("created_at"), captured_at),
            "read": True,
            "thread_id": thread_id,
            "reply_to": reply_to,
            "priority": _opt_text(raw.get("priority")),
            "message_type": _opt_text(raw.get("type")),
            "labels": labels,
            "ephemeral": _bool(raw.get("ephemeral")),
        })
    return ParseResult(records=records)


@_parser("bd-issues")
def parse_issues_json(text: str | None) -> ParseResult:
    """`bd list --json` issue records."""
    listing = parse_json_list(text)
    if not listing.ok:
        return listing
    records = []
    for raw in listing.records:
        issue_id = _text(raw.get("id"))
        if not issue_id:
            continue
        records.append({
            "id": issue_id,
            "title": _text(raw.get("title"), "(untitled)"),
            "description": _text(raw.get("description")),
            "status": _text(raw.get("status"), "open"),
            "priority": _int(raw.get("priority"), 2),
            "issue_type": _text(raw.get("issue_type"), "task"),
            "created_at": _text(raw.get("created_at")),
            "created_by": _text(raw.get("created_by")),
            "updated_at": _text(raw.get("updated_at")) or _text(raw.get("created_at")),
            "assignee": _opt_text(raw.get("assignee")),
            "labels": _str_list(raw.get("labels")),
        })
    return ParseResult(records=records)


@_parser("bd-comments")
def parse_comments_json(text: str | None, issue_id: str = "") -> ParseResult:
    """`bd comments <id> --json`; oldest first as bd prints them."""
    listing = parse_json_list(text)
    if not listing.ok:
        return listing
    records = []
    for index, raw in enumerate(listing.records):
        body = _text(raw.get("text") or raw.get("body"))
        if not body:
            continue
        records.append({
            "id": _text(raw.get("id"), f"{issue_id}#{index}"),
            "issue_id": _text(raw.get("issue_id"), issue_id),
            "author": _text(raw.get("author"), UNKNOWN_SENDER),
            "text": body,
            "created_at": _text(raw.get("created_at")),
        })
    return ParseResult(records=records)


# --- Text mode ---


def _set_branch(record: dict, m: re.Match) -> None:
    record["branch"] = m.group(1)
    record["git_status"] = "dirty" if m.group(2).lower() == "dirty" else "clean"


def _set_path(record: dict, m: re.Match) -> None:
    record["path"] = m.group(1)


CREW_LIST_SCANNER = LineScanner(
    header=HeaderRule(
        re.compile(r"^\s*([●○])\s+([^\s/]+)/(\S+)"),
        lambda m: {"running": m.group(1) == "●", "rig": m.group(2), "name": m.group(3)},
    ),
    attributes=[
        AttributeRule(re.compile(r"^\s*Branch:\s*(\S+)\s+Git:\s*(\S+)"), _set_branch),
        AttributeRule(re.compile(r"^\s*(/\S+)"), _set_path),
    ],
    key="name",
    defaults={"branch": "main", "git_status": "clean", "path": "", "mail_count": 0},
)


@_parser("gt-crew-list")
def parse_crew_list(text: str | None) -> ParseResult:
    """`gt crew list`::

        ● gastown/max
          Branch: main  Git: dirty
          /home/gt/gastown/crew/max
    """
    return ParseResult(records=CREW_LIST_SCANNER.scan(text or ""))


def _append_body(record: dict, m: re.Match) -> None:
    line = m.group(1).strip()
    record["body"] = f"{record['body']}\n{line}" if record["body"] else line


INBOX_TEXT_SCANNER = LineScanner(
    header=HeaderRule(
        re.compile(r"^\s*(\[unread\])?\s*(\S+):\s*(.+)$"),
        lambda m: {
            "read": not m.group(1),
            "sender": m.group(2),
            "subject": m.group(3).strip(),
        },
    ),
    attributes=[AttributeRule(re.compile(r"^\s+(\S.*)$"), _append_body)],
    key="sender",
    defaults={"body": ""},
)


def text_message_id(sender: str, subject: str, occurrence: int) -> str:
    """Stable id for a text-mode message so repeated polls dedupe."""
    digest = hashlib.sha1(f"{sender}\x00{subject}\x00{occurrence}".encode()).hexdigest()
    return f"msg-{digest[:12]}"


@_parser("gt-mail-inbox-text")
def parse_inbox_text(
    text: str | None,
    address: str,
    captured_at: str | None = None,
) -> ParseResult:
    """`gt mail inbox <address>` without --json: `[unread] from: subject` headers."""
    captured_at = captured_at or now_iso()
    occurrences: Counter = Counter()
    records = []
    for raw in INBOX_TEXT_SCANNER.scan(text or ""):
        pair = (raw["sender"], raw["subject"])
        records.append({
            "id": text_message_id(raw["sender"], raw["subject"], occurrences[pair]),
            "sender": raw["sender"],
            "recipient": address,
            "subject": raw["subject"] or NO_SUBJECT,
            "body": raw["body"],
            "timestamp": captured_at,
            "read": raw["read"],
            "thread_id": None,
            "reply_to": None,
            "priority": None,
            "message_type": None,
            "labels": [],
            "ephemeral": False,
        })
        occurrences[pair] += 1
    return ParseResult(records=records)


def _set_counts(record: dict, m: re.Match) -> None:
    record["polecats"] = int(m.group(1))
    if m.group(2) is not None:
        record["crew"] = int(m.group(2))


def _set_crew(record: dict, m: re.Match) -> None:
    record["crew"] = int(m.group(1))


def _set_agents(record: dict, m: re.Match) -> None:
    record["agents"] = m.group(1).split()


RIG_LIST_SCANNER = LineScanner(
    header=HeaderRule(
        re.compile(r"^\s*([A-Za-z0-9_-]+)\s*$"),
        lambda m: {"name": m.group(1)},
    ),
    attributes=[
        AttributeRule(re.compile(r"^\s*Polecats:\s*(\d+)(?:\s+Crew:\s*(\d+))?"), _set_counts),
        AttributeRule(re.compile(r"^\s*Crew:\s*(\d+)"), _set_crew),
        AttributeRule(re.compile(r"^\s*Agents:\s*\[([^\]]*)\]"), _set_agents),
    ],
    key="name",
    defaults={"polecats": 0, "crew": 0, "agents": []},
)


@_parser("gt-rig-list")
def parse_rig_list(text: str | None) -> ParseResult:
    """`gt rig list`::

        Rigs in /home/gt:

        gastown
          Polecats: 2  Crew: 1
          Agents: [refinery witness]
    """
    return ParseResult(records=RIG_LIST_SCANNER.scan(text or ""))


_MAIL_COUNT = re.compile(r"Mail:\s*(\d+)\s*messages?")
_RIG_STATE = re.compile(r"Status:\s*(PARKED|DOCKED|RUNNING|STOPPED)", re.IGNORECASE)


def parse_mail_count(text: str | None) -> int | None:
    """`Mail: 3 messages` from `gt crew status <name>`."""
    match = _MAIL_COUNT.search(text or "")
    return int(match.group(1)) if match else None


def parse_rig_state(text: str | None) -> str | None:
    """`Status: PARKED` from `gt rig status <rig>`, upper-cased."""
    match = _RIG_STATE.search(text or "")
    return match.group(1).upper() if match else None


_ORPHAN_ID = re.compile(r"^([a-z]+-[a-z0-9]+(?:\.[0-9]+)?)", re.IGNORECASE)
_ORPHAN_TITLE = re.compile(r"^[^\s:]+:\s*(.+?)(?:\s*\(|$)")
_ORPHAN_POLECAT = re.compile(r"polecat[:\s]+([^\s,)]+)", re.IGNORECASE)
_ORPHAN_RIG = re.compile(r"\brig[:\s]+([^\s,)]+)", re.IGNORECASE)


@_parser("gt-orphans")
def parse_orphans(text: str | None) -> ParseResult:
    """`gt orphans`: one bead per line, e.g. `gd-abc1: Fix login (polecat: toast, rig: gastown)`."""
    records = []
    for line in (text or "").splitlines():
        line = line.strip()
        id_match = _ORPHAN_ID.match(line)
        if not id_match:
            continue
        title = _ORPHAN_TITLE.search(line)
        polecat = _ORPHAN_POLECAT.search(line)
        rig = _ORPHAN_RIG.search(line)
        records.append({
            "id": id_match.group(1),
            "title": title.group(1).strip() if title else None,
            "polecat": polecat.group(1) if polecat else None,
            "rig": rig.group(1) if rig else None,
        })
    return ParseResult(records=records)
