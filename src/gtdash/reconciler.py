"""Mail stream reconciliation: dedup across polls, threading, ordering.

The seen-set lives on a MessageReconciler instance (one per serving
process, injected into the service) and is keyed by stream scope. It is
in-memory only; a restart re-delivers whatever the mailbox still holds.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import TypeVar

from gtdash.models import MailMessage, MailThread

T = TypeVar("T")

THREAD_PREFIX = "thread:"
REPLY_TO_PREFIX = "reply-to:"
CREW_SEGMENT = "/crew/"
TOWN_AGENTS = ("mayor", "deacon", "overseer")

RECEIVED = "received"


def thread_info_from_labels(labels: Iterable[str] | None) -> tuple[str | None, str | None]:
    """Recover (thread_id, reply_to) from `thread:<id>` / `reply-to:<id>` labels.

    Only the first label of each prefix counts.
    """
    thread_id = reply_to = None
    for label in labels or ():
        if not isinstance(label, str):
            continue
        if thread_id is None and label.startswith(THREAD_PREFIX):
            thread_id = label[len(THREAD_PREFIX):] or None
        elif reply_to is None and label.startswith(REPLY_TO_PREFIX):
            reply_to = label[len(REPLY_TO_PREFIX):] or None
    return thread_id, reply_to


def classify_direction(sender: str, default: str | None = None) -> str | None:
    """`received` for mail from a managed crew agent, else the call site's default."""
    if sender and CREW_SEGMENT in sender:
        return RECEIVED
    return default


def sender_scope_pattern(rig: str | None = None, name: str | None = None) -> str | None:
    """Substring that a crew sender address must contain for a scoped poll."""
    if rig and name:
        return f"{rig}/crew/{name}"
    if rig:
        return f"{rig}/crew/"
    if name:
        return f"/crew/{name}"
    return None


def filter_by_sender(messages: Iterable[T], pattern: str | None, sender_of: Callable[[T], str] = None) -> list[T]:
    sender_of = sender_of or (lambda m: m.sender)
    if not pattern:
        return list(messages)
    return [m for m in messages if pattern in (sender_of(m) or "")]


def timestamp_key(value: str | None) -> float:
    """Sortable epoch seconds; unparseable timestamps sort last."""
    if not value:
        return float("-inf")
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return float("-inf")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def sort_latest_first(messages: Iterable[T], timestamp_of: Callable[[T], str] = None) -> list[T]:
    """Timestamp descending; ties keep arrival order."""
    timestamp_of = timestamp_of or (lambda m: m.timestamp)
    return sorted(messages, key=lambda m: timestamp_key(timestamp_of(m)), reverse=True)


def merge_unique(*batches: Iterable[MailMessage]) -> list[MailMessage]:
    """Concatenate batches, keeping the first occurrence of each id."""
    seen: set[str] = set()
    merged = []
    for batch in batches:
        for message in batch:
            if message.id in seen:
                continue
            seen.add(message.id)
            merged.append(message)
    return merged


def normalize_address(address: str) -> str:
    """Town agents get a lowercase trailing-slash form (`mayor` -> `mayor/`)."""
    if not address:
        return address
    bare = address.lower().rstrip("/")
    if bare in TOWN_AGENTS:
        return f"{bare}/"
    return address


def group_threads(messages: Iterable[MailMessage], me: str = "overseer") -> list[MailThread]:
    """Group by thread id, or by the other participant when there is none.

    Messages inside a thread and the threads themselves are latest-first.
    """
    me_normalized = normalize_address(me)
    groups: dict[str, list[MailMessage]] = {}
    others: dict[str, str] = {}
    for message in messages:
        sender = normalize_address(message.sender)
        other = normalize_address(message.recipient) if sender == me_normalized else sender
        key = message.thread_id or other
        groups.setdefault(key, []).append(message)
        others.setdefault(key, other)

    threads = []
    for key, group in groups.items():
        ordered = sort_latest_first(group)
        participants = {normalize_address(m.sender) for m in ordered}
        participants.update(normalize_address(m.recipient) for m in ordered if m.recipient)
        oldest = ordered[-1]
        threads.append(MailThread(
            id=key,
            subject=oldest.subject if ordered[0].thread_id else others[key],
            messages=ordered,
            latest_timestamp=ordered[0].timestamp,
            unread_count=sum(1 for m in ordered if not m.read),
            participants=sorted(participants),
        ))
    return sorted(threads, key=lambda t: timestamp_key(t.latest_timestamp), reverse=True)


class MessageReconciler:
    """Per-scope seen-set for polled mail.

    reconcile() computes the unseen subset and marks it seen under one
    lock, so two concurrent polls of a scope never both claim a message.
    """

    def __init__(self):
        self._seen: dict[str, set[str]] = {}
        self._lock = threading.Lock()

    def reconcile(self, scope: str, batch: Iterable[T], id_of: Callable[[T], str] = None) -> list[T]:
        id_of = id_of or (lambda m: m.id)
        fresh = []
        with self._lock:
            seen = self._seen.setdefault(scope, set())
            for item in batch:
                item_id = id_of(item)
                if not item_id or item_id in seen:
                    continue
                seen.add(item_id)
                fresh.append(item)
        return fresh

    def seen_count(self, scope: str | None = None) -> int:
        with self._lock:
            if scope is not None:
                return len(self._seen.get(scope, ()))
            return sum(len(s) for s in self._seen.values())

    def forget(self, scope: str | None = None) -> None:
        with self._lock:
            if scope is None:
                self._seen.clear()
            else:
                self._seen.pop(scope, None)
