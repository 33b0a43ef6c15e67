"""Finite-state line scanner for CLI output that has no JSON mode.

Each line is classified as HEADER, ATTRIBUTE or OTHER. A header closes the
open record (emitting it when it carries its identifying field) and opens a
new one seeded with defaults; attribute lines fill in the open record; other
lines are ignored. Whatever is open at end of input is flushed, so a record
whose header is followed directly by another header is still emitted with
its default values.
"""

from __future__ import annotations

import copy
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ScanState(Enum):
    NO_RECORD = "no_record"
    ACCUMULATING = "accumulating"


class LineKind(Enum):
    HEADER = "header"
    ATTRIBUTE = "attribute"
    OTHER = "other"


Record = dict[str, Any]


@dataclass(frozen=True)
class HeaderRule:
    """Opens a record: `build(match)` returns the record's initial fields."""

    pattern: re.Pattern
    build: Callable[[re.Match], Record]


@dataclass(frozen=True)
class AttributeRule:
    """Populates the open record: `apply(record, match)` mutates it."""

    pattern: re.Pattern
    apply: Callable[[Record, re.Match], None]


@dataclass
class _Scan:
    state: ScanState = ScanState.NO_RECORD
    current: Record | None = None
    records: list[Record] = field(default_factory=list)


class LineScanner:
    """Table-driven scanner: (state, line kind) -> action."""

    def __init__(
        self,
        header: HeaderRule,
        attributes: Sequence[AttributeRule] = (),
        key: str = "id",
        defaults: Record | None = None,
    ):
        self.header = header
        self.attributes = tuple(attributes)
        self.key = key
        self.defaults = dict(defaults or {})
        self._transitions: dict[tuple[ScanState, LineKind], Callable] = {
            (ScanState.NO_RECORD, LineKind.HEADER): self._open,
            (ScanState.NO_RECORD, LineKind.ATTRIBUTE): self._ignore,
            (ScanState.NO_RECORD, LineKind.OTHER): self._ignore,
            (ScanState.ACCUMULATING, LineKind.HEADER): self._close_and_open,
            (ScanState.ACCUMULATING, LineKind.ATTRIBUTE): self._populate,
            (ScanState.ACCUMULATING, LineKind.OTHER): self._ignore,
        }

    def _classify(self, line: str) -> tuple[LineKind, re.Match | None, AttributeRule | None]:
        match = self.header.pattern.match(line)
        if match:
            return LineKind.HEADER, match, None
        for rule in self.attributes:
            match = rule.pattern.match(line)
            if match:
                return LineKind.ATTRIBUTE, match, rule
        return LineKind.OTHER, None, None

    def scan(self, text: str) -> list[Record]:
        scan = _Scan()
        for line in (text or "").splitlines():
            kind, match, rule = self._classify(line)
            self._transitions[(scan.state, kind)](scan, match, rule)
        self._flush(scan)
        return scan.records

    # --- actions ---

    def _ignore(self, scan: _Scan, match, rule) -> None:
        return None

    def _open(self, scan: _Scan, match: re.Match, rule) -> None:
        record = copy.deepcopy(self.defaults)
        record.update(self.header.build(match))
        scan.current = record
        scan.state = ScanState.ACCUMULATING

    def _close_and_open(self, scan: _Scan, match: re.Match, rule) -> None:
        self._flush(scan)
        self._open(scan, match, rule)

    def _populate(self, scan: _Scan, match: re.Match, rule: AttributeRule) -> None:
        rule.apply(scan.current, match)

    def _flush(self, scan: _Scan) -> None:
        if scan.current is not None and scan.current.get(self.key):
            scan.records.append(scan.current)
        scan.current = None
        scan.state = ScanState.NO_RECORD
