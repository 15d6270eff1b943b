"""
history_format.py - Reading and writing shell history entries

Three on-disk layouts are understood:

    zsh EXTENDED_HISTORY      : 1746142083:0;cargo build --release
    bash with HISTTIMEFORMAT  #1746142083
                              cargo build --release
    plain                     cargo build --release

A file is parsed into `HistoryRecord`s, one per entry (an entry can span several
lines: zsh continuation lines, or everything between two bash timestamps), and
rendered back in the same layout it came from.
"""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass, replace
from typing import Iterable, Iterator

log = logging.getLogger(__name__)

ZSH_ENTRY_RE = re.compile(r"^: *(\d+):(\d*);(.*)$", re.DOTALL)
BASH_TIMESTAMP_RE = re.compile(r"^#(\d{8,})\s*$")


class HistoryFormat(enum.Enum):
    ZSH_EXTENDED = "zsh"
    BASH_TIMESTAMPED = "bash"
    PLAIN = "plain"


@dataclass(frozen=True)
class HistoryRecord:
    """A single history entry."""

    raw: tuple[str, ...]
    command: str
    timestamp: int | None = None
    duration: int | None = None
    line_num: int = 0

    def with_command(self, command: str) -> HistoryRecord:
        return replace(self, command=command)


# ============================================================================
# FORMAT DETECTION
# ============================================================================


def detect_format(lines: Iterable[str]) -> HistoryFormat:
    """→ Guesses the history layout; zsh wins over bash if both markers appear"""
    seen_bash_timestamp = False
    for line in lines:
        if ZSH_ENTRY_RE.match(line):
            return HistoryFormat.ZSH_EXTENDED
        if not seen_bash_timestamp and BASH_TIMESTAMP_RE.match(line):
            seen_bash_timestamp = True
    return HistoryFormat.BASH_TIMESTAMPED if seen_bash_timestamp else HistoryFormat.PLAIN


# ============================================================================
# PARSING
# ============================================================================


def split_entries(lines: list[str], fmt: HistoryFormat) -> Iterator[tuple[int, list[str]]]:
    """→ Groups raw lines into entry blocks, yielding (start_line, block)"""
    if fmt is HistoryFormat.PLAIN:
        for i, line in enumerate(lines):
            yield i, [line]
        return

    start_re = ZSH_ENTRY_RE if fmt is HistoryFormat.ZSH_EXTENDED else BASH_TIMESTAMP_RE
    i = 0
    num_lines = len(lines)
    while i < num_lines:
        if start_re.match(lines[i]):
            j = i + 1
            while j < num_lines and not start_re.match(lines[j]):
                j += 1
            yield i, lines[i:j]
            i = j
        else:
            # Orphan line before the first marker
            yield i, [lines[i]]
            i += 1


def parse_entry(block: list[str], fmt: HistoryFormat, line_num: int = 0) -> HistoryRecord | None:
    """
    Turns one entry block into a HistoryRecord.

    Returns None for anything that should be skipped: blank commands, zsh text
    that does not belong to any entry, and bash timestamps with no command.
    """
    if not block:
        return None
    first = block[0]

    if fmt is HistoryFormat.ZSH_EXTENDED:
        match = ZSH_ENTRY_RE.match(first)
        if not match:
            log.debug("Line %d: not a zsh history entry, skipping: %r", line_num + 1, first)
            return None
        timestamp, duration, command = match.groups()
        command = "\n".join([command, *block[1:]]).rstrip()
        if not command.strip():
            log.debug("Line %d: empty zsh entry, skipping", line_num + 1)
            return None
        return HistoryRecord(
            raw=tuple(block),
            command=command,
            timestamp=int(timestamp),
            duration=int(duration) if duration else 0,
            line_num=line_num,
        )

    if fmt is HistoryFormat.BASH_TIMESTAMPED:
        match = BASH_TIMESTAMP_RE.match(first)
        if match:
            command = "\n".join(block[1:]).rstrip()
            if not command.strip():
                log.debug("Line %d: timestamp without a command, skipping", line_num + 1)
                return None
            return HistoryRecord(
                raw=tuple(block), command=command, timestamp=int(match.group(1)), line_num=line_num
            )

    command = "\n".join(block).rstrip()
    if not command.strip():
        return None
    return HistoryRecord(raw=tuple(block), command=command, line_num=line_num)


def parse_line(line: str, fmt: HistoryFormat = HistoryFormat.PLAIN) -> HistoryRecord | None:
    """→ Parses a single raw line; None means skip"""
    return parse_entry([line.rstrip("\r\n")], fmt)


def parse_history(lines: list[str], fmt: HistoryFormat | None = None) -> Iterator[HistoryRecord]:
    """→ Parses a whole file's lines into records, in file order"""
    if fmt is None:
        fmt = detect_format(lines)
    for line_num, block in split_entries(lines, fmt):
        record = parse_entry(block, fmt, line_num)
        if record is not None:
            yield record


# ============================================================================
# RENDERING
# ============================================================================


def render_record(record: HistoryRecord, fmt: HistoryFormat) -> list[str]:
    """→ Serializes a record back into the lines of its original layout"""
    if fmt is HistoryFormat.ZSH_EXTENDED and record.timestamp is not None:
        first, *rest = record.command.split("\n")
        return [f": {record.timestamp}:{record.duration or 0};{first}", *rest]
    if fmt is HistoryFormat.BASH_TIMESTAMPED and record.timestamp is not None:
        return [f"#{record.timestamp}", *record.command.split("\n")]
    return record.command.split("\n")


def render_history(records: Iterable[HistoryRecord], fmt: HistoryFormat) -> list[str]:
    return [line for record in records for line in render_record(record, fmt)]
