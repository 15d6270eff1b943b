"""
history_filter.py - Deciding which history records are worth keeping

Records go out for three reasons: they duplicate a command that is kept
elsewhere, they match one of the "uninteresting" patterns, or they are shorter
than the minimum length. Separately, kept commands that mention something
sensitive can be flagged so the user looks at them.
"""

from __future__ import annotations

import re
from typing import Iterable, Literal

from history_format import HistoryRecord

KeepPolicy = Literal["first", "last"]

# The most common first words of a long-lived history. Opt-in, the default
# exclusion set is empty.
COMMON_EXCLUDE_PATTERNS: list[str] = [
    r"^echo ",
    r"^cd( |$)",
    r"^ls( |$)",
    r"^l( |$)",
    r"^la( |$)",
    r"^lt( |$)",
    r"^ll( |$)",
    r"^pwd$",
    r"^clear$",
    r"^exit$",
    r"^vi ",
    r"^vim ",
    r"^md ",
    r"^rd ",
    r"^mkdir ",
    r"^mv ",
    r"^rm ",
    r"^cp ",
    r"^cat ",
    r"^type ",
    r"^history",
    r"^git add",
    r"^git pull",
    r"^git status",
    r"^git checkout",
    r"^git mv",
    r"^git rm",
    r"^git diff",
    r"^gpull",
    r"^gst",
    r"help",
]

REVIEW_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"password", re.IGNORECASE),
    re.compile(r"ssh"),
    re.compile(r"secret", re.IGNORECASE),
    re.compile(r"base64"),
    re.compile(r"jasypt"),
]

LARGE_COMMAND_LENGTH = 200


def compile_patterns(patterns: Iterable[str]) -> list[re.Pattern[str]]:
    """→ Compiles user-supplied regexes; re.error propagates to the caller"""
    return [re.compile(pattern) for pattern in patterns]


def normalize_command(command: str) -> str:
    """→ The dedup key: whitespace runs collapsed, ends stripped"""
    return " ".join(command.split())


# ============================================================================
# FILTERING
# ============================================================================


def uninteresting_reason(
    record: HistoryRecord,
    patterns: list[re.Pattern[str]],
    min_length: int = 0,
) -> str | None:
    """→ Why a record is not worth keeping, or None if it is"""
    command = record.command.strip()
    if len(command) < min_length:
        return f"Shorter than {min_length} characters"
    if match := next((p for p in patterns if p.search(command)), None):
        return f"Matches '{match.pattern}'"
    return None


def is_uninteresting(
    record: HistoryRecord,
    patterns: list[re.Pattern[str]],
    min_length: int = 0,
) -> bool:
    return uninteresting_reason(record, patterns, min_length) is not None


# ============================================================================
# DEDUPLICATION
# ============================================================================


def duplicate_indices(records: list[HistoryRecord], keep: KeepPolicy = "last") -> set[int]:
    """
    Finds the positions of records that repeat an earlier or later command.

    Commands are compared after whitespace normalization. With keep="last" the
    most recent occurrence survives, with keep="first" the oldest one does.
    """
    if keep not in ("first", "last"):
        raise ValueError(f"keep must be 'first' or 'last', not {keep!r}")

    survivor: dict[str, int] = {}
    for i, record in enumerate(records):
        key = normalize_command(record.command)
        if keep == "last" or key not in survivor:
            survivor[key] = i

    survivors = set(survivor.values())
    return {i for i in range(len(records)) if i not in survivors}


def dedupe(records: list[HistoryRecord], keep: KeepPolicy = "last") -> list[HistoryRecord]:
    """→ Drops exact and near-duplicate commands, preserving the order of the rest"""
    removed = duplicate_indices(records, keep)
    return [record for i, record in enumerate(records) if i not in removed]


# ============================================================================
# REVIEW FLAGGING
# ============================================================================


def review_reason(record: HistoryRecord) -> str | None:
    if match := next((p for p in REVIEW_PATTERNS if p.search(record.command)), None):
        return f"Mentions '{match.pattern}'"
    return None


def needs_review(record: HistoryRecord) -> bool:
    return review_reason(record) is not None
