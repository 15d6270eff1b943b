#!/usr/bin/env python3
"""
histshrink.py - Shrink a shell history file

Reads a bash or zsh history file and writes it back smaller:

1.  **Parse:** entries are read in whatever layout the file uses (zsh
    EXTENDED_HISTORY, bash with `#<epoch>` lines, or one command per line).
2.  **Scrub:** anything that looks like a credential is dropped, or with
    `--secrets redact` replaced by `[REDACTED]`. This is best-effort pattern
    matching, not a guarantee.
3.  **Filter:** commands matching an exclude pattern or shorter than
    `--min-length` go away.
4.  **Dedupe:** repeated commands (ignoring whitespace differences) are collapsed,
    keeping the most recent one unless `--keep first`.

The surviving entries keep their relative order and their timestamps. The file
is rewritten through a temporary file and an atomic rename, after saving a
timestamped backup next to it. Running the tool again on its own output changes
nothing.

Usage:
    histshrink                   # $HISTFILE, or ~/.bash_history
    histshrink ~/.zsh_history --exclude-common --secrets redact
    histshrink -n -l debug       # show what would happen
"""

from __future__ import annotations

import argparse
import logging
import os
import re
import shutil
import sys
import tempfile
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from rich import box
from rich.console import Console, Group
from rich.logging import RichHandler
from rich.panel import Panel
from rich.rule import Rule
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text as RichText
from rich.theme import Theme

from history_filter import (
    COMMON_EXCLUDE_PATTERNS,
    LARGE_COMMAND_LENGTH,
    KeepPolicy,
    compile_patterns,
    duplicate_indices,
    review_reason,
    uninteresting_reason,
)
from history_format import HistoryFormat, HistoryRecord, detect_format, parse_history, render_history
from secret_scan import SecretMode, scrub_record

# ============================================================================
# CONFIGURATION & CONSTANTS
# ============================================================================

CUSTOM_THEME = Theme({
    "title": "bold #C678DD",
    "reason": "bold #98C379",
    "context": "#5C6370",
    "border": "#4B5263",
    "rule": "#4B5263",
    "info": "#61AFEF",
    "success": "#98C379",
    "warning": "#E5C07B",
    "error": "#E06C75",
    "linenumber": "#3A3F4C",
})

console = Console(stderr=True, theme=CUSTOM_THEME)

log = logging.getLogger("histshrink")

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

LOG_LEVELS = {
    "off": logging.CRITICAL + 10,
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": TRACE,
}

DEFAULT_HISTORY_FILE = ".bash_history"
BACKUP_INFIX = ".histshrink."

REASON_SECRET = "Possible secret"
REASON_UNINTERESTING = "Uninteresting"
REASON_DUPLICATE = "Duplicate"


@dataclass
class Settings:
    """Options for one shrinking run."""

    secret_mode: SecretMode = SecretMode.DROP
    keep: KeepPolicy = "last"
    min_length: int = 0
    exclude_patterns: list[re.Pattern[str]] = field(default_factory=list)


# ============================================================================
# DATA STRUCTURES
# ============================================================================


@dataclass
class RemovedEntry:
    record: HistoryRecord
    reason: str
    detail: str = ""


@dataclass
class ShrinkResult:
    """What the pipeline kept, what it threw away and why."""

    fmt: HistoryFormat
    kept: list[HistoryRecord]
    removed: list[RemovedEntry] = field(default_factory=list)
    flagged: list[tuple[HistoryRecord, str]] = field(default_factory=list)
    redacted: int = 0

    def lines(self) -> list[str]:
        return render_history(self.kept, self.fmt)

    def reason_counts(self) -> Counter[str]:
        return Counter(entry.reason for entry in self.removed)


# ============================================================================
# PIPELINE
# ============================================================================


def shrink(
    records: list[HistoryRecord], settings: Settings, fmt: HistoryFormat = HistoryFormat.PLAIN
) -> ShrinkResult:
    """→ Runs records through scrub, filter and dedupe, preserving relative order"""
    result = ShrinkResult(fmt=fmt, kept=[])
    candidates: list[HistoryRecord] = []

    for record in records:
        scrubbed, matches = scrub_record(record, settings.secret_mode)
        if scrubbed is None:
            rules = ", ".join(sorted({m.rule for m in matches}))
            log.debug("Line %d: possible secret (%s), dropping", record.line_num + 1, rules)
            result.removed.append(RemovedEntry(record, REASON_SECRET, rules))
            continue
        if scrubbed is not record:
            log.debug("Line %d: redacted", record.line_num + 1)
            result.redacted += 1

        if reason := uninteresting_reason(scrubbed, settings.exclude_patterns, settings.min_length):
            log.debug("Line %d: %s: %s", record.line_num + 1, reason, scrubbed.command)
            result.removed.append(RemovedEntry(scrubbed, REASON_UNINTERESTING, reason))
            continue
        candidates.append(scrubbed)

    duplicates = duplicate_indices(candidates, settings.keep)
    for i, record in enumerate(candidates):
        if i in duplicates:
            log.debug("Line %d: duplicate: %s", record.line_num + 1, record.command)
            result.removed.append(RemovedEntry(record, REASON_DUPLICATE))
            continue
        result.kept.append(record)
        if reason := review_reason(record):
            result.flagged.append((record, reason))
        if len(record.command) >= LARGE_COMMAND_LENGTH:
            log.log(TRACE, "Line %d: %d characters long", record.line_num + 1, len(record.command))

    return result


def shrink_lines(lines: list[str], settings: Settings | None = None) -> ShrinkResult:
    """→ Parses raw history lines and shrinks them; `.lines()` on the result is the new file"""
    fmt = detect_format(lines)
    log.debug("Detected %s history format", fmt.value)
    return shrink(list(parse_history(lines, fmt)), settings or Settings(), fmt)


# ============================================================================
# FILE I/O
# ============================================================================


def _console_print(string="", *args, **kwargs) -> None:
    """→ Safe console printing with fallback"""
    try:
        console.print(string, *args, **kwargs)
    except UnicodeError:
        print(_printable(str(string)), file=sys.stderr)


def _printable(text: str) -> str:
    """History files may hold undecodable bytes, carried around as surrogates."""
    return text.encode("utf-8", "replace").decode("utf-8")


def resolve_history_path(path: Path | None = None) -> Path:
    """→ Explicit path, else $HISTFILE, else ~/.bash_history"""
    if path is not None:
        return path.expanduser()
    if histfile := os.environ.get("HISTFILE"):
        return Path(histfile).expanduser()
    return Path.home() / DEFAULT_HISTORY_FILE


def read_history_file(file_path: Path) -> list[str] | None:
    """→ File I/O: Reads the history file and returns its lines, handling errors"""
    try:
        text = file_path.read_text(encoding="utf-8", errors="surrogateescape")
    except FileNotFoundError:
        _console_print(f"[error]Error: History file not found at '{file_path}'[/error]")
        return None
    except OSError as e:
        _console_print(f"[error]Error reading file '{file_path}': {e}[/error]")
        return None

    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def backup_history(history_path: Path) -> Path | None:
    """→ File I/O: Copies the history file to a timestamped sibling"""
    timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    backup_path = history_path.with_name(f"{history_path.name}{BACKUP_INFIX}{timestamp}")
    try:
        shutil.copy2(history_path, backup_path)
    except OSError as e:
        _console_print(f"[error]Error writing to backup file {backup_path}: {e!r}[/error]")
        # Do not exit, the main file is still written atomically
        return None
    log.info("Backup saved to %s", backup_path)
    return backup_path


def write_history_atomically(history_path: Path, lines: list[str]) -> bool:
    """
    File I/O: Writes `lines` to `history_path` without ever leaving a partial file.

    The content goes to a temporary file in the same directory, is fsynced, and
    then renamed over the target. The target keeps its permission bits; a new
    file gets the 0600 mode of the temporary file.
    """
    # Write through a symlink instead of replacing it
    history_path = history_path.resolve()
    content = "\n".join(lines) + "\n" if lines else ""
    try:
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{history_path.name}.", suffix=".tmp", dir=history_path.parent
        )
    except OSError as e:
        _console_print(f"[error]Error creating a temporary file next to {history_path}: {e!r}[/error]")
        return False

    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", errors="surrogateescape", newline="\n") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        if history_path.exists():
            shutil.copymode(history_path, tmp_path)
        os.replace(tmp_path, history_path)
    except OSError as e:
        tmp_path.unlink(missing_ok=True)
        _console_print(f"[error]Error writing to history file {history_path}: {e!r}[/error]")
        return False
    return True


# ============================================================================
# REPORTING
# ============================================================================


def render_summary(result: ShrinkResult, input_line_count: int) -> Table:
    """→ UI: Table of how many entries went out for which reason"""
    table = Table(
        box=box.ROUNDED,
        border_style="border",
        title=f"[title]{result.fmt.value} history[/title]",
        show_footer=True,
    )
    table.add_column("Entries", footer="Lines")
    table.add_column("", justify="right", footer=f"{input_line_count} → {len(result.lines())}")

    counts = result.reason_counts()
    for reason in (REASON_SECRET, REASON_UNINTERESTING, REASON_DUPLICATE):
        if counts[reason]:
            table.add_row(f"[reason]{reason}[/reason]", str(counts[reason]))
    if result.redacted:
        table.add_row("[warning]Redacted in place[/warning]", str(result.redacted))
    table.add_row("[success]Kept[/success]", str(len(result.kept)))
    return table


def render_flagged(result: ShrinkResult) -> Panel:
    """→ UI: Kept commands that mention something sensitive, for a manual look"""
    width = len(str(max(record.line_num for record, _ in result.flagged) + 1))
    entries = Table.grid(padding=(0, 1))
    entries.add_column(width=width, justify="right", style="linenumber")
    entries.add_column()
    entries.add_column(style="context")

    for record, reason in result.flagged:
        syntax = Syntax(_printable(record.command), "bash", theme="monokai", line_numbers=False)
        entries.add_row(str(record.line_num + 1), syntax, reason)

    return Panel(
        Group(
            RichText("Kept, but worth a second look before sharing this file", style="italic"),
            Rule(style="rule"),
            entries,
        ),
        box=box.ROUNDED,
        title=f"[title]{len(result.flagged)} Flagged Command(s)[/title]",
        border_style="border",
        padding=(0, 1),
    )


def print_report(result: ShrinkResult, input_line_count: int) -> None:
    _console_print(render_summary(result, input_line_count))
    if result.flagged:
        _console_print()
        _console_print(render_flagged(result))


# ============================================================================
# COMMAND LINE
# ============================================================================


def _non_negative_int(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0, got {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="histshrink",
        description="Remove duplicates, noise and likely secrets from a shell history file",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    ap.add_argument(
        "file",
        nargs="?",
        type=Path,
        help="History file to shrink (default: $HISTFILE, else ~/.bash_history)",
    )
    ap.add_argument("-i", "--input", type=Path, help="Same as FILE")
    ap.add_argument(
        "-o",
        "--output",
        type=Path,
        help="Write the result here instead of rewriting the input in place",
    )
    ap.add_argument(
        "--secrets",
        choices=[mode.value for mode in SecretMode],
        default=SecretMode.DROP.value,
        help="What to do with entries that look like they contain a secret (default: drop)",
    )
    ap.add_argument(
        "--keep",
        choices=["first", "last"],
        default="last",
        help="Which occurrence of a duplicated command survives (default: last)",
    )
    ap.add_argument(
        "-m",
        "--min-length",
        type=_non_negative_int,
        default=0,
        help="Drop commands shorter than this many characters (default: 0)",
    )
    ap.add_argument(
        "--exclude",
        metavar="REGEX",
        action="append",
        default=[],
        help="Drop commands matching REGEX (repeatable)",
    )
    ap.add_argument(
        "--exclude-from",
        metavar="FILE",
        type=Path,
        help="Read exclude regexes from FILE, one per line; blank lines and #-comments ignored",
    )
    ap.add_argument(
        "--exclude-common",
        action="store_true",
        help="Also drop everyday commands (cd, ls, echo, git status, ...)",
    )
    ap.add_argument(
        "--no-backup",
        dest="backup",
        action="store_false",
        help="Do not keep a copy of the original file when rewriting in place",
    )
    ap.add_argument(
        "-n", "--dry-run", action="store_true", help="Report only, do not write anything"
    )
    ap.add_argument(
        "-l",
        "--log",
        choices=list(LOG_LEVELS),
        default="info",
        help="Logging level (default: info)",
    )
    ap.add_argument("-q", "--quiet", action="store_true", help="No report, errors only")
    return ap


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=LOG_LEVELS[level],
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, markup=False)],
        force=True,
    )


def read_exclude_file(file_path: Path) -> list[str] | None:
    try:
        text = file_path.read_text(encoding="utf-8")
    except OSError as e:
        _console_print(f"[error]Error reading exclude file '{file_path}': {e}[/error]")
        return None
    stripped = (line.strip() for line in text.splitlines())
    return [line for line in stripped if line and not line.startswith("#")]


def settings_from_args(parser: argparse.ArgumentParser, args: argparse.Namespace) -> Settings | None:
    """→ Builds run settings; invalid regexes are usage errors, an unreadable exclude file is None"""
    patterns: list[str] = list(args.exclude)
    if args.exclude_common:
        patterns.extend(COMMON_EXCLUDE_PATTERNS)
    if args.exclude_from is not None:
        from_file = read_exclude_file(args.exclude_from)
        if from_file is None:
            return None
        patterns.extend(from_file)

    try:
        compiled = compile_patterns(patterns)
    except re.error as e:
        parser.error(f"invalid exclude pattern {e.pattern!r}: {e}")

    return Settings(
        secret_mode=SecretMode(args.secrets),
        keep=args.keep,
        min_length=args.min_length,
        exclude_patterns=compiled,
    )


def main(argv: list[str] | None = None) -> int:
    """→ Main: Orchestrates reading, shrinking, reporting and writing"""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.file is not None and args.input is not None:
        parser.error("give the history file either as FILE or with --input, not both")

    level = args.log
    if args.quiet and LOG_LEVELS[level] < LOG_LEVELS["error"]:
        level = "error"
    configure_logging(level)
    settings = settings_from_args(parser, args)
    if settings is None:
        return 1

    history_path = resolve_history_path(args.file or args.input)
    output_path = args.output.expanduser() if args.output else history_path
    in_place = output_path.resolve() == history_path.resolve()

    original_lines = read_history_file(history_path)
    if original_lines is None:
        return 1

    result = shrink_lines(original_lines, settings)
    cleaned_lines = result.lines()

    if not args.quiet:
        print_report(result, len(original_lines))

    if args.dry_run:
        if not args.quiet:
            _console_print("[warning]Dry run, nothing written.[/warning]")
        return 0

    if in_place and cleaned_lines == original_lines:
        if not args.quiet:
            _console_print("[success]Nothing to shrink. History file unchanged.[/success]")
        return 0

    if in_place and args.backup:
        backup_history(history_path)

    if not write_history_atomically(output_path, cleaned_lines):
        return 1

    if not args.quiet:
        _console_print(f"Shrunk history saved to [success]{output_path}[/success]")
    return 0


if __name__ == "__main__":
    sys.exit(main())
