#!/usr/bin/env python3
"""Tests for histshrink.py."""

import os
from pathlib import Path

import pytest

import histshrink
from history_filter import COMMON_EXCLUDE_PATTERNS, compile_patterns
from history_format import HistoryFormat
from histshrink import (
    REASON_DUPLICATE,
    REASON_SECRET,
    REASON_UNINTERESTING,
    Settings,
    main,
    read_history_file,
    resolve_history_path,
    shrink_lines,
    write_history_atomically,
)
from secret_scan import REDACTED, SecretMode

SHA1 = "0123456789abcdef0123456789abcdef01234567"

MIXED_HISTORY = [
    "ls -la",
    "make test",
    "git  show " + SHA1,
    "export API_TOKEN=abc123xyz",
    "",
    "make   test",
    "curl -H 'Authorization: Bearer abcdef1234567890' https://api.example.com",
    "curl -H 'Authorization: Bearer 0987654321fedcba' https://api.example.com",
    "ssh deploy@example.com",
    "ls -la",
    "cd /tmp",
]


def test_spec_example() -> None:
    """Test duplicate removed and secret line dropped."""
    lines = ["ls -la", "ls -la", "curl -H 'Authorization: Bearer abcdef1234567890'", "echo hi"]
    result = shrink_lines(lines)
    assert result.lines() == ["ls -la", "echo hi"]
    assert result.reason_counts() == {REASON_DUPLICATE: 1, REASON_SECRET: 1}


def test_zsh_keeps_latest_timestamp() -> None:
    """Test zsh layout and the surviving entry's timestamp."""
    lines = [": 100:0;make", ": 101:0;make", ": 102:4;git push"]
    result = shrink_lines(lines)
    assert result.fmt is HistoryFormat.ZSH_EXTENDED
    assert result.lines() == [": 101:0;make", ": 102:4;git push"]


def test_zsh_keep_first() -> None:
    """Test --keep first keeps the oldest timestamp."""
    lines = [": 100:0;make", ": 101:0;make", ": 102:0;git push"]
    result = shrink_lines(lines, Settings(keep="first"))
    assert result.lines() == [": 100:0;make", ": 102:0;git push"]


def test_bash_timestamped_output() -> None:
    """Test bash timestamp lines travel with their command."""
    lines = ["#1700000000", "make", "#1700000001", "echo hunter2 | pbcopy", "#1700000002", "make"]
    assert shrink_lines(lines).lines() == ["#1700000002", "make"]


def test_exclude_and_min_length() -> None:
    """Test the uninteresting filters."""
    settings = Settings(exclude_patterns=compile_patterns(COMMON_EXCLUDE_PATTERNS), min_length=5)
    result = shrink_lines(["cd /tmp", "make", "make test", "git status"], settings)
    assert result.lines() == ["make test"]
    assert result.reason_counts() == {REASON_UNINTERESTING: 3}


def test_redact_mode_collapses_redacted_duplicates() -> None:
    """Test two commands that only differ by a secret end up as one."""
    lines = [
        "curl -H 'Authorization: Bearer aaaaaaaa1111' https://api.example.com",
        "curl -H 'Authorization: Bearer bbbbbbbb2222' https://api.example.com",
    ]
    result = shrink_lines(lines, Settings(secret_mode=SecretMode.REDACT))
    assert result.lines() == [f"curl -H 'Authorization: Bearer {REDACTED}' https://api.example.com"]
    assert result.redacted == 2
    assert result.reason_counts() == {REASON_DUPLICATE: 1}


def test_review_flags_do_not_remove() -> None:
    """Test flagged commands are still written."""
    result = shrink_lines(["ssh deploy@example.com", "make"])
    assert result.lines() == ["ssh deploy@example.com", "make"]
    assert [(r.command, reason) for r, reason in result.flagged] == [
        ("ssh deploy@example.com", "Mentions 'ssh'")
    ]


@pytest.mark.parametrize("mode", list(SecretMode))
@pytest.mark.parametrize("keep", ["first", "last"])
def test_properties(mode: SecretMode, keep: str) -> None:
    """Test size, order, secret and idempotence guarantees on a mixed history."""
    settings = Settings(secret_mode=mode, keep=keep)  # type: ignore[arg-type]
    once = shrink_lines(MIXED_HISTORY, settings).lines()
    twice = shrink_lines(once, settings).lines()

    assert len(once) <= len(MIXED_HISTORY)
    assert twice == once
    assert not any(SHA1 in line for line in once)
    assert not any("abc123xyz" in line for line in once)

    positions = [MIXED_HISTORY.index(line) for line in once if line in MIXED_HISTORY]
    if keep == "first":
        assert positions == sorted(positions)


def test_properties_order_keep_last() -> None:
    """Test retained lines keep their relative order with keep=last."""
    lines = ["a", "b", "a", "c", "b"]
    assert shrink_lines(lines).lines() == ["a", "c", "b"]


def test_empty_input() -> None:
    """Test an empty file stays empty."""
    assert shrink_lines([]).lines() == []


def test_resolve_history_path(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Test explicit path, then $HISTFILE, then ~/.bash_history."""
    monkeypatch.setenv("HISTFILE", str(tmp_path / "hist"))
    assert resolve_history_path(tmp_path / "explicit") == tmp_path / "explicit"
    assert resolve_history_path() == tmp_path / "hist"
    monkeypatch.delenv("HISTFILE")
    monkeypatch.setenv("HOME", str(tmp_path))
    assert resolve_history_path() == tmp_path / ".bash_history"


def test_read_history_file_keeps_undecodable_bytes(tmp_path: Path) -> None:
    """Test non-UTF-8 bytes survive a read/write round trip."""
    path = tmp_path / "hist"
    path.write_bytes(b"echo caf\xe9\nls\n")
    lines = read_history_file(path)
    assert lines is not None
    assert write_history_atomically(path, lines)
    assert path.read_bytes() == b"echo caf\xe9\nls\n"


def test_read_missing_file(tmp_path: Path) -> None:
    """Test a missing file reads as None."""
    assert read_history_file(tmp_path / "nope") is None


def test_atomic_write_failure_keeps_original(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    """Test a failed rename leaves the original untouched and no temp file behind."""
    path = tmp_path / "hist"
    path.write_text("ls\nls\n")

    def fail_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(histshrink.os, "replace", fail_replace)
    assert not write_history_atomically(path, ["ls"])
    assert path.read_text() == "ls\nls\n"
    assert sorted(p.name for p in tmp_path.iterdir()) == ["hist"]


def test_atomic_write_keeps_mode(tmp_path: Path) -> None:
    """Test the rewritten file keeps its permission bits."""
    path = tmp_path / "hist"
    path.write_text("ls\n")
    path.chmod(0o640)
    assert write_history_atomically(path, ["make"])
    assert path.read_text() == "make\n"
    assert (path.stat().st_mode & 0o777) == 0o640


def test_main_rewrites_in_place(tmp_path: Path) -> None:
    """Test the default run rewrites the file and keeps a backup."""
    path = tmp_path / ".zsh_history"
    path.write_text(": 100:0;make\n: 101:0;make\n: 102:0;echo hunter2 | pbcopy\n")

    assert main([str(path), "-q"]) == 0
    assert path.read_text() == ": 101:0;make\n"
    backups = [p for p in tmp_path.iterdir() if p.name.startswith(".zsh_history.histshrink.")]
    assert len(backups) == 1
    assert backups[0].read_text().count("\n") == 3

    # Second run: nothing left to do, no new backup
    assert main([str(path), "-q"]) == 0
    assert path.read_text() == ": 101:0;make\n"
    assert len([p for p in tmp_path.iterdir() if ".histshrink." in p.name]) == 1


def test_main_uses_histfile(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Test $HISTFILE is the default input."""
    path = tmp_path / "hist"
    path.write_text("make\nmake\n")
    monkeypatch.setenv("HISTFILE", str(path))
    assert main(["-q", "--no-backup"]) == 0
    assert path.read_text() == "make\n"
    assert os.listdir(tmp_path) == ["hist"]


def test_main_output_elsewhere(tmp_path: Path) -> None:
    """Test --output leaves the input alone."""
    source = tmp_path / "hist"
    source.write_text("make\nmake\n")
    target = tmp_path / "shrunk_history"
    assert main(["-i", str(source), "-o", str(target), "-q"]) == 0
    assert source.read_text() == "make\nmake\n"
    assert target.read_text() == "make\n"


def test_main_dry_run(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    """Test --dry-run reports without writing."""
    path = tmp_path / "hist"
    path.write_text("make\nmake\nssh host\n")
    assert main([str(path), "--dry-run"]) == 0
    assert path.read_text() == "make\nmake\nssh host\n"
    err = capsys.readouterr().err
    assert "Duplicate" in err
    assert "Dry run" in err


def test_main_redact_and_exclude(tmp_path: Path) -> None:
    """Test --secrets redact together with --exclude-from."""
    path = tmp_path / "hist"
    path.write_text("mysql --password=hunter2 prod\nterraform plan\nmake\n")
    excludes = tmp_path / "excludes"
    excludes.write_text("# noisy\n^terraform \n\n")
    assert main([str(path), "--secrets", "redact", "--exclude-from", str(excludes), "-q", "--no-backup"]) == 0
    assert path.read_text() == f"mysql --password={REDACTED} prod\nmake\n"


def test_main_missing_file(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    """Test a missing history file aborts with status 1."""
    assert main([str(tmp_path / "nope")]) == 1
    assert "not found" in capsys.readouterr().err


def test_main_missing_exclude_file(tmp_path: Path) -> None:
    """Test an unreadable exclude file aborts with status 1."""
    path = tmp_path / "hist"
    path.write_text("make\n")
    assert main([str(path), "--exclude-from", str(tmp_path / "nope"), "-q"]) == 1
    assert path.read_text() == "make\n"


@pytest.mark.parametrize(
    "argv",
    [
        ["--exclude", "("],
        ["--min-length", "-1"],
        ["--secrets", "shred"],
        ["a", "--input", "b"],
    ],
)
def test_main_usage_errors(argv: list[str]) -> None:
    """Test bad arguments exit with status 2."""
    with pytest.raises(SystemExit) as exc_info:
        main(argv)
    assert exc_info.value.code == 2


def test_main_writes_through_symlink(tmp_path: Path) -> None:
    """Test a symlinked history file stays a symlink and the target is rewritten."""
    target = tmp_path / "dotfiles_hist"
    target.write_text("make\nmake\n")
    link = tmp_path / "hist"
    link.symlink_to(target)

    assert main([str(link), "-q", "--no-backup"]) == 0
    assert link.is_symlink()
    assert target.read_text() == "make\n"


def test_main_quiet_is_silent(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    """Test --quiet prints nothing on success, backup notice included."""
    path = tmp_path / "hist"
    path.write_text("make\nmake\n")
    assert main([str(path), "-q"]) == 0
    assert path.read_text() == "make\n"
    assert capsys.readouterr().err == ""


def test_argument_names_are_not_secrets() -> None:
    """Test flags and variables merely containing 'token' or 'password:' survive."""
    lines = [
        "python train.py --tokenizer=bert-base",
        "MAX_TOKENS=4096 python app.py",
        "grep password: /etc/app.conf",
    ]
    assert shrink_lines(lines).lines() == lines
