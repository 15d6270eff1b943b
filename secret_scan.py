"""
secret_scan.py - Best-effort detection and redaction of secrets in commands

Nothing here is a guarantee. The rules catch the usual ways credentials end up
in a shell history (auth headers, credential flags, FOO_TOKEN=... assignments,
well-known API key prefixes, long hex or base64 blobs) and will miss anything
more creative.
"""

from __future__ import annotations

import enum
import logging
import math
import re
from collections import Counter
from dataclasses import dataclass
from typing import Callable

from pygments.lexers.shell import BashLexer
from pygments.token import Operator, Punctuation, String

from history_format import HistoryRecord

log = logging.getLogger(__name__)

REDACTED = "[REDACTED]"

ENTROPY_MIN_LENGTH = 40
ENTROPY_THRESHOLD = 4.0
ENTROPY_CANDIDATE_RE = re.compile(r"[A-Za-z0-9+/_-]{%d,}={0,2}" % ENTROPY_MIN_LENGTH)

# A secret value, quoted or bare. Bare values must not be a $VARIABLE or
# $(substitution), and must not be the placeholder itself.
_VALUE = r"""(?:"(?!\$)[^"]+"|'[^']+'|(?!\$|\[REDACTED\])[^\s'"]+)"""


class SecretMode(enum.Enum):
    DROP = "drop"
    REDACT = "redact"


@dataclass(frozen=True)
class SecretRule:
    """
    A named secret pattern.

    `replacement` is passed to `re.sub`. Rules without one cannot be redacted,
    so a command they match is always dropped. `validator`, when set, gets each
    regex match and can reject it as a false positive.
    """

    name: str
    pattern: re.Pattern[str]
    replacement: str | None = REDACTED
    validator: Callable[[re.Match[str]], bool] | None = None

    def finditer(self, command: str) -> list[re.Match[str]]:
        return [
            m for m in self.pattern.finditer(command) if self.validator is None or self.validator(m)
        ]

    def redact(self, command: str) -> str:
        if self.replacement is None:
            return command
        replacement = self.replacement
        validator = self.validator
        return self.pattern.sub(
            lambda m: m.expand(replacement) if validator is None or validator(m) else m.group(),
            command,
        )


@dataclass(frozen=True)
class SecretMatch:
    rule: str
    text: str


def _inside_quotes(command: str, pos: int) -> bool:
    """→ Whether `pos` falls inside a quoted string"""
    single = double = False
    for ch in command[:pos]:
        if ch == "'" and not double:
            single = not single
        elif ch == '"' and not single:
            double = not double
    return single or double


def _same_shell_word(match: re.Match[str]) -> bool:
    # `grep password: file` names a file, `'password: hunter2'` is one word
    return not match.group(2) or _inside_quotes(match.string, match.start())


SECRET_RULES: list[SecretRule] = [
    # Credential context
    SecretRule(
        "authorization_header",
        re.compile(
            r"(?i)(authorization:\s*(?:bearer|basic|token)\s+)(?!\[REDACTED\])[A-Za-z0-9._~+/=-]{6,}"
        ),
        rf"\1{REDACTED}",
    ),
    SecretRule(
        "bearer_token",
        re.compile(r"(?i)(\bbearer\s+)(?!\[REDACTED\])[A-Za-z0-9._~+/=-]{16,}"),
        rf"\1{REDACTED}",
    ),
    SecretRule(
        "credential_flag",
        re.compile(
            r"(?i)((?<![\w-])--?(?:password|passwd|passphrase|pass|pwd|token|secret|"
            r"api[-_]?key|access[-_]?key|secret[-_]?key|client[-_]?secret|auth[-_]?token)"
            r"(?:=|\s+))" + _VALUE
        ),
        rf"\1{REDACTED}",
    ),
    SecretRule(
        "secret_assignment",
        re.compile(
            r"(?i)\b([A-Z0-9_]*(?:PASSWORD|PASSWD|SECRET|SECRET_?KEY|TOKEN|API_?KEY|ACCESS_?KEY|"
            r"PRIVATE_?KEY)=)" + _VALUE
        ),
        rf"\1{REDACTED}",
    ),
    SecretRule(
        "password_colon",
        re.compile(r"(?i)\b((?:password|passwd):(\s*))" + _VALUE),
        rf"\1{REDACTED}",
        _same_shell_word,
    ),
    SecretRule(
        "basic_auth_flag",
        re.compile(r"((?<![\w-])(?:-u|--user)\s+[^\s:'\"]+:)" + _VALUE),
        rf"\1{REDACTED}",
    ),
    SecretRule(
        "url_credentials",
        re.compile(r"(\b[a-zA-Z][a-zA-Z0-9+.-]*://[^\s:/@]+:)(?!\[REDACTED\])[^\s@/]+(@)"),
        rf"\1{REDACTED}\2",
    ),
    # Well-known key formats
    SecretRule("aws_access_key", re.compile(r"\b(?:AKIA|ASIA)[0-9A-Z]{16}\b")),
    SecretRule("github_token", re.compile(r"\bgh[pousr]_[A-Za-z0-9]{36,}\b")),
    SecretRule("github_pat", re.compile(r"\bgithub_pat_[A-Za-z0-9_]{22,}\b")),
    SecretRule("gitlab_token", re.compile(r"\bglpat-[A-Za-z0-9_-]{20,}")),
    SecretRule("slack_token", re.compile(r"\bxox[abposr]-[A-Za-z0-9-]{10,}")),
    SecretRule("stripe_key", re.compile(r"\b[sr]k_live_[0-9A-Za-z]{16,}\b")),
    SecretRule(
        "sk_api_key",
        re.compile(r"\bsk-(?=[\w-]*[0-9])(?=[\w-]*[A-Z])[A-Za-z0-9_-]{20,}"),
    ),
    SecretRule("google_api_key", re.compile(r"\bAIza[0-9A-Za-z_-]{35}")),
    SecretRule(
        "jwt", re.compile(r"\beyJ[A-Za-z0-9_-]{8,}\.[A-Za-z0-9_-]{8,}\.[A-Za-z0-9_-]{8,}")
    ),
    SecretRule("long_hex", re.compile(r"(?<![0-9A-Za-z])[0-9a-fA-F]{32,}(?![0-9A-Za-z])")),
    # Drop-only
    SecretRule("private_key", re.compile(r"-----BEGIN [A-Z ]*PRIVATE KEY-----"), None),
    SecretRule(
        "clipboard_pipe",
        re.compile(r"\b(?:echo|printf)\s.*\|\s*(?:pbcopy|clip\.exe|base64|xclip|xsel|wl-copy)\b"),
        None,
    ),
]

_lexer = BashLexer(stripnl=False, ensurenl=False)


# ============================================================================
# HIGH-ENTROPY WORDS
# ============================================================================


def shannon_entropy(text: str) -> float:
    if not text:
        return 0.0
    counts = Counter(text)
    length = len(text)
    return -sum(n / length * math.log2(n / length) for n in counts.values())


def shell_words(command: str) -> list[str]:
    """→ Splits a command into shell words with quotes removed, using the Pygments bash lexer"""
    pieces: list[str] = []
    for ttype, value in _lexer.get_tokens(command):
        if ttype in Punctuation or (ttype in Operator and value in ("&&", "||")):
            pieces.append(" ")
        elif ttype in String:
            pieces.append(value.strip("$'\"`"))
        else:
            pieces.append(value)
    return "".join(pieces).split()


def _looks_random(candidate: str) -> bool:
    if not (
        any(c.isupper() for c in candidate)
        and any(c.islower() for c in candidate)
        and any(c.isdigit() for c in candidate)
    ):
        return False
    # Long paths have the right alphabet but short segments
    if "/" in candidate and max(len(seg) for seg in candidate.split("/")) < 20:
        return False
    return shannon_entropy(candidate) >= ENTROPY_THRESHOLD


def high_entropy_words(command: str) -> list[str]:
    """→ Base64-ish blobs that look randomly generated"""
    found: list[str] = []
    for word in shell_words(command):
        for match in ENTROPY_CANDIDATE_RE.finditer(word):
            candidate = match.group()
            if candidate not in found and _looks_random(candidate):
                found.append(candidate)
    return found


# ============================================================================
# DETECTION & REDACTION
# ============================================================================


def find_secrets(command: str, rules: list[SecretRule] | None = None) -> list[SecretMatch]:
    """→ Every secret-looking match in the command, rule by rule"""
    matches = [
        SecretMatch(rule.name, m.group())
        for rule in (SECRET_RULES if rules is None else rules)
        for m in rule.finditer(command)
    ]
    matches.extend(SecretMatch("high_entropy", word) for word in high_entropy_words(command))
    return matches


def contains_secret(record: HistoryRecord) -> bool:
    return bool(find_secrets(record.command))


def redact_command(command: str, rules: list[SecretRule] | None = None) -> str:
    """→ Replaces secrets in place with the REDACTED placeholder; drop-only rules are left alone"""
    for rule in SECRET_RULES if rules is None else rules:
        command = rule.redact(command)
    for word in high_entropy_words(command):
        command = command.replace(word, REDACTED)
    return command


def scrub_record(
    record: HistoryRecord, mode: SecretMode = SecretMode.DROP
) -> tuple[HistoryRecord | None, list[SecretMatch]]:
    """
    Applies the secret policy to a record.

    Returns the record to keep (possibly redacted) or None if it must be dropped,
    together with the matches found in the original command. In redact mode a
    record is still dropped when a drop-only rule fired or when something is left
    after redaction.
    """
    matches = find_secrets(record.command)
    if not matches:
        return record, matches

    if mode is SecretMode.DROP:
        return None, matches

    redacted = redact_command(record.command)
    leftovers = find_secrets(redacted)
    if leftovers:
        log.debug(
            "Line %d: cannot redact %s, dropping",
            record.line_num + 1,
            ", ".join(sorted({m.rule for m in leftovers})),
        )
        return None, matches
    return record.with_command(redacted), matches
