"""Regex-based detection and redaction of personal data and secrets.

The rules are plain data in ``PII_PATTERNS``; swap or extend the table
without touching ``detect``/``redact``. Known gaps: non-ASCII email local
parts and formatted currency amounts are not recognised.
"""

import re
from dataclasses import dataclass, field


@dataclass(frozen=True)
class PIIPattern:
    type: str
    pattern: re.Pattern
    replacement: str


@dataclass
class PIIMatch:
    type: str
    value: str
    start: int
    end: int


@dataclass
class RedactedText:
    text: str
    matches: list[PIIMatch] = field(default_factory=list)

    @property
    def redacted(self) -> bool:
        return bool(self.matches)


PII_PATTERNS: list[PIIPattern] = [
    PIIPattern(
        "private_key",
        re.compile(
            r"-----BEGIN\s+(?:RSA\s+)?PRIVATE\s+KEY-----[\s\S]*?-----END\s+(?:RSA\s+)?PRIVATE\s+KEY-----"
        ),
        "[PRIVATE_KEY]",
    ),
    PIIPattern("jwt", re.compile(r"eyJ[\w-]+\.eyJ[\w-]+\.[\w-]+"), "[JWT]"),
    PIIPattern("email", re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}"), "[EMAIL]"),
    PIIPattern("aws_key", re.compile(r"\b(?:AKIA|ABIA|ACCA|ASIA)[A-Z0-9]{16}\b"), "[AWS_KEY]"),
    PIIPattern(
        "api_key",
        re.compile(r"\b(?:sk|pk|api|key|token|secret|password)[_-]?[a-zA-Z0-9]{20,}\b", re.IGNORECASE),
        "[API_KEY]",
    ),
    PIIPattern(
        "password",
        re.compile(r"(?:password|passwd|pwd)\s*[:=]\s*[\"']?[^\s\"']+[\"']?", re.IGNORECASE),
        "[PASSWORD]",
    ),
    PIIPattern("credit_card", re.compile(r"\b(?:\d{4}[-\s]?){3}\d{4}\b"), "[CREDIT_CARD]"),
    PIIPattern("ssn", re.compile(r"\b\d{3}-\d{2}-\d{4}\b"), "[SSN]"),
    PIIPattern(
        "ip_address",
        re.compile(r"\b(?:(?:25[0-5]|2[0-4]\d|[01]?\d\d?)\.){3}(?:25[0-5]|2[0-4]\d|[01]?\d\d?)\b"),
        "[IP_ADDRESS]",
    ),
    # At least seven digits so years and line numbers survive
    PIIPattern(
        "phone",
        re.compile(r"(?<![\w.])\+?\d{1,4}[-.\s]?\(?\d{1,3}\)?[-.\s]?\d{3,4}[-.\s]?\d{3,4}(?![\w.])"),
        "[PHONE]",
    ),
]

_REPLACEMENTS = {p.type: p.replacement for p in PII_PATTERNS}


def detect(text: str, patterns: list[PIIPattern] | None = None) -> list[PIIMatch]:
    """Find PII in ``text``, ordered by position.

    Overlapping hits are resolved in favour of the earlier start, then the
    longer match, so every character is claimed by at most one match.
    """
    found = []
    for rule in patterns or PII_PATTERNS:
        for m in rule.pattern.finditer(text):
            if m.end() > m.start():
                found.append(PIIMatch(rule.type, m.group(0), m.start(), m.end()))

    found.sort(key=lambda m: (m.start, -(m.end - m.start)))
    matches: list[PIIMatch] = []
    for match in found:
        if matches and match.start < matches[-1].end:
            continue
        matches.append(match)
    return matches


def contains_pii(text: str) -> bool:
    return bool(detect(text))


def redact(text: str, patterns: list[PIIPattern] | None = None) -> RedactedText:
    """Replace every detected match with its type placeholder."""
    matches = detect(text, patterns)
    if not matches:
        return RedactedText(text=text)

    replacements = dict(_REPLACEMENTS)
    if patterns:
        replacements.update({p.type: p.replacement for p in patterns})

    parts = []
    cursor = 0
    for match in matches:
        parts.append(text[cursor:match.start])
        parts.append(replacements.get(match.type, "[REDACTED]"))
        cursor = match.end
    parts.append(text[cursor:])
    return RedactedText(text="".join(parts), matches=matches)
