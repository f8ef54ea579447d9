"""Output shaping applied to every tool result before it is returned or logged.

``sanitize_output`` strips markup and control characters, normalizes
whitespace and bounds the length. ``redact_pii`` scrubs personal data
patterns (phones, payment cards, SSNs, bank accounts, Polish PESEL, ID card
and passport numbers, and optionally emails).
"""

import re
from collections.abc import Callable

REDACTED = "[REDACTED]"
TRUNCATION_SUFFIX = "... [truncated]"

_HTML_TAG_RE = re.compile(r"<[^>]+>")
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_WHITESPACE_RE = re.compile(r"\s+")


def sanitize_output(
    text: str,
    *,
    max_length: int = 5000,
    remove_html: bool = True,
    remove_control_chars: bool = True,
    normalize_whitespace: bool = True,
) -> str:
    """Clean ``text`` and bound it to ``max_length`` characters."""
    if remove_html:
        text = _HTML_TAG_RE.sub("", text)
    if remove_control_chars:
        text = _CONTROL_CHARS_RE.sub("", text)
    if normalize_whitespace:
        text = _WHITESPACE_RE.sub(" ", text).strip()
    if len(text) > max_length:
        keep = max(max_length - len(TRUNCATION_SUFFIX), 0)
        text = text[:keep] + TRUNCATION_SUFFIX
    return text


# ---------------------------------------------------------------------------
# PII detection
# ---------------------------------------------------------------------------


def _luhn_valid(candidate: str) -> bool:
    digits = [int(c) for c in candidate if c.isdigit()]
    if not 13 <= len(digits) <= 19:
        return False
    total = 0
    for i, d in enumerate(reversed(digits)):
        if i % 2 == 1:
            d *= 2
            if d > 9:
                d -= 9
        total += d
    return total % 10 == 0


_PESEL_WEIGHTS = (1, 3, 7, 9, 1, 3, 7, 9, 1, 3)


def _pesel_valid(candidate: str) -> bool:
    digits = [int(c) for c in candidate]
    checksum = sum(w * d for w, d in zip(_PESEL_WEIGHTS, digits)) % 10
    return (10 - checksum) % 10 == digits[10]


# (category, pattern, optional validator). Order matters: longer account
# formats are matched before the shorter patterns they contain.
_PII_PATTERNS: list[tuple[str, re.Pattern[str], Callable[[str], bool] | None]] = [
    ("iban", re.compile(r"\b[A-Z]{2}\d{2}(?: ?[A-Z0-9]{4}){3,7}(?: ?[A-Z0-9]{1,3})?\b"), None),
    ("bank_account", re.compile(r"\b\d{2}(?: ?\d{4}){6}\b"), None),
    ("credit_card", re.compile(r"\b(?:\d[ -]?){12,18}\d\b"), _luhn_valid),
    ("pesel", re.compile(r"\b\d{11}\b"), _pesel_valid),
    ("ssn", re.compile(r"\b\d{3}-\d{2}-\d{4}\b"), None),
    ("polish_id_card", re.compile(r"\b[A-Z]{3} ?\d{6}\b"), None),
    ("polish_passport", re.compile(r"\b[A-Z]{2} ?\d{7}\b"), None),
    ("phone", re.compile(r"(?<![\w+])\+48[ -]?\d{3}[ -]?\d{3}[ -]?\d{3}(?!\d)"), None),
    ("phone", re.compile(r"(?<!\d)\d{3}[ -]\d{3}[ -]\d{3}(?!\d)"), None),
    ("phone", re.compile(r"(?<![\w+])\+\d{1,3}[ -]?\(?\d{1,4}\)?(?:[ -]?\d{2,4}){2,4}(?!\d)"), None),
    ("phone", re.compile(r"(?<!\d)\(?\d{3}\)?[ .-]\d{3}[ .-]\d{4}(?!\d)"), None),
]

_EMAIL_RE = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")


def redact_pii(
    text: str,
    *,
    redact_emails: bool = False,
    placeholder: str = REDACTED,
) -> tuple[str, list[str]]:
    """Replace personal data in ``text``.

    Returns:
        The redacted text and the categories that were found, in detection
        order without duplicates.
    """
    detected: list[str] = []

    def _note(category: str) -> None:
        if category not in detected:
            detected.append(category)

    if redact_emails:
        text, count = _EMAIL_RE.subn(placeholder, text)
        if count:
            _note("email")

    for category, pattern, validator in _PII_PATTERNS:
        def _replace(match: re.Match[str], category: str = category, validator=validator) -> str:
            if validator is not None and not validator(match.group(0)):
                return match.group(0)
            _note(category)
            return placeholder

        text = pattern.sub(_replace, text)

    return text, detected
