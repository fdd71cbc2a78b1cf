"""PII redaction for prompt text leaving the process.

Patterns are applied in a fixed order so that a social-security or card
number is replaced before the broader phone pattern can consume part of it.
A phone number needs an area code plus seven digits, so short product codes
such as ``SKU 1234567`` are left alone.
"""

from __future__ import annotations

import re

# ---------------------------------------------------------------------------
# Patterns + placeholders (order matters)
# ---------------------------------------------------------------------------

SSN_PATTERN = re.compile(r"\b\d{3}-\d{2}-\d{4}\b")
CREDIT_CARD_PATTERN = re.compile(r"\b(?:\d{4}[-\s]?){3}\d{4}\b")
EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
PHONE_PATTERN = re.compile(
    r"(?<!\d)(?:\+?1[-.\s]?)?\(?\d{3}\)?[-.\s]\d{3}[-.\s]?\d{4}(?!\d)"
)

REDACTIONS: tuple[tuple[re.Pattern[str], str], ...] = (
    (SSN_PATTERN, "[SSN]"),
    (CREDIT_CARD_PATTERN, "[CC]"),
    (EMAIL_PATTERN, "[EMAIL]"),
    (PHONE_PATTERN, "[PHONE]"),
)


def redact(text: str) -> str:
    """Replace SSNs, card numbers, emails and phone numbers with placeholders."""
    for pattern, placeholder in REDACTIONS:
        text = pattern.sub(placeholder, text)
    return text
