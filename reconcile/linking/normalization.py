"""
Contact Linking Engine: Value Normalization
===========================================
Canonical forms for emails and phone numbers.

The API layer normalizes request values before they reach the engine, and
the concurrency coordinator uses the same functions to build identity keys.
The classifier itself compares values verbatim.
"""

import re
from typing import Optional

EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
PHONE_PATTERN = re.compile(r'^\+?[\d\s\-()]+$')

# Separators people type inside phone numbers
PHONE_STRIP_CHARS = re.compile(r'[^\d+]')


def normalize_email(email: Optional[str]) -> Optional[str]:
    """
    Lower-case and trim an email address.

    Returns None for None or blank input.

    Examples:
        >>> normalize_email("  Doc@HillValley.EDU ")
        'doc@hillvalley.edu'
    """
    if email is None:
        return None
    email = email.strip().lower()
    return email or None


def normalize_phone(phone: Optional[str]) -> Optional[str]:
    """
    Reduce a phone number to digits and a leading '+'.

    Returns None for None or input without any digits.

    Examples:
        >>> normalize_phone("+1 (555) 010-2030")
        '+15550102030'
    """
    if phone is None:
        return None
    phone = PHONE_STRIP_CHARS.sub('', str(phone).strip())
    if not any(ch.isdigit() for ch in phone):
        return None
    # Only a leading plus is meaningful
    return phone[0] + phone[1:].replace('+', '')


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_PATTERN.match(email))


def is_valid_phone(phone: str) -> bool:
    return bool(PHONE_PATTERN.match(phone))
