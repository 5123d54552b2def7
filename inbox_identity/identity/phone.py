"""
Phone number normalization.

Every channel hands us phone numbers in its own format. Contacts store the
normalized international form so exact comparison is a string equality.
"""

import re

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(raw: str | None) -> str | None:
    """
    Normalize a phone number to the platform's E.164-style form.

    Rules:
    - already international (leading "+"): keep the digits, drop formatting
    - 10 digits: US number without country code, prefix "+1"
    - 11 digits starting with 1: US number with country code, prefix "+"
    - anything else with digits: prefix a bare "+"

    Returns None when the input carries no digits at all.

    Examples:
        >>> normalize_phone("(555) 123-4567")
        '+15551234567'
        >>> normalize_phone("1-555-123-4567")
        '+15551234567'
        >>> normalize_phone("+44 20 7946 0958")
        '+442079460958'
        >>> normalize_phone("ext.")
    """
    if not raw:
        return None

    digits = _NON_DIGITS.sub("", raw)
    if not digits:
        return None

    if len(digits) == 10 and not raw.strip().startswith("+"):
        return f"+1{digits}"
    # International, US with country code and everything else share one form.
    return f"+{digits}"


def phones_match(a: str | None, b: str | None) -> bool:
    """True when both numbers normalize to the same value."""
    left = normalize_phone(a)
    return left is not None and left == normalize_phone(b)
