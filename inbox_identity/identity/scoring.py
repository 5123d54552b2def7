"""
Similarity Scorer

Compares two identity tuples and explains why they look like the same person.
Scoring is additive so several weak signals can stack past the threshold,
while a single exact email or phone match always qualifies on its own.
"""

import re
from dataclasses import dataclass, field

from rapidfuzz.distance import Levenshtein

from .phone import normalize_phone
from .types import IdentityTuple

# Signal weights; the combined score is their capped sum
SIGNAL_WEIGHTS = {
    "exact-email": 0.9,
    "exact-phone": 0.8,
    "fuzzy-name": 0.3,
    "company-match": 0.1,  # Secondary signal only
}

DEFAULT_DUPLICATE_THRESHOLD = 0.5
DEFAULT_NAME_THRESHOLD = 0.85

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True, slots=True)
class SimilarityScore:
    score: float
    reasons: list[str] = field(default_factory=list)
    is_duplicate: bool = False

    @property
    def has_exact_match(self) -> bool:
        return "exact-email" in self.reasons or "exact-phone" in self.reasons


def normalize_name(value: str | None) -> str:
    if not value:
        return ""
    return _WHITESPACE.sub(" ", value.strip().lower())


def normalize_email(value: str | None) -> str:
    if not value:
        return ""
    return value.strip().lower()


def normalize_company(value: str | None) -> str:
    return normalize_name(value)


def name_similarity(a: str | None, b: str | None) -> float:
    """Normalized edit-distance similarity of two names, 0.0 when either is blank."""
    left = normalize_name(a)
    right = normalize_name(b)
    if not left or not right:
        return 0.0
    return Levenshtein.normalized_similarity(left, right)


def score_identities(
    a: IdentityTuple,
    b: IdentityTuple,
    *,
    threshold: float = DEFAULT_DUPLICATE_THRESHOLD,
    name_threshold: float = DEFAULT_NAME_THRESHOLD,
) -> SimilarityScore:
    """
    Score how likely two identity tuples describe the same person.

    Args:
        a: First identity tuple
        b: Second identity tuple
        threshold: Combined score at which a pair becomes a duplicate candidate
        name_threshold: Name similarity ratio that must be exceeded to count

    Returns:
        SimilarityScore with the capped score, ordered reasons and the verdict
    """
    reasons: list[str] = []

    email_a = normalize_email(a.email)
    if email_a and email_a == normalize_email(b.email):
        reasons.append("exact-email")

    phone_a = normalize_phone(a.phone)
    if phone_a and phone_a == normalize_phone(b.phone):
        reasons.append("exact-phone")

    if name_similarity(a.full_name, b.full_name) > name_threshold:
        reasons.append("fuzzy-name")

    company_a = normalize_company(a.company)
    if company_a and company_a == normalize_company(b.company):
        reasons.append("company-match")

    score = min(1.0, sum(SIGNAL_WEIGHTS[reason] for reason in reasons))
    score = round(score, 6)

    exact = "exact-email" in reasons or "exact-phone" in reasons
    primary_signal = any(reason != "company-match" for reason in reasons)
    is_duplicate = exact or (primary_signal and score >= threshold)

    return SimilarityScore(score=score, reasons=reasons, is_duplicate=is_duplicate)
