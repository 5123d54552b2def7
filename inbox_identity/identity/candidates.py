"""
Duplicate Candidate Finder

Scores a proposed identity against the contacts most likely to match it and
returns the ranked duplicates. Read-only: results are a snapshot, so callers
must let the merge executor re-validate before acting on them.
"""

from datetime import datetime, timezone
from typing import AsyncIterator

import structlog

from inbox_identity.config import Settings, get_settings
from inbox_identity.monitoring import get_metrics

from .errors import NotFoundError, ValidationError
from .scoring import score_identities
from .store import ContactStore
from .types import ContactRecord, DuplicateCandidate, IdentityTuple

logger = structlog.get_logger()

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def candidate_sort_key(candidate: DuplicateCandidate) -> tuple:
    """
    Total order: similarity desc, most recently contacted first (never
    contacted last), earliest created first, then contact id.
    """
    last_contacted = candidate.last_contacted_at
    created = candidate.created_at or _EPOCH
    return (
        -candidate.similarity,
        last_contacted is None,
        -(last_contacted.timestamp()) if last_contacted else 0.0,
        created.timestamp(),
        candidate.contact_id,
    )


def to_candidate(contact: ContactRecord, similarity: float, reasons: list[str]) -> DuplicateCandidate:
    return DuplicateCandidate(
        contact_id=contact.id,
        first_name=contact.first_name,
        last_name=contact.last_name,
        email=contact.email,
        phone=contact.phone,
        company=contact.company,
        similarity=similarity,
        match_reason=list(reasons),
        last_contacted_at=contact.last_contacted_at,
        created_at=contact.created_at,
    )


def rank_candidates(
    identity: IdentityTuple,
    population: list[ContactRecord],
    *,
    threshold: float,
    name_threshold: float,
    exclude_contact_id: str | None = None,
) -> list[DuplicateCandidate]:
    """Score a population against one identity and return ranked duplicates."""
    candidates = []
    for contact in population:
        if exclude_contact_id and contact.id == exclude_contact_id:
            continue
        result = score_identities(
            identity,
            contact.identity(),
            threshold=threshold,
            name_threshold=name_threshold,
        )
        if result.is_duplicate:
            candidates.append(to_candidate(contact, result.score, result.reasons))
    return sorted(candidates, key=candidate_sort_key)


class DuplicateFinder:
    """Finds existing contacts that likely duplicate a given identity."""

    def __init__(self, store: ContactStore, settings: Settings | None = None):
        self.store = store
        self.settings = settings or get_settings()

    async def find_duplicates(
        self,
        identity: IdentityTuple,
        *,
        exclude_contact_id: str | None = None,
        limit: int | None = None,
    ) -> list[DuplicateCandidate]:
        """
        Find ranked duplicate candidates for an identity tuple.

        Args:
            identity: Proposed or existing contact identity
            exclude_contact_id: Subject contact to leave out (self-check)
            limit: Maximum candidates (defaults to settings.max_candidates)

        Returns:
            Candidates sorted by similarity descending; empty when none qualify

        Raises:
            ValidationError: the identity carries no usable field
        """
        if identity.is_empty:
            get_metrics().duplicate_queries_total.labels(outcome="invalid").inc()
            raise ValidationError(
                message="At least one of firstName, lastName, email, phone or company is required",
                code="identity.empty_identity",
            )

        population = await self.store.lookup_candidates(
            identity,
            exclude_contact_id=exclude_contact_id,
            name_sample_limit=self.settings.name_sample_limit,
        )
        ranked = rank_candidates(
            identity,
            population,
            threshold=self.settings.duplicate_threshold,
            name_threshold=self.settings.fuzzy_name_threshold,
            exclude_contact_id=exclude_contact_id,
        )
        ranked = ranked[: limit or self.settings.max_candidates]

        get_metrics().track_duplicate_query(len(ranked))
        logger.debug(
            "Duplicate candidates found",
            scanned=len(population),
            candidates=len(ranked),
            excluded=exclude_contact_id,
        )
        return ranked

    async def find_duplicates_for_contact(self, contact_id: str) -> list[DuplicateCandidate]:
        """Self-check an existing contact against the rest of the population."""
        contact = await self.store.get_contact(contact_id)
        if contact is None:
            raise NotFoundError(message="Contact not found", meta={"contact_id": contact_id})
        if contact.identity().is_empty:
            return []
        return await self.find_duplicates(contact.identity(), exclude_contact_id=contact.id)

    async def find_duplicate_pairs(
        self,
        *,
        batch_size: int = 500,
    ) -> AsyncIterator[tuple[ContactRecord, DuplicateCandidate]]:
        """
        Sweep the whole population, yielding each duplicate pair once.

        A pair (a, b) is reported from the side with the smaller id.
        """
        async for contact in self.store.iter_contacts(batch_size=batch_size):
            if contact.identity().is_empty:
                continue
            for candidate in await self.find_duplicates(contact.identity(), exclude_contact_id=contact.id):
                if contact.id < candidate.contact_id:
                    yield contact, candidate
