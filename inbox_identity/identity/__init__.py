"""
Identity Resolution Module

Duplicate discovery and contact merge:
- Similarity scoring of identity tuples
- Ranked duplicate candidates
- Field precedence for merges
- Relationship migration and the failure-atomic merge executor
"""

from .candidates import DuplicateFinder, rank_candidates
from .errors import (
    InvalidMergeError,
    MergeConflictError,
    MergeError,
    MergeNotFoundError,
    MergeTimeoutError,
    MigrationFailureError,
)
from .merge import MergeExecutor, MergeRun, MergeState
from .migrator import RelationshipMigrator
from .phone import normalize_phone
from .scoring import SimilarityScore, score_identities
from .store import ContactStore, ContactUnitOfWork, PostgresContactStore
from .strategy import resolve_merge
from .types import (
    BatchMergeFailure,
    BatchMergeResult,
    ContactRecord,
    ContactStatus,
    CustomFields,
    DuplicateCandidate,
    IdentityTuple,
    MergedContact,
    MergeStrategy,
    RelationCounts,
    ResolvedFields,
)

__all__ = [
    # Types
    "BatchMergeFailure",
    "BatchMergeResult",
    "ContactRecord",
    "ContactStatus",
    "CustomFields",
    "DuplicateCandidate",
    "IdentityTuple",
    "MergedContact",
    "MergeStrategy",
    "RelationCounts",
    "ResolvedFields",
    # Errors
    "InvalidMergeError",
    "MergeConflictError",
    "MergeError",
    "MergeNotFoundError",
    "MergeTimeoutError",
    "MigrationFailureError",
    # Components
    "ContactStore",
    "ContactUnitOfWork",
    "DuplicateFinder",
    "MergeExecutor",
    "MergeRun",
    "MergeState",
    "PostgresContactStore",
    "RelationshipMigrator",
    "normalize_phone",
    "rank_candidates",
    "resolve_merge",
    "score_identities",
    "SimilarityScore",
]
