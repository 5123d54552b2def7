"""
Contact Identity API Routes

Entry points used by contact CRUD, CSV import and CRM sync collaborators:
- Finding likely duplicates for a proposed or existing contact
- Merging one duplicate into a primary contact
- Folding several duplicates into one primary
"""

from fastapi import APIRouter, Depends, Request
from pydantic import Field

from inbox_identity.identity.candidates import DuplicateFinder
from inbox_identity.identity.merge import MergeExecutor
from inbox_identity.identity.store import ContactStore
from inbox_identity.identity.types import (
    BatchMergeResult,
    DuplicateCandidate,
    IdentityTuple,
    MergedContact,
    MergeStrategy,
    WireModel,
)

router = APIRouter(prefix="/contacts", tags=["contacts"])


# =============================================================================
# Request / Response Models
# =============================================================================


class DuplicatesResponse(WireModel):
    duplicates: list[DuplicateCandidate]


class MergeRequest(WireModel):
    primary_contact_id: str = ""
    secondary_contact_id: str = ""
    merge_strategy: MergeStrategy | None = None


class MergeResponse(WireModel):
    success: bool = True
    contact: MergedContact
    message: str


class BatchMergeRequest(WireModel):
    primary_id: str = ""
    duplicate_ids: list[str] = Field(default_factory=list)


# =============================================================================
# Dependencies
# =============================================================================


def get_contact_store(request: Request) -> ContactStore:
    """The process-wide contact store created at startup."""
    return request.app.state.contact_store


def get_duplicate_finder(store: ContactStore = Depends(get_contact_store)) -> DuplicateFinder:
    return DuplicateFinder(store)


def get_merge_executor(store: ContactStore = Depends(get_contact_store)) -> MergeExecutor:
    return MergeExecutor(store)


# =============================================================================
# Endpoints
# =============================================================================


@router.post("/duplicates", response_model=DuplicatesResponse, response_model_by_alias=True)
async def find_duplicates(
    identity: IdentityTuple,
    finder: DuplicateFinder = Depends(get_duplicate_finder),
):
    """Find existing contacts that likely duplicate a proposed identity."""
    duplicates = await finder.find_duplicates(identity)
    return DuplicatesResponse(duplicates=duplicates)


@router.get("/{contact_id}/duplicates", response_model=DuplicatesResponse, response_model_by_alias=True)
async def find_contact_duplicates(
    contact_id: str,
    finder: DuplicateFinder = Depends(get_duplicate_finder),
):
    """Find likely duplicates of an existing contact (excluding itself)."""
    duplicates = await finder.find_duplicates_for_contact(contact_id)
    return DuplicatesResponse(duplicates=duplicates)


@router.post("/merge", response_model=MergeResponse, response_model_by_alias=True)
async def merge_contacts(
    request: MergeRequest,
    executor: MergeExecutor = Depends(get_merge_executor),
):
    """
    Merge a secondary contact into a primary.

    The secondary's messages, notes, scheduled messages and analytics move to
    the primary and the secondary is deleted. On 404/409 the caller should
    re-run duplicate discovery instead of retrying.
    """
    merged = await executor.merge(
        request.primary_contact_id,
        request.secondary_contact_id,
        request.merge_strategy,
    )
    return MergeResponse(contact=merged, message="Contacts merged successfully")


@router.post("/merge/batch", response_model=BatchMergeResult, response_model_by_alias=True)
async def merge_contacts_batch(
    request: BatchMergeRequest,
    executor: MergeExecutor = Depends(get_merge_executor),
):
    """
    Merge several duplicates into one primary, in order.

    Stops at the first failure; merges before it stay applied and the
    response names the id that failed.
    """
    return await executor.merge_batch(request.primary_id, request.duplicate_ids)
