"""
Merge Executor

Orchestrates one contact merge as a single failure-atomic unit of work:

    REQUESTED -> VALIDATED -> MIGRATING -> FINALIZING -> COMPLETED
                        (any non-terminal state) -> FAILED

Deleting the secondary is the linearization point. Two merges racing for
the same secondary both lock it; only the first commit removes the row and
the loser gets MergeConflictError. Merges sharing a primary serialize on the
primary's row lock, so each one resolves fields from the other's committed
result and neither update is lost.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum

import structlog
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError

from inbox_identity.config import Settings, get_settings
from inbox_identity.monitoring import get_metrics

from .errors import (
    IdentityError,
    InvalidMergeError,
    MergeConflictError,
    MergeError,
    MergeNotFoundError,
    MergeTimeoutError,
    MigrationFailureError,
    ValidationError,
)
from .migrator import RelationshipMigrator
from .store import ContactStore
from .strategy import resolve_merge
from .types import (
    BatchMergeFailure,
    BatchMergeResult,
    MergedContact,
    MergeStrategy,
    RelationCounts,
)

logger = structlog.get_logger()


class MergeState(str, Enum):
    REQUESTED = "requested"
    VALIDATED = "validated"
    MIGRATING = "migrating"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"


_TRANSITIONS: dict[MergeState, tuple[MergeState, ...]] = {
    MergeState.REQUESTED: (MergeState.VALIDATED, MergeState.FAILED),
    MergeState.VALIDATED: (MergeState.MIGRATING, MergeState.FAILED),
    MergeState.MIGRATING: (MergeState.FINALIZING, MergeState.FAILED),
    MergeState.FINALIZING: (MergeState.COMPLETED, MergeState.FAILED),
    MergeState.COMPLETED: (),
    MergeState.FAILED: (),
}


@dataclass
class MergeRun:
    """Tracks one merge through its state machine."""

    primary_id: str
    secondary_id: str
    state: MergeState = MergeState.REQUESTED
    history: list[MergeState] = field(default_factory=lambda: [MergeState.REQUESTED])

    @property
    def is_terminal(self) -> bool:
        return not _TRANSITIONS[self.state]

    def advance(self, state: MergeState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal merge transition {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)
        logger.debug(
            "Merge state changed",
            primary_id=self.primary_id,
            secondary_id=self.secondary_id,
            state=state.value,
        )

    def fail(self, error: MergeError) -> MergeError:
        """Move to FAILED and stamp the error with where it happened."""
        failed_state = self.state
        if not self.is_terminal:
            self.advance(MergeState.FAILED)
        error.meta.setdefault("failed_state", failed_state.value)
        error.meta.setdefault("primary_id", self.primary_id)
        error.meta.setdefault("secondary_id", self.secondary_id)
        return error


def coerce_strategy(strategy: MergeStrategy | dict | None) -> MergeStrategy:
    if strategy is None:
        return MergeStrategy()
    if isinstance(strategy, MergeStrategy):
        return strategy
    try:
        return MergeStrategy.model_validate(strategy)
    except PydanticValidationError as exc:
        raise ValidationError(
            message="Invalid merge strategy",
            code="merge.invalid_strategy",
            meta={"errors": [error["msg"] for error in exc.errors()]},
        ) from exc


class MergeExecutor:
    """Merges duplicate contacts into a surviving primary."""

    def __init__(
        self,
        store: ContactStore,
        settings: Settings | None = None,
        migrator: RelationshipMigrator | None = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.migrator = migrator or RelationshipMigrator()

    async def merge(
        self,
        primary_id: str,
        secondary_id: str,
        strategy: MergeStrategy | dict | None = None,
    ) -> MergedContact:
        """
        Merge one secondary contact into a primary.

        Args:
            primary_id: Surviving contact
            secondary_id: Contact consolidated away and deleted
            strategy: Field precedence (defaults to prefer-primary)

        Returns:
            The updated primary with post-merge and migrated relation counts

        Raises:
            ValidationError: missing ids or malformed strategy
            InvalidMergeError: primary_id == secondary_id
            MergeNotFoundError: either contact missing at validation time
            MergeConflictError: secondary merged away by a concurrent request
            MigrationFailureError: relationship re-pointing failed (rolled back)
            MergeTimeoutError: transaction exceeded merge_timeout_seconds (rolled back)
        """
        if not primary_id or not secondary_id:
            raise ValidationError(
                message="Both primaryContactId and secondaryContactId are required",
                code="merge.missing_ids",
            )
        resolved_strategy = coerce_strategy(strategy)

        run = MergeRun(primary_id=primary_id, secondary_id=secondary_id)
        metrics = get_metrics()
        started = time.perf_counter()

        if primary_id == secondary_id:
            error = run.fail(InvalidMergeError())
            metrics.track_merge(error.code, time.perf_counter() - started)
            raise error

        timeout = self.settings.merge_timeout_seconds
        try:
            merged = await asyncio.wait_for(self._run(run, resolved_strategy, timeout), timeout=timeout)
        except asyncio.TimeoutError as exc:
            error = run.fail(MergeTimeoutError(meta={"timeout_seconds": timeout}))
            metrics.track_merge(error.code, time.perf_counter() - started)
            logger.warning("Merge timed out", primary_id=primary_id, secondary_id=secondary_id)
            raise error from exc
        except MergeError as exc:
            run.fail(exc)
            metrics.track_merge(exc.code, time.perf_counter() - started)
            logger.warning(
                "Merge failed",
                primary_id=primary_id,
                secondary_id=secondary_id,
                code=exc.code,
                failed_state=exc.meta.get("failed_state"),
            )
            raise
        except SQLAlchemyError as exc:
            error = run.fail(
                MigrationFailureError(
                    message="Storage failure during merge; no changes were applied",
                    meta={"error": type(exc).__name__},
                )
            )
            metrics.track_merge(error.code, time.perf_counter() - started)
            logger.warning(
                "Merge failed with storage error",
                primary_id=primary_id,
                secondary_id=secondary_id,
                error=str(exc),
            )
            raise error from exc

        metrics.track_merge("completed", time.perf_counter() - started)
        for relation, count in merged.migrated.model_dump(exclude={"total"}).items():
            metrics.track_migrated(relation, count)
        logger.info(
            "Contacts merged",
            primary_id=primary_id,
            secondary_id=secondary_id,
            migrated=merged.migrated.total,
        )
        return merged

    async def _run(self, run: MergeRun, strategy: MergeStrategy, timeout: float) -> MergedContact:
        async with self.store.unit_of_work(timeout_seconds=timeout) as uow:
            # Re-fetch: the caller's candidate list may be stale.
            primary = await uow.get_contact(run.primary_id)
            secondary = await uow.get_contact(run.secondary_id)
            missing = [
                contact_id
                for contact_id, contact in ((run.primary_id, primary), (run.secondary_id, secondary))
                if contact is None
            ]
            if missing:
                raise MergeNotFoundError(
                    message="Contact not found; re-run duplicate discovery",
                    meta={"missing_ids": missing},
                )

            locked = await uow.lock_contacts([run.primary_id, run.secondary_id])
            if run.primary_id not in locked or run.secondary_id not in locked:
                raise MergeConflictError(
                    meta={"missing_ids": [i for i in (run.primary_id, run.secondary_id) if i not in locked]}
                )
            primary = locked[run.primary_id]
            secondary = locked[run.secondary_id]
            run.advance(MergeState.VALIDATED)

            run.advance(MergeState.MIGRATING)
            migrated = await self.migrator.migrate(uow, run.secondary_id, run.primary_id)

            run.advance(MergeState.FINALIZING)
            fields = resolve_merge(primary, secondary, strategy)
            updated = await uow.update_contact(run.primary_id, fields)
            if not await uow.delete_contact(run.secondary_id):
                raise MergeConflictError()
            counts = await uow.count_relations(run.primary_id)

        run.advance(MergeState.COMPLETED)
        return MergedContact(**updated.model_dump(), counts=counts, migrated=migrated)

    async def merge_batch(self, primary_id: str, secondary_ids: list[str]) -> BatchMergeResult:
        """
        Fold several duplicates into one primary, in the given order.

        Each pair merge is atomic on its own; the batch is not. The first
        failure stops the batch and earlier merges stay applied. The result
        says which ids were merged and which one failed.

        Raises:
            ValidationError: empty, oversized, blank or repeated ids
            MergeNotFoundError: the primary does not exist
        """
        if not primary_id or not secondary_ids:
            raise ValidationError(
                message="Primary ID and duplicate IDs required",
                code="merge.missing_ids",
            )
        if len(secondary_ids) > self.settings.batch_merge_max_size:
            raise ValidationError(
                message=f"At most {self.settings.batch_merge_max_size} duplicates per batch",
                code="merge.batch_too_large",
            )
        if any(not secondary_id for secondary_id in secondary_ids):
            raise ValidationError(message="Duplicate IDs must not be blank", code="merge.missing_ids")
        if len(set(secondary_ids)) != len(secondary_ids):
            raise ValidationError(message="Duplicate IDs must be unique", code="merge.repeated_ids")

        merged_ids: list[str] = []
        last: MergedContact | None = None
        migrated = RelationCounts()
        failure: BatchMergeFailure | None = None

        for secondary_id in secondary_ids:
            try:
                last = await self.merge(primary_id, secondary_id)
            except IdentityError as exc:
                if not merged_ids and primary_id in exc.meta.get("missing_ids", []):
                    raise
                failure = BatchMergeFailure(contact_id=secondary_id, code=exc.code, message=exc.message)
                logger.warning(
                    "Batch merge stopped",
                    primary_id=primary_id,
                    failed_id=secondary_id,
                    merged=len(merged_ids),
                    code=exc.code,
                )
                break
            merged_ids.append(secondary_id)
            migrated = migrated + last.migrated

        if last is None:
            contact = await self._current(primary_id)
        else:
            contact = last.model_copy(update={"migrated": migrated})

        return BatchMergeResult(
            merged=len(merged_ids),
            merged_ids=merged_ids,
            failure=failure,
            contact=contact,
        )

    async def _current(self, primary_id: str) -> MergedContact:
        primary = await self.store.get_contact(primary_id)
        if primary is None:
            raise MergeNotFoundError(
                message="Primary contact not found",
                meta={"missing_ids": [primary_id]},
            )
        counts = await self.store.count_relations(primary_id)
        return MergedContact(**primary.model_dump(), counts=counts)
