"""
Relationship Migrator

Re-points everything a secondary contact owns onto the primary. Each
relation moves with a single set-based UPDATE inside the caller's unit of
work; a failure aborts the whole transaction rather than leaving some rows
moved and others not.
"""

import structlog
from sqlalchemy.exc import SQLAlchemyError

from .errors import MergeError, MigrationFailureError
from .store import RELATION_TABLES, ContactUnitOfWork
from .types import RelationCounts

logger = structlog.get_logger()


class RelationshipMigrator:
    """Moves messages, notes, scheduled messages and analytics events."""

    relations: tuple[str, ...] = tuple(RELATION_TABLES)

    async def migrate(
        self,
        uow: ContactUnitOfWork,
        secondary_id: str,
        primary_id: str,
    ) -> RelationCounts:
        """
        Re-point all relations from secondary to primary.

        Args:
            uow: Open unit of work (the enclosing merge transaction)
            secondary_id: Contact being consolidated away
            primary_id: Surviving contact

        Returns:
            Number of rows moved per relation

        Raises:
            MigrationFailureError: a relation could not be re-pointed
        """
        moved: dict[str, int] = {}
        for relation in self.relations:
            try:
                moved[relation] = await uow.reassign_relation(relation, secondary_id, primary_id)
            except MergeError:
                raise
            except SQLAlchemyError as exc:
                logger.warning(
                    "Relation re-point failed",
                    relation=relation,
                    secondary_id=secondary_id,
                    primary_id=primary_id,
                    error=str(exc),
                )
                raise MigrationFailureError(
                    message=f"Failed to move {relation.replace('_', ' ')} to the surviving contact",
                    meta={"relation": relation},
                ) from exc

        counts = RelationCounts(**moved)
        logger.debug(
            "Relations re-pointed",
            secondary_id=secondary_id,
            primary_id=primary_id,
            moved=counts.total,
        )
        return counts
