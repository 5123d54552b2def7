from __future__ import annotations

import pytest

from inbox_identity.identity.errors import MigrationFailureError
from inbox_identity.identity.migrator import RelationshipMigrator
from tests.support.contact_store import InMemoryContactStore


def _seed(store: InMemoryContactStore) -> None:
    store.add_contact("p")
    store.add_contact("s")
    store.add_records("p", "messages", 2)
    store.add_records("s", "messages", 3)
    store.add_records("s", "notes", 1)
    store.add_records("s", "scheduled_messages", 2)
    store.add_records("s", "analytics_events", 4)


@pytest.mark.asyncio
async def test_migrate_moves_every_relation(contact_store: InMemoryContactStore):
    _seed(contact_store)
    secondary_records = contact_store.relation_ids("s")

    async with contact_store.unit_of_work() as uow:
        await uow.lock_contacts(["p", "s"])
        moved = await RelationshipMigrator().migrate(uow, "s", "p")

    assert moved.messages == 3
    assert moved.notes == 1
    assert moved.scheduled_messages == 2
    assert moved.analytics_events == 4
    assert moved.total == 10
    assert contact_store.relation_ids("s") == set()
    assert secondary_records <= contact_store.relation_ids("p")


@pytest.mark.asyncio
async def test_migrate_with_nothing_to_move(contact_store: InMemoryContactStore):
    contact_store.add_contact("p")
    contact_store.add_contact("s")

    async with contact_store.unit_of_work() as uow:
        await uow.lock_contacts(["p", "s"])
        moved = await RelationshipMigrator().migrate(uow, "s", "p")

    assert moved.total == 0


@pytest.mark.asyncio
async def test_storage_failure_names_relation_and_rolls_back(contact_store: InMemoryContactStore):
    _seed(contact_store)
    contact_store.fail_relations.add("scheduled_messages")
    before = contact_store.relation_ids("s")

    with pytest.raises(MigrationFailureError) as exc_info:
        async with contact_store.unit_of_work() as uow:
            await uow.lock_contacts(["p", "s"])
            await RelationshipMigrator().migrate(uow, "s", "p")

    assert exc_info.value.meta["relation"] == "scheduled_messages"
    assert exc_info.value.status_code == 500
    # messages and notes were moved inside the transaction, then discarded
    assert contact_store.relation_ids("s") == before
    assert contact_store.rollbacks == 1
