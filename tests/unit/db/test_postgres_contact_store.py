from __future__ import annotations

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import DBAPIError

from inbox_identity.identity.errors import MergeConflictError, MergeTimeoutError
from inbox_identity.identity.store import (
    PostgresContactStore,
    PostgresUnitOfWork,
    row_to_contact,
    sqlstate_of,
    translate_db_error,
)
from inbox_identity.identity.types import ContactStatus, CustomFields, IdentityTuple, ResolvedFields


class FakeDriverError(Exception):
    def __init__(self, sqlstate: str | None):
        super().__init__(f"driver error {sqlstate}")
        self.sqlstate = sqlstate


def _db_error(sqlstate: str | None) -> DBAPIError:
    return DBAPIError("SELECT 1", {}, FakeDriverError(sqlstate))


def _row(contact_id: str = "c1", **overrides) -> dict:
    row = {
        "id": contact_id,
        "first_name": "Jane",
        "last_name": "Doe",
        "email": "jane@example.com",
        "phone": "+15551234567",
        "whatsapp": None,
        "company": None,
        "job_title": None,
        "status": "LEAD",
        "tags": ["vip"],
        "custom_fields": {"leadSource": "webinar"},
        "last_contacted_at": None,
        "created_at": datetime(2026, 1, 1),
        "updated_at": None,
    }
    row.update(overrides)
    return row


def _result(*, first=None, rows=None, rowcount=None) -> MagicMock:
    result = MagicMock()
    result.mappings.return_value.first.return_value = first
    result.mappings.return_value.all.return_value = rows or []
    result.first.return_value = first
    result.rowcount = rowcount
    return result


def _session(*results) -> AsyncMock:
    session = AsyncMock()
    session.execute = AsyncMock(side_effect=list(results))
    session.__aenter__.return_value = session
    return session


def _sql(call) -> str:
    return " ".join(str(call.args[0]).split())


# =============================================================================
# Error mapping
# =============================================================================


@pytest.mark.unit
@pytest.mark.parametrize(
    ("sqlstate", "expected"),
    [("40001", MergeConflictError), ("40P01", MergeConflictError), ("57014", MergeTimeoutError)],
)
def test_transaction_failures_map_to_merge_errors(sqlstate, expected):
    translated = translate_db_error(_db_error(sqlstate))

    assert isinstance(translated, expected)
    assert translated.meta["sqlstate"] == sqlstate


@pytest.mark.unit
def test_other_database_errors_pass_through():
    error = _db_error("23505")

    assert translate_db_error(error) is error
    assert sqlstate_of(_db_error(None)) is None


# =============================================================================
# Row mapping
# =============================================================================


@pytest.mark.unit
def test_row_to_contact_parses_json_text_and_naive_timestamps():
    contact = row_to_contact(_row(custom_fields=json.dumps({"hubspotId": 42, "mergedFrom": ["x"]})))

    assert contact.status == ContactStatus.LEAD
    assert contact.custom_fields.to_storage()["hubspotId"] == 42
    assert contact.custom_fields.merged_from == ["x"]
    assert contact.created_at.tzinfo == timezone.utc


@pytest.mark.unit
def test_row_to_contact_accepts_structured_custom_fields():
    contact = row_to_contact(_row(custom_fields={"source": {"utm": "x"}, "mergedFrom": ["a", 7]}))

    assert contact.custom_fields.to_storage() == {"source": {"utm": "x"}, "mergedFrom": ["a", "7"]}


# =============================================================================
# Unit of work
# =============================================================================


@pytest.mark.asyncio
async def test_lock_contacts_locks_in_id_order():
    session = _session(_result(rows=[_row("a"), _row("b")]))

    locked = await PostgresUnitOfWork(session).lock_contacts(["b", "a", "b"])

    assert set(locked) == {"a", "b"}
    call = session.execute.await_args
    assert "ORDER BY id FOR UPDATE" in _sql(call)
    assert call.args[1] == {"ids": ["a", "b"]}


@pytest.mark.asyncio
async def test_reassign_relation_is_one_set_based_update():
    session = _session(_result(rowcount=4))

    moved = await PostgresUnitOfWork(session).reassign_relation("analytics_events", "s", "p")

    assert moved == 4
    sql = _sql(session.execute.await_args)
    assert sql.startswith("UPDATE analytics SET contact_id = :target_id WHERE contact_id = :source_id")
    assert "updated_at" not in sql


@pytest.mark.asyncio
async def test_reassign_relation_touches_updated_at_where_present():
    session = _session(_result(rowcount=2))

    await PostgresUnitOfWork(session).reassign_relation("messages", "s", "p")

    call = session.execute.await_args
    assert "updated_at = :now" in _sql(call)
    assert call.args[1]["source_id"] == "s"
    assert call.args[1]["target_id"] == "p"


@pytest.mark.asyncio
async def test_delete_contact_reports_missing_row():
    session = _session(_result(first=None))

    assert await PostgresUnitOfWork(session).delete_contact("s") is False


@pytest.mark.asyncio
async def test_update_contact_serializes_custom_fields_with_collaborator_keys():
    session = _session(_result(first=_row("p")))
    fields = ResolvedFields(
        first_name="Jane",
        tags=["a", "b"],
        custom_fields=CustomFields.from_storage({"leadSource": "webinar", "mergedFrom": ["s"]}),
    )

    await PostgresUnitOfWork(session).update_contact("p", fields)

    params = session.execute.await_args.args[1]
    assert json.loads(params["custom_fields"]) == {"leadSource": "webinar", "mergedFrom": ["s"]}
    assert params["status"] == "ACTIVE"
    assert params["tags"] == ["a", "b"]


@pytest.mark.asyncio
async def test_update_contact_missing_row_is_conflict():
    session = _session(_result(first=None))

    with pytest.raises(MergeConflictError):
        await PostgresUnitOfWork(session).update_contact("p", ResolvedFields())


@pytest.mark.asyncio
async def test_execute_translates_serialization_failure():
    session = AsyncMock()
    session.execute = AsyncMock(side_effect=_db_error("40001"))

    with pytest.raises(MergeConflictError):
        await PostgresUnitOfWork(session).get_contact("p")


# =============================================================================
# Store
# =============================================================================


@pytest.mark.asyncio
async def test_unit_of_work_sets_transaction_timeout_and_commits():
    session = _session(_result(), _result(first=_row("p")))
    store = PostgresContactStore(MagicMock(return_value=session))

    async with store.unit_of_work(timeout_seconds=2.5) as uow:
        await uow.get_contact("p")

    first = session.execute.await_args_list[0]
    assert "set_config('statement_timeout'" in _sql(first)
    assert first.args[1] == {"timeout": "2500"}
    session.commit.assert_awaited_once()
    session.rollback.assert_not_awaited()
    session.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_unit_of_work_rolls_back_and_translates():
    session = _session(_result())
    store = PostgresContactStore(MagicMock(return_value=session))

    with pytest.raises(MergeTimeoutError):
        async with store.unit_of_work(timeout_seconds=1):
            raise _db_error("57014")

    session.rollback.assert_awaited_once()
    session.commit.assert_not_awaited()
    session.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_unit_of_work_rolls_back_on_domain_error():
    session = _session()
    store = PostgresContactStore(MagicMock(return_value=session))

    with pytest.raises(MergeConflictError):
        async with store.unit_of_work():
            raise MergeConflictError()

    session.execute.assert_not_awaited()
    session.rollback.assert_awaited_once()


@pytest.mark.asyncio
async def test_lookup_candidates_runs_exact_pass_then_bounded_block():
    session = _session(
        _result(rows=[_row("a")]),
        _result(rows=[_row("a"), _row("b")]),
    )
    store = PostgresContactStore(MagicMock(return_value=session))

    found = await store.lookup_candidates(
        IdentityTuple(first_name="Jane", email=" JANE@example.com ", phone="(555) 123-4567"),
        exclude_contact_id="self",
        name_sample_limit=25,
    )

    assert [c.id for c in found] == ["a", "b"]
    exact, block = session.execute.await_args_list
    assert "lower(btrim(email)) = :email OR phone = :phone" in _sql(exact)
    assert exact.args[1] == {"exclude_id": "self", "email": "jane@example.com", "phone": "+15551234567"}
    assert "LIMIT :limit" in _sql(block)
    assert block.args[1]["limit"] == 25
    assert block.args[1]["first_name"] == "jane"


@pytest.mark.asyncio
async def test_lookup_candidates_skips_exact_pass_without_anchors():
    session = _session(_result(rows=[]))
    store = PostgresContactStore(MagicMock(return_value=session))

    assert await store.lookup_candidates(IdentityTuple(company="Acme")) == []
    assert session.execute.await_count == 1
