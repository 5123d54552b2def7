"""
Contact storage port and its PostgreSQL adapter.

Every component receives a ContactStore explicitly. Writes happen inside a
unit of work: one database transaction that commits when the block exits
cleanly and rolls back on any error, so a merge is never half applied.
"""

from __future__ import annotations

import json
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any, AsyncGenerator, AsyncIterator, Mapping, Protocol, Sequence

import structlog
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from inbox_identity.kernel.time import coerce_utc, utc_now

from .errors import MergeConflictError, MergeTimeoutError
from .phone import normalize_phone
from .scoring import normalize_company, normalize_email, normalize_name
from .types import (
    ContactRecord,
    ContactStatus,
    CustomFields,
    IdentityTuple,
    RelationCounts,
    ResolvedFields,
)

logger = structlog.get_logger()

# Relation name -> (table, has updated_at column)
RELATION_TABLES: dict[str, tuple[str, bool]] = {
    "messages": ("messages", True),
    "notes": ("notes", True),
    "scheduled_messages": ("scheduled_messages", True),
    "analytics_events": ("analytics", False),
}

# PostgreSQL error classes we translate into merge errors
_SERIALIZATION_FAILURE = "40001"
_DEADLOCK_DETECTED = "40P01"
_QUERY_CANCELED = "57014"

_CONTACT_COLUMNS = """
    id, first_name, last_name, email, phone, whatsapp, company, job_title,
    status, tags, custom_fields, last_contacted_at, created_at, updated_at
"""


class ContactUnitOfWork(Protocol):
    """Operations available inside one storage transaction."""

    async def get_contact(self, contact_id: str) -> ContactRecord | None:
        ...

    async def lock_contacts(self, contact_ids: Sequence[str]) -> dict[str, ContactRecord]:
        """Lock the given contacts for update (in id order) and return those that exist."""
        ...

    async def reassign_relation(self, relation: str, source_id: str, target_id: str) -> int:
        """Re-point every record of one relation from source to target; returns rows moved."""
        ...

    async def update_contact(self, contact_id: str, fields: ResolvedFields) -> ContactRecord:
        ...

    async def delete_contact(self, contact_id: str) -> bool:
        """Delete a contact; False when no row was removed."""
        ...

    async def count_relations(self, contact_id: str) -> RelationCounts:
        ...


class ContactStore(Protocol):
    """Storage port used by the duplicate finder and merge executor."""

    def unit_of_work(
        self, *, timeout_seconds: float | None = None
    ) -> AbstractAsyncContextManager[ContactUnitOfWork]:
        ...

    async def get_contact(self, contact_id: str) -> ContactRecord | None:
        ...

    async def count_relations(self, contact_id: str) -> RelationCounts:
        ...

    async def lookup_candidates(
        self,
        identity: IdentityTuple,
        *,
        exclude_contact_id: str | None = None,
        name_sample_limit: int = 200,
    ) -> list[ContactRecord]:
        """
        Indexed pre-filter for duplicate discovery.

        Returns every contact sharing the normalized email or phone, plus at
        most `name_sample_limit` contacts sharing a normalized first name,
        last name or company.
        """
        ...

    def iter_contacts(self, *, batch_size: int = 500) -> AsyncIterator[ContactRecord]:
        ...

    async def ping(self) -> None:
        ...


def sqlstate_of(exc: DBAPIError) -> str | None:
    """Extract the PostgreSQL SQLSTATE from a wrapped driver error."""
    for candidate in (exc.orig, getattr(exc.orig, "__cause__", None)):
        if candidate is None:
            continue
        code = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if code:
            return str(code)
    return None


def translate_db_error(exc: DBAPIError) -> Exception:
    """Map transaction-level PostgreSQL failures onto merge errors."""
    code = sqlstate_of(exc)
    if code in (_SERIALIZATION_FAILURE, _DEADLOCK_DETECTED):
        return MergeConflictError(meta={"sqlstate": code})
    if code == _QUERY_CANCELED:
        return MergeTimeoutError(meta={"sqlstate": code})
    return exc


def row_to_contact(row: Mapping[str, Any]) -> ContactRecord:
    custom_fields = row.get("custom_fields") or {}
    if isinstance(custom_fields, str):
        custom_fields = json.loads(custom_fields)

    last_contacted_at = row.get("last_contacted_at")
    updated_at = row.get("updated_at")
    return ContactRecord(
        id=row["id"],
        first_name=row.get("first_name"),
        last_name=row.get("last_name"),
        email=row.get("email"),
        phone=row.get("phone"),
        whatsapp=row.get("whatsapp"),
        company=row.get("company"),
        job_title=row.get("job_title"),
        status=ContactStatus(row.get("status") or ContactStatus.ACTIVE.value),
        tags=list(row.get("tags") or []),
        custom_fields=CustomFields.from_storage(custom_fields),
        last_contacted_at=coerce_utc(last_contacted_at) if last_contacted_at else None,
        created_at=coerce_utc(row["created_at"]),
        updated_at=coerce_utc(updated_at) if updated_at else None,
    )


class PostgresUnitOfWork:
    """ContactUnitOfWork bound to one AsyncSession transaction."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _execute(self, sql: str, params: dict[str, Any]):
        try:
            return await self.session.execute(text(sql), params)
        except DBAPIError as exc:
            translated = translate_db_error(exc)
            if translated is exc:
                raise
            raise translated from exc

    async def get_contact(self, contact_id: str) -> ContactRecord | None:
        result = await self._execute(
            f"SELECT {_CONTACT_COLUMNS} FROM contacts WHERE id = :id",
            {"id": contact_id},
        )
        row = result.mappings().first()
        return row_to_contact(row) if row else None

    async def lock_contacts(self, contact_ids: Sequence[str]) -> dict[str, ContactRecord]:
        # Consistent lock order keeps concurrent merges sharing a primary deadlock-free.
        result = await self._execute(
            f"""
            SELECT {_CONTACT_COLUMNS} FROM contacts
            WHERE id = ANY(:ids)
            ORDER BY id
            FOR UPDATE
            """,
            {"ids": sorted(set(contact_ids))},
        )
        return {row["id"]: row_to_contact(row) for row in result.mappings().all()}

    async def reassign_relation(self, relation: str, source_id: str, target_id: str) -> int:
        table, has_updated_at = RELATION_TABLES[relation]
        touch = ", updated_at = :now" if has_updated_at else ""
        params: dict[str, Any] = {"source_id": source_id, "target_id": target_id}
        if has_updated_at:
            params["now"] = utc_now()
        result = await self._execute(
            f"""
            UPDATE {table}
            SET contact_id = :target_id{touch}
            WHERE contact_id = :source_id
            """,
            params,
        )
        return max(result.rowcount or 0, 0)

    async def update_contact(self, contact_id: str, fields: ResolvedFields) -> ContactRecord:
        result = await self._execute(
            f"""
            UPDATE contacts
            SET first_name = :first_name,
                last_name = :last_name,
                email = :email,
                phone = :phone,
                whatsapp = :whatsapp,
                company = :company,
                job_title = :job_title,
                status = :status,
                tags = :tags,
                custom_fields = CAST(:custom_fields AS jsonb),
                last_contacted_at = :last_contacted_at,
                updated_at = :now
            WHERE id = :id
            RETURNING {_CONTACT_COLUMNS}
            """,
            {
                "id": contact_id,
                "first_name": fields.first_name,
                "last_name": fields.last_name,
                "email": fields.email,
                "phone": fields.phone,
                "whatsapp": fields.whatsapp,
                "company": fields.company,
                "job_title": fields.job_title,
                "status": fields.status.value,
                "tags": list(fields.tags),
                "custom_fields": json.dumps(fields.custom_fields.to_storage()),
                "last_contacted_at": fields.last_contacted_at,
                "now": utc_now(),
            },
        )
        row = result.mappings().first()
        if row is None:
            raise MergeConflictError(
                message="Primary contact disappeared during merge",
                meta={"contact_id": contact_id},
            )
        return row_to_contact(row)

    async def delete_contact(self, contact_id: str) -> bool:
        result = await self._execute(
            "DELETE FROM contacts WHERE id = :id RETURNING id",
            {"id": contact_id},
        )
        return result.first() is not None

    async def count_relations(self, contact_id: str) -> RelationCounts:
        result = await self._execute(
            """
            SELECT
                (SELECT count(*) FROM messages WHERE contact_id = :id) AS messages,
                (SELECT count(*) FROM notes WHERE contact_id = :id) AS notes,
                (SELECT count(*) FROM scheduled_messages WHERE contact_id = :id) AS scheduled_messages,
                (SELECT count(*) FROM analytics WHERE contact_id = :id) AS analytics_events
            """,
            {"id": contact_id},
        )
        row = result.mappings().first() or {}
        return RelationCounts(
            messages=row.get("messages") or 0,
            notes=row.get("notes") or 0,
            scheduled_messages=row.get("scheduled_messages") or 0,
            analytics_events=row.get("analytics_events") or 0,
        )


class PostgresContactStore:
    """ContactStore backed by PostgreSQL through SQLAlchemy async sessions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def unit_of_work(
        self, *, timeout_seconds: float | None = None
    ) -> AsyncGenerator[PostgresUnitOfWork, None]:
        session = self._session_factory()
        try:
            if timeout_seconds:
                # Scoped to this transaction only.
                await session.execute(
                    text("SELECT set_config('statement_timeout', :timeout, true)"),
                    {"timeout": str(int(timeout_seconds * 1000))},
                )
            yield PostgresUnitOfWork(session)
            await session.commit()
        except DBAPIError as exc:
            await session.rollback()
            translated = translate_db_error(exc)
            if translated is exc:
                raise
            raise translated from exc
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def get_contact(self, contact_id: str) -> ContactRecord | None:
        async with self._session_factory() as session:
            return await PostgresUnitOfWork(session).get_contact(contact_id)

    async def count_relations(self, contact_id: str) -> RelationCounts:
        async with self._session_factory() as session:
            return await PostgresUnitOfWork(session).count_relations(contact_id)

    async def lookup_candidates(
        self,
        identity: IdentityTuple,
        *,
        exclude_contact_id: str | None = None,
        name_sample_limit: int = 200,
    ) -> list[ContactRecord]:
        email = normalize_email(identity.email)
        phone = normalize_phone(identity.phone)
        first_name = normalize_name(identity.first_name)
        last_name = normalize_name(identity.last_name)
        company = normalize_company(identity.company)

        exclude_sql = ""
        base_params: dict[str, Any] = {}
        if exclude_contact_id:
            exclude_sql = "AND id <> :exclude_id"
            base_params["exclude_id"] = exclude_contact_id

        found: dict[str, ContactRecord] = {}
        async with self._session_factory() as session:
            # Pass 1: exact anchors (always complete, never sampled)
            exact_clauses = []
            exact_params = dict(base_params)
            if email:
                exact_clauses.append("lower(btrim(email)) = :email")
                exact_params["email"] = email
            if phone:
                exact_clauses.append("phone = :phone")
                exact_params["phone"] = phone
            if exact_clauses:
                result = await session.execute(
                    text(
                        f"""
                        SELECT {_CONTACT_COLUMNS} FROM contacts
                        WHERE ({" OR ".join(exact_clauses)}) {exclude_sql}
                        """
                    ),
                    exact_params,
                )
                for row in result.mappings().all():
                    found[row["id"]] = row_to_contact(row)

            # Pass 2: bounded name/company block for fuzzy scoring
            block_clauses = []
            block_params = dict(base_params)
            if first_name:
                block_clauses.append("lower(first_name) = :first_name")
                block_params["first_name"] = first_name
            if last_name:
                block_clauses.append("lower(last_name) = :last_name")
                block_params["last_name"] = last_name
            if company:
                block_clauses.append("lower(company) = :company")
                block_params["company"] = company
            if block_clauses:
                block_params["limit"] = name_sample_limit
                result = await session.execute(
                    text(
                        f"""
                        SELECT {_CONTACT_COLUMNS} FROM contacts
                        WHERE ({" OR ".join(block_clauses)}) {exclude_sql}
                        ORDER BY last_contacted_at DESC NULLS LAST, created_at ASC, id ASC
                        LIMIT :limit
                        """
                    ),
                    block_params,
                )
                for row in result.mappings().all():
                    found.setdefault(row["id"], row_to_contact(row))

        logger.debug(
            "Duplicate pre-filter loaded contacts",
            exact_anchor=bool(email or phone),
            loaded=len(found),
        )
        return list(found.values())

    async def iter_contacts(self, *, batch_size: int = 500) -> AsyncIterator[ContactRecord]:
        last_id = ""
        while True:
            async with self._session_factory() as session:
                result = await session.execute(
                    text(
                        f"""
                        SELECT {_CONTACT_COLUMNS} FROM contacts
                        WHERE id > :last_id
                        ORDER BY id
                        LIMIT :limit
                        """
                    ),
                    {"last_id": last_id, "limit": batch_size},
                )
                rows = result.mappings().all()
            if not rows:
                return
            for row in rows:
                yield row_to_contact(row)
            last_id = rows[-1]["id"]

    async def ping(self) -> None:
        async with self._session_factory() as session:
            await session.execute(text("SELECT 1"))
