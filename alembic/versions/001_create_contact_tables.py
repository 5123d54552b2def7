"""Create contact tables.

Revision ID: 001_create_contact_tables
Revises:
Create Date: 2026-10-16

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, ARRAY

# revision identifiers, used by Alembic.
revision: str = "001_create_contact_tables"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps(*, with_updated_at: bool = True) -> list[sa.Column]:
    columns = [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    ]
    if with_updated_at:
        columns.append(
            sa.Column(
                "updated_at",
                sa.DateTime(timezone=True),
                nullable=False,
                server_default=sa.func.now(),
            )
        )
    return columns


def _contact_fk(*, nullable: bool = False) -> sa.Column:
    return sa.Column(
        "contact_id",
        sa.String(64),
        sa.ForeignKey("contacts.id", ondelete="CASCADE"),
        nullable=nullable,
    )


def upgrade() -> None:
    # ==========================================================================
    # Contacts (email/phone are soft-unique: indexed, not constrained)
    # ==========================================================================
    op.create_table(
        "contacts",
        sa.Column("id", sa.String(64), primary_key=True),
        # Identity
        sa.Column("first_name", sa.Text, nullable=True),
        sa.Column("last_name", sa.Text, nullable=True),
        sa.Column("email", sa.Text, nullable=True),
        sa.Column("phone", sa.Text, nullable=True),
        sa.Column("whatsapp", sa.Text, nullable=True),
        # Professional info
        sa.Column("company", sa.Text, nullable=True),
        sa.Column("job_title", sa.Text, nullable=True),
        # Lifecycle
        sa.Column("status", sa.String(20), nullable=False, server_default="ACTIVE"),
        sa.Column("tags", ARRAY(sa.Text), nullable=False, server_default="{}"),
        sa.Column("custom_fields", JSONB, nullable=False, server_default="{}"),
        sa.Column("last_contacted_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    op.create_index("idx_contacts_email_lower", "contacts", [sa.text("lower(btrim(email))")])
    op.create_index("idx_contacts_phone", "contacts", ["phone"])
    op.create_index("idx_contacts_first_name_lower", "contacts", [sa.text("lower(first_name)")])
    op.create_index("idx_contacts_last_name_lower", "contacts", [sa.text("lower(last_name)")])
    op.create_index("idx_contacts_company_lower", "contacts", [sa.text("lower(company)")])

    # ==========================================================================
    # Records owned by a contact
    # ==========================================================================
    op.create_table(
        "messages",
        sa.Column("id", sa.String(64), primary_key=True),
        _contact_fk(),
        sa.Column("channel", sa.String(20), nullable=False),
        sa.Column("direction", sa.String(10), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("external_id", sa.Text, nullable=True),
        sa.Column("thread_id", sa.Text, nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_messages_contact_id", "messages", ["contact_id"])

    op.create_table(
        "notes",
        sa.Column("id", sa.String(64), primary_key=True),
        _contact_fk(),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("visibility", sa.String(10), nullable=False, server_default="PUBLIC"),
        *_timestamps(),
    )
    op.create_index("ix_notes_contact_id", "notes", ["contact_id"])

    op.create_table(
        "scheduled_messages",
        sa.Column("id", sa.String(64), primary_key=True),
        _contact_fk(),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("channel", sa.String(20), nullable=False),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        *_timestamps(),
    )
    op.create_index("ix_scheduled_messages_contact_id", "scheduled_messages", ["contact_id"])

    op.create_table(
        "analytics",
        sa.Column("id", sa.String(64), primary_key=True),
        _contact_fk(nullable=True),
        sa.Column("channel", sa.String(20), nullable=False),
        sa.Column("event_type", sa.Text, nullable=False),
        sa.Column("event_data", JSONB, nullable=True),
        *_timestamps(with_updated_at=False),
    )
    op.create_index("ix_analytics_contact_id", "analytics", ["contact_id"])


def downgrade() -> None:
    op.drop_table("analytics")
    op.drop_table("scheduled_messages")
    op.drop_table("notes")
    op.drop_table("messages")
    op.drop_table("contacts")
