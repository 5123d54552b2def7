"""
Contact Database Models

SQLAlchemy models for contacts and the records they own. The merge engine
only ever touches these five tables.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Contact(Base):
    """
    The identity unit.

    Email and phone are soft-unique: no storage constraint, but the merge
    engine treats an exact match as the strongest duplicate signal.
    """

    __tablename__ = "contacts"

    id = Column(String(64), primary_key=True)

    # Identity
    first_name = Column(Text, nullable=True)
    last_name = Column(Text, nullable=True)
    email = Column(Text, nullable=True)
    phone = Column(Text, nullable=True)  # normalized international format
    whatsapp = Column(Text, nullable=True)

    # Professional info
    company = Column(Text, nullable=True)
    job_title = Column(Text, nullable=True)

    # Lifecycle
    status = Column(String(20), nullable=False, default="ACTIVE")
    tags = Column(ARRAY(Text), nullable=False, default=list, server_default="{}")
    custom_fields = Column(JSONB, nullable=False, default=dict, server_default="{}")

    # Timestamps
    last_contacted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    # Relationships
    messages = relationship("Message", back_populates="contact", passive_deletes=True)
    notes = relationship("Note", back_populates="contact", passive_deletes=True)
    scheduled_messages = relationship("ScheduledMessage", back_populates="contact", passive_deletes=True)
    analytics_events = relationship("AnalyticsEvent", back_populates="contact", passive_deletes=True)

    __table_args__ = (
        Index("idx_contacts_email_lower", func.lower(func.btrim(email))),
        Index("idx_contacts_phone", "phone"),
        Index("idx_contacts_first_name_lower", func.lower(first_name)),
        Index("idx_contacts_last_name_lower", func.lower(last_name)),
        Index("idx_contacts_company_lower", func.lower(company)),
    )

    def __repr__(self) -> str:
        return f"<Contact {self.id} ({self.email or self.phone})>"


class Message(Base):
    """A message exchanged with a contact on any channel."""

    __tablename__ = "messages"

    id = Column(String(64), primary_key=True)
    contact_id = Column(
        String(64),
        ForeignKey("contacts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    channel = Column(String(20), nullable=False)  # SMS, WHATSAPP, EMAIL, VOICE, ...
    direction = Column(String(10), nullable=False)  # INBOUND | OUTBOUND
    status = Column(String(20), nullable=False, default="PENDING")
    content = Column(Text, nullable=False)
    external_id = Column(Text, nullable=True)
    thread_id = Column(Text, nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    contact = relationship("Contact", back_populates="messages")


class Note(Base):
    """A team note attached to a contact."""

    __tablename__ = "notes"

    id = Column(String(64), primary_key=True)
    contact_id = Column(
        String(64),
        ForeignKey("contacts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(String(64), nullable=False)
    content = Column(Text, nullable=False)
    visibility = Column(String(10), nullable=False, default="PUBLIC")
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    contact = relationship("Contact", back_populates="notes")


class ScheduledMessage(Base):
    """A message queued for future delivery to a contact."""

    __tablename__ = "scheduled_messages"

    id = Column(String(64), primary_key=True)
    contact_id = Column(
        String(64),
        ForeignKey("contacts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(String(64), nullable=False)
    channel = Column(String(20), nullable=False)
    content = Column(Text, nullable=False)
    scheduled_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(20), nullable=False, default="PENDING")
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    contact = relationship("Contact", back_populates="scheduled_messages")


class AnalyticsEvent(Base):
    """A channel analytics event attributed to a contact."""

    __tablename__ = "analytics"

    id = Column(String(64), primary_key=True)
    contact_id = Column(
        String(64),
        ForeignKey("contacts.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    channel = Column(String(20), nullable=False)
    event_type = Column(Text, nullable=False)
    event_data = Column(JSONB, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    contact = relationship("Contact", back_populates="analytics_events")
