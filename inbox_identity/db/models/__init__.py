"""Database models."""

from inbox_identity.db.models.contacts import (
    AnalyticsEvent,
    Base,
    Contact,
    Message,
    Note,
    ScheduledMessage,
)

__all__ = [
    "AnalyticsEvent",
    "Base",
    "Contact",
    "Message",
    "Note",
    "ScheduledMessage",
]
