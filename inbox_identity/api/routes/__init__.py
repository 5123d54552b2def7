"""API route modules."""

from . import contacts, health

__all__ = ["contacts", "health"]
