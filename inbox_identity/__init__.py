"""
Inbox Identity

Contact identity resolution and merge for the unified inbox.
Provides:
- Similarity scoring between contact identity tuples
- Duplicate candidate discovery over the contact population
- Atomic merge of duplicate contacts and their history
"""

__version__ = "0.1.0"
