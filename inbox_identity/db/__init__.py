"""Database access: connection pool, session factory and models."""
