"""Persistence: SQLAlchemy models and the campaign store."""
