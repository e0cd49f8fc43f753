"""Persistence: models, database and repositories."""
