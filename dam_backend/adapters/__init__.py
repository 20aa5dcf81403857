"""Adapters (database)."""
