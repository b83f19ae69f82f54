"""Ledger events: pydantic schema plus a Redis Streams bus."""
