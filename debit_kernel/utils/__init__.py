"""Utility helpers: idempotency keys and deterministic hashing."""
