"""Shared kernel helpers: canonical JSON, hashing, atomic writes, logging."""
