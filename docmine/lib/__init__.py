"""Shared low-level helpers (logging, JSON, hashing, env, timestamps)."""
