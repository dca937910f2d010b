"""Signposting Library — framework-neutral core types (exceptions)."""
