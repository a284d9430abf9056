"""Incremental collection sync engine for a single account."""
