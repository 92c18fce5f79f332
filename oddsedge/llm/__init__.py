"""Narrative boundary: brief formatting, narrative generation and the legacy response shape."""
