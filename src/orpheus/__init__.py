"""Orpheus: multi-backend LLM task dispatch with retries, fallback and audit log."""

__version__ = "0.1.0"
