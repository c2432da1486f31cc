"""Persistence for the dispatch audit log."""
