"""Dispatch engine: routes tasks across interchangeable LLM backends.

A task arrives with an ordered fallback list of backends. The dispatcher
probes each backend, retries it with linear backoff, falls through to the next
one on exhaustion, and appends an audit event at every transition so a run can
be inspected or replayed from the event log alone.
"""
