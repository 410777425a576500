"""Domain Event definitions.

Represents significant occurrences (retries, failures, quota exhaustion)
that callers can observe through an event handler.
"""
