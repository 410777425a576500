"""quotashield: resilience toolkit for quota-limited remote APIs.

Persistent TTL caching with memoization, rate-limit aware retries with a
shared quota signal, and bounded concurrency task queues.
"""

__version__ = "0.1.0"
