"""API Resilience Implementations.

Contains services for classifying remote failures, retries with exponential
backoff, in-flight request deduplication and the shared quota signal.
Bounded Context: API Resilience
"""
