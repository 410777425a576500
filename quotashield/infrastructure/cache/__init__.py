"""Caching Implementation.

Provides the diskcache backed TTL store implementing the CacheStore
interface, and the memoizing wrappers built on top of it.
Bounded Context: Cache Management
"""
