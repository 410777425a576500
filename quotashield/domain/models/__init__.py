"""Domain models for cache entries, queue tasks and their statistics."""
