"""Core runtime: interception, caching, resilience and logging."""
