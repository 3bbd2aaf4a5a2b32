"""Market data collector service."""
