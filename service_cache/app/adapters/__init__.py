"""
Adapters package for the Cache Service.

Contains the HTTP client for the upstream change feed, wrapped in a
circuit breaker and retry policy.
"""

from .change_feed_client import HttpChangeFeedClient

__all__ = ["HttpChangeFeedClient"]
