"""
Cache Service package for the metadata aggregation layer.

The cache service sits beneath content fetchers, search, translation and
artwork lookups, providing:
- A fast in-process tier with per-entry expiry
- An optional Redis tier that survives restarts
- Change-feed driven invalidation of only the affected entries

Structure:
- app.main: FastAPI admin surface and component lifecycle.
- app.caching: Entry model, stores, cache manager and factory.
- app.invalidation: Change records, invalidation rules and the poller.
- app.adapters: HTTP client for the upstream change feed.
"""
