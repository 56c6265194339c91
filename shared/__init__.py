"""
Shared utilities for the metadata cache layer.

This package aggregates common building blocks consumed by the services:

- config: Cache topology, TTL and poller configuration via pydantic-settings
- logging: Structured logging with request/check correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry decorators with backoff
- circuit_breaker: Resilient external call protection
- base_service: FastAPI service skeleton with health and metrics routes

Any cross-service logic should live here to avoid import cycles across
service packages. Do not import from service_* packages into shared/.
"""
