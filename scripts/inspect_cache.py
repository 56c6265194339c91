#!/usr/bin/env python3
"""
Inspect the durable (Redis) cache tier.

Connects with the same configuration the cache service uses and prints a
per-domain summary, the newest entries of a domain, or the entries whose
key or data preview mention a search term.
"""

import argparse
import asyncio
import json
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from service_cache.app.caching.models import CacheDomain
from service_cache.app.caching.redis_store import RedisStore
from shared.config import get_config
from shared.logging import configure_logging


def _minutes_between(iso_value: str, now: datetime) -> int:
    return round((datetime.fromisoformat(iso_value) - now).total_seconds() / 60)


def print_summary(summary: Dict[str, Any]) -> None:
    total_active = total_expired = total_size = 0
    for domain, stats in summary.items():
        print(f"\n{domain.upper()}:")
        print(f"   Total:    {stats['total']}")
        print(f"   Active:   {stats['active']}")
        print(f"   Expired:  {stats['expired']}")
        print(f"   Avg size: {stats['avg_entry_size']} bytes")
        total_active += stats["active"]
        total_expired += stats["expired"]
        total_size += stats["avg_entry_size"] * stats["total"]

    print("\nTOTALS:")
    print(f"   Active entries:  {total_active}")
    print(f"   Expired entries: {total_expired}")
    print(f"   Estimated size:  {round(total_size / 1024)} KB")


def print_details(details: Dict[str, Any], shown: int = 10) -> None:
    now = datetime.now(timezone.utc)
    for domain, info in details.items():
        print(f"\n{domain.upper()} ({info['count']} entries):")
        if not info["entries"]:
            print("   (no entries)")
            continue

        for index, entry in enumerate(info["entries"][:shown], start=1):
            flag = "expired" if entry["is_expired"] else "active"
            age = -_minutes_between(entry["created_at"], now)
            ttl = _minutes_between(entry["expires_at"], now)
            print(f"   {index}. [{flag}] {entry['key']}")
            print(f"      Size: {entry['data_size']} bytes | Age: {age}m | TTL: {ttl}m")
            print(f"      Data: {json.dumps(entry['data_preview'], default=str)}")

        if len(info["entries"]) > shown:
            print(f"   ... and {len(info['entries']) - shown} more entries")


def search_details(details: Dict[str, Any], term: str) -> Dict[str, Any]:
    """Entries whose key or data preview contains ``term`` (case-insensitive)."""
    needle = term.lower()
    matches: Dict[str, Any] = {}
    for domain, info in details.items():
        found = [
            entry for entry in info["entries"]
            if needle in entry["key"].lower()
            or needle in json.dumps(entry["data_preview"], default=str).lower()
        ]
        if found:
            matches[domain] = {"count": len(found), "entries": found}
    return matches


async def run(command: str, domain: Optional[str], limit: int, term: Optional[str], as_json: bool) -> int:
    config = get_config()
    if not config.redis_url:
        print("[inspect-cache] METACACHE_REDIS_URL is not set", file=sys.stderr)
        return 2

    store = RedisStore(config.redis_url, config.redis_namespace, timeout=config.redis_timeout_seconds)
    if not await store.connect():
        print("[inspect-cache] could not connect to Redis", file=sys.stderr)
        return 1

    try:
        if command == "summary":
            result = await store.summary()
        elif command == "details":
            result = await store.inspect(CacheDomain.parse(domain) if domain else None, limit)
        else:
            result = search_details(await store.inspect(None, 1000), term or "")
    finally:
        await store.disconnect()

    if "error" in result:
        print(f"[inspect-cache] {result['error']}", file=sys.stderr)
        return 1

    if as_json:
        print(json.dumps(result, indent=2, default=str))
    elif command == "summary":
        print_summary(result)
    elif command == "search" and not result:
        print(f"No results found for \"{term}\"")
    else:
        print_details(result, shown=5 if command == "search" else 10)
    return 0


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Inspect the durable cache tier.")
    parser.add_argument("--json", action="store_true", help="Print raw JSON instead of a report")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("summary", help="Per-domain totals")

    details = subparsers.add_parser("details", help="Newest entries per domain")
    details.add_argument("domain", nargs="?", default=None, help="Cache domain (search, metadata, ...)")
    details.add_argument("limit", nargs="?", type=int, default=20, help="Entries per domain")

    search = subparsers.add_parser("search", help="Search keys and data previews")
    search.add_argument("term", help="Text to look for")

    args = parser.parse_args()
    if args.command is None:
        args.command = "summary"
    return args


def main() -> int:
    args = _parse_args()
    configure_logging("cache", "warning")
    try:
        return asyncio.run(
            run(
                args.command,
                getattr(args, "domain", None),
                getattr(args, "limit", 20),
                getattr(args, "term", None),
                args.json,
            )
        )
    except KeyboardInterrupt:
        return 130
    except Exception as exc:  # pragma: no cover - CLI surface
        print(f"[inspect-cache] failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
