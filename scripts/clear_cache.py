#!/usr/bin/env python3
"""
Clear the durable (Redis) cache tier.

Lists how many entries each domain holds, then deletes them after an
interactive confirmation. ``--domain`` and ``--prefix`` narrow the clear;
``--yes`` skips the prompt for use from CI jobs.
"""

import argparse
import asyncio
import json
import sys
from typing import Optional

from service_cache.app.caching.models import CacheDomain
from service_cache.app.caching.redis_store import RedisStore
from shared.config import get_config
from shared.logging import configure_logging


def confirm(prompt: str) -> bool:
    try:
        answer = input(prompt)
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


async def clear(
    domain: Optional[str],
    prefix: str,
    assume_yes: bool,
    dry_run: bool,
    store: Optional[RedisStore] = None,
) -> int:
    if store is None:
        config = get_config()
        if not config.redis_url:
            print("[clear-cache] METACACHE_REDIS_URL is not set", file=sys.stderr)
            return 2
        store = RedisStore(config.redis_url, config.redis_namespace, timeout=config.redis_timeout_seconds)

    target = CacheDomain.parse(domain) if domain else None
    if not await store.connect():
        print("[clear-cache] could not connect to Redis", file=sys.stderr)
        return 1

    try:
        summary = await store.summary()
        if "error" in summary:
            print(f"[clear-cache] {summary['error']}", file=sys.stderr)
            return 1

        for name, stats in summary.items():
            print(f"Domain: {name}, entries: {stats['total']}")

        scope = f"domain={target.value if target else '*'} prefix={prefix!r}"
        if dry_run:
            print(f"[clear-cache] DRY RUN - would clear {scope}")
            return 0

        if not assume_yes and not confirm(f"Delete cached entries for {scope}? (yes/no): "):
            print("Operation cancelled.")
            return 0

        if target is None and not prefix:
            result = await store.clear_all()
        else:
            result = await store.clear_by_prefix(target, prefix)
    finally:
        await store.disconnect()

    if result is None:
        print("[clear-cache] clear failed, see logs", file=sys.stderr)
        return 1

    print(json.dumps({"removed": result}, indent=2))
    return 0


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Clear the durable cache tier.")
    parser.add_argument("--domain", default=None, help="Only clear this cache domain")
    parser.add_argument("--prefix", default="", help="Only clear keys starting with this prefix")
    parser.add_argument("--yes", action="store_true", help="Do not ask for confirmation")
    parser.add_argument("--dry-run", action="store_true", help="Show counts without deleting")
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    configure_logging("cache", "warning")
    try:
        return asyncio.run(clear(args.domain, args.prefix, args.yes, args.dry_run))
    except KeyboardInterrupt:
        return 130
    except Exception as exc:  # pragma: no cover - CLI surface
        print(f"[clear-cache] failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
