"""
Unit tests for the operator CLIs in scripts/.
"""

import pytest

from scripts.clear_cache import clear
from scripts.inspect_cache import search_details
from service_cache.app.caching.models import CacheDomain
from service_cache.app.caching.redis_store import RedisStore


def _entry(key, preview):
    return {"key": key, "data_preview": preview, "is_expired": False}


class TestSearchDetails:
    """Test cases for the inspect CLI search filter."""

    @pytest.fixture
    def details(self):
        return {
            "metadata": {
                "count": 2,
                "entries": [
                    _entry("metadata:series:81189", {"name": "Breaking Bad"}),
                    _entry("metadata:movie:603", {"name": "The Matrix"}),
                ],
            },
            "season": {
                "count": 1,
                "entries": [_entry("seasons:81189", [1, 2, 3])],
            },
            "artwork": {"count": 0, "entries": []},
        }

    def test_matches_keys_across_domains(self, details):
        result = search_details(details, "81189")

        assert set(result) == {"metadata", "season"}
        assert result["metadata"]["count"] == 1
        assert result["season"]["entries"][0]["key"] == "seasons:81189"

    def test_matches_data_preview_case_insensitively(self, details):
        result = search_details(details, "MATRIX")

        assert result == {
            "metadata": {"count": 1, "entries": [_entry("metadata:movie:603", {"name": "The Matrix"})]}
        }

    def test_no_match(self, details):
        assert search_details(details, "sopranos") == {}


class TestClearCache:
    """Test cases for the clear CLI against the Redis double."""

    @pytest.fixture
    def store(self, clock, fake_redis):
        return RedisStore("redis://localhost:6379/0", "metacache", clock=clock, client=fake_redis)

    def _seed(self, fake_redis):
        for key, value in (
            ("metacache:season:season:81189:1", "{}"),
            ("metacache:season:seasons:81189", "{}"),
            ("metacache:search:search:series:eng:lost", "{}"),
        ):
            fake_redis.put_raw(key, value, ttl_seconds=3600)

    @pytest.mark.asyncio
    async def test_dry_run_deletes_nothing(self, store, fake_redis, capsys):
        self._seed(fake_redis)

        assert await clear("season", "season:", assume_yes=False, dry_run=True, store=store) == 0

        assert len(fake_redis.data) == 3
        assert "DRY RUN" in capsys.readouterr().out
        assert fake_redis.closed is True

    @pytest.mark.asyncio
    async def test_declined_prompt_deletes_nothing(self, store, fake_redis, monkeypatch, capsys):
        self._seed(fake_redis)
        monkeypatch.setattr("builtins.input", lambda prompt: "no")

        assert await clear(None, "", assume_yes=False, dry_run=False, store=store) == 0

        assert len(fake_redis.data) == 3
        assert "Operation cancelled." in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_yes_clears_prefix_without_prompt(self, store, fake_redis, monkeypatch):
        self._seed(fake_redis)

        def _no_prompt(prompt):
            raise AssertionError("prompted despite --yes")

        monkeypatch.setattr("builtins.input", _no_prompt)

        assert await clear(CacheDomain.SEASON.value, "season:", assume_yes=True, dry_run=False, store=store) == 0

        assert sorted(fake_redis.data) == [
            "metacache:search:search:series:eng:lost",
            "metacache:season:seasons:81189",
        ]

    @pytest.mark.asyncio
    async def test_confirmed_full_clear(self, store, fake_redis, monkeypatch):
        self._seed(fake_redis)
        monkeypatch.setattr("builtins.input", lambda prompt: "yes")

        assert await clear(None, "", assume_yes=False, dry_run=False, store=store) == 0

        assert fake_redis.data == {}

    @pytest.mark.asyncio
    async def test_unreachable_redis(self, store, fake_redis):
        fake_redis.fail = True

        assert await clear(None, "", assume_yes=True, dry_run=False, store=store) == 1
