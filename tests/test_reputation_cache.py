"""Unit tests for ReputationCache."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from motor_riesgo.core.exceptions import CacheInvalidationException
from motor_riesgo.domain.entities import ReputationEntry
from motor_riesgo.domain.schemas import EntryStatus, ListType, RiskTier
from motor_riesgo.infrastructure.cache.verdict_cache import NullVerdictCache
from motor_riesgo.services.reputation_cache import ReputationCache

pytestmark = pytest.mark.unit


def _blacklisted(identifier: str = "scam@upi", **overrides) -> ReputationEntry:
    data = {
        "identifier":       identifier,
        "list_type":        ListType.BLACKLIST,
        "risk_tier":        RiskTier.HIGH,
        "confidence_score": 80,
        "status":           EntryStatus.ACTIVE,
        "reason":           "phishing",
    }
    data.update(overrides)
    return ReputationEntry(**data)


@pytest.fixture
def reputation(reputation_store, verdict_cache):
    return ReputationCache(reputation_store, verdict_cache, ttl_seconds=1800)


class TestLookupOrder:

    async def test_unknown_identifier_is_safe_and_cached(self, reputation, verdict_cache):
        verdict = await reputation.check("nobody@upi")
        assert verdict.flagged is False
        assert verdict.whitelisted is False
        assert "nobody@upi" in verdict_cache.data
        assert verdict_cache.ttls["nobody@upi"] == 1800

    async def test_blacklist_hit(self, reputation, reputation_store):
        reputation_store.add(_blacklisted())
        verdict = await reputation.check("  SCAM@upi ")
        assert verdict.flagged is True
        assert verdict.tier == RiskTier.HIGH
        assert verdict.reason == "phishing"

    async def test_cache_hit_skips_store(self, reputation, reputation_store):
        reputation_store.add(_blacklisted())
        await reputation.check("scam@upi")
        calls = reputation_store.find_calls

        verdict = await reputation.check("scam@upi")
        assert verdict.flagged is True
        assert reputation_store.find_calls == calls

    async def test_whitelist_wins_over_blacklist(self, reputation, reputation_store):
        reputation_store.add(_blacklisted("shop@upi"))
        reputation_store.add(_blacklisted("shop@upi", list_type=ListType.WHITELIST, reason="verified"))
        verdict = await reputation.check("shop@upi")
        assert verdict.whitelisted is True
        assert verdict.flagged is False
        assert verdict.source == "whitelist"

    async def test_expired_whitelist_is_ignored(self, reputation, reputation_store):
        reputation_store.add(_blacklisted(
            "shop@upi",
            list_type  = ListType.WHITELIST,
            expires_at = datetime.now(timezone.utc) - timedelta(days=1),
        ))
        verdict = await reputation.check("shop@upi")
        assert verdict.whitelisted is False

    @pytest.mark.parametrize("status", [EntryStatus.UNDER_REVIEW, EntryStatus.RESOLVED])
    async def test_inactive_entries_do_not_flag(self, reputation, reputation_store, status):
        reputation_store.add(_blacklisted(status=status))
        verdict = await reputation.check("scam@upi")
        assert verdict.flagged is False


class TestInvalidation:

    async def test_invalidate_forces_fresh_read(self, reputation, reputation_store):
        assert (await reputation.check("scam@upi")).flagged is False
        reputation_store.add(_blacklisted())

        # Sin invalidar, la caché aún dice "seguro"
        assert (await reputation.check("scam@upi")).flagged is False
        await reputation.invalidate("scam@upi")
        assert (await reputation.check("scam@upi")).flagged is True

    async def test_escalation_during_store_read_is_not_cached(
        self, services, reputation_store, verdict_cache
    ):
        original_find = reputation_store.find
        reading = asyncio.Event()
        release = asyncio.Event()
        calls = []

        async def slow_find(identifier, list_type=ListType.BLACKLIST):
            entry = await original_find(identifier, list_type)
            calls.append(identifier)
            if len(calls) == 1:
                reading.set()
                await release.wait()
            return entry

        reputation_store.find = slow_find
        pending = asyncio.create_task(services.reputation.check("mule@upi"))
        await reading.wait()

        for user in ("u1", "u2", "u3"):
            await services.escalation.block_payee(user, "mule@upi")
        release.set()

        # La consulta en vuelo leyó antes de la escalación
        assert (await pending).flagged is False
        assert "mule@upi" not in verdict_cache.data

        fresh = await services.reputation.check("mule@upi")
        assert fresh.flagged is True
        assert verdict_cache.data["mule@upi"].flagged is True

    async def test_failed_delete_is_retried_once(self, reputation, verdict_cache):
        await reputation.check("scam@upi")
        verdict_cache.delete_failures = 1

        await reputation.invalidate("scam@upi")
        assert "scam@upi" not in verdict_cache.data

    async def test_persistent_delete_failure_is_raised(self, reputation, verdict_cache):
        await reputation.check("scam@upi")
        verdict_cache.delete_failures = 2

        with pytest.raises(CacheInvalidationException):
            await reputation.invalidate("scam@upi")

    async def test_clear_all(self, reputation):
        await reputation.check("a@upi")
        await reputation.check("b@upi")
        assert await reputation.clear_all() == 2


class TestWithoutCache:

    async def test_null_cache_always_reads_store(self, reputation_store):
        reputation = ReputationCache(reputation_store, NullVerdictCache())
        reputation_store.add(_blacklisted())

        await reputation.check("scam@upi")
        await reputation.check("scam@upi")
        assert reputation_store.find_calls == 2
