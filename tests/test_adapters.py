"""Adaptadores de infraestructura: caché Redis, geocoding y notificador SMTP."""

import json

import aiosmtplib
import httpx
import pytest

from motor_riesgo.core.exceptions import CacheInvalidationException
from motor_riesgo.domain.entities import Decision, GeoLocation, ReputationVerdict
from motor_riesgo.domain.schemas import DecisionAction, RiskLevel, RiskTier
from motor_riesgo.infrastructure.cache.verdict_cache import SAFE_MARKER, RedisVerdictCache
from motor_riesgo.infrastructure.geo.geo_resolver import NominatimGeoResolver
from motor_riesgo.infrastructure.messaging.notifier import EmailNotifier, LogNotifier

pytestmark = pytest.mark.unit


class FakeRedis:
    """Lo mínimo de redis.asyncio.Redis que usa la caché (decode_responses=True)."""

    def __init__(self, broken: bool = False):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.broken = broken

    def _check(self):
        if self.broken:
            raise ConnectionError("redis down")

    async def get(self, key):
        self._check()
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        self._check()
        self.store[key] = value
        self.ttls[key] = ttl

    async def delete(self, key):
        self._check()
        return 1 if self.store.pop(key, None) is not None else 0

    async def scan_iter(self, match):
        self._check()
        prefix = match.rstrip("*")
        for key in list(self.store):
            if key.startswith(prefix):
                yield key


class TestRedisVerdictCache:

    async def test_safe_and_flagged_roundtrip(self):
        redis = FakeRedis()
        cache = RedisVerdictCache(redis)

        await cache.set("ok@upi", ReputationVerdict.safe(), 1800)
        await cache.set("scam@upi", ReputationVerdict(
            flagged=True, tier=RiskTier.HIGH, reason="phishing", confidence=80
        ), 1800)

        assert redis.store["reputation:ok@upi"] == SAFE_MARKER
        assert json.loads(redis.store["reputation:scam@upi"])["tier"] == "high"
        assert redis.ttls["reputation:scam@upi"] == 1800

        safe = await cache.get("ok@upi")
        assert safe.flagged is False and safe.source == "cache"
        flagged = await cache.get("scam@upi")
        assert flagged.tier == RiskTier.HIGH
        assert flagged.reason == "phishing"

    async def test_corrupt_entry_is_a_miss(self):
        redis = FakeRedis()
        redis.store["reputation:x@upi"] = "{no es json"
        assert await RedisVerdictCache(redis).get("x@upi") is None

    async def test_read_errors_never_raise(self):
        cache = RedisVerdictCache(FakeRedis(broken=True))
        assert await cache.get("x@upi") is None
        await cache.set("x@upi", ReputationVerdict.safe(), 60)
        assert await cache.clear() == 0

    async def test_failed_delete_is_raised(self):
        cache = RedisVerdictCache(FakeRedis(broken=True))
        with pytest.raises(CacheInvalidationException):
            await cache.delete("x@upi")

    async def test_clear_only_touches_reputation_keys(self):
        redis = FakeRedis()
        redis.store["other:key"] = "1"
        cache = RedisVerdictCache(redis)
        await cache.set("a@upi", ReputationVerdict.safe(), 60)
        await cache.set("b@upi", ReputationVerdict.safe(), 60)

        assert await cache.clear() == 2
        assert list(redis.store) == ["other:key"]


def _geo(handler) -> NominatimGeoResolver:
    return NominatimGeoResolver(
        "https://geo.test/reverse", transport=httpx.MockTransport(handler)
    )


class TestNominatimGeoResolver:

    async def test_city_is_resolved(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["format"] == "jsonv2"
            assert request.headers["User-Agent"] == "motor-riesgo-p2p/1.0"
            return httpx.Response(200, json={"address": {
                "town": "San Pedro Garza García", "state": "Nuevo León", "country": "Mexico",
            }})

        location = await _geo(handler).resolve(25.65, -100.40)
        assert location == GeoLocation("San Pedro Garza García", "Nuevo León", "Mexico")

    async def test_http_error_is_unknown(self):
        location = await _geo(lambda request: httpx.Response(503)).resolve(0, 0)
        assert location.is_known is False

    async def test_timeout_is_unknown(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        assert (await _geo(handler).resolve(0, 0)) == GeoLocation.unknown()

    async def test_response_without_city(self):
        location = await _geo(lambda request: httpx.Response(200, json={"address": {}})).resolve(0, 0)
        assert location.is_known is False


def _decision(action=DecisionAction.BLOCK) -> Decision:
    return Decision(
        action     = action,
        score      = 85,
        risk_level = RiskLevel.CRITICAL,
        reasons    = ["Monto muy alto", "Dispositivo no reconocido"],
    )


class TestNotifiers:

    async def test_email_alert(self, monkeypatch):
        sent = []

        async def fake_send(message, **kwargs):
            sent.append((message, kwargs))

        monkeypatch.setattr(aiosmtplib, "send", fake_send)
        notifier = EmailNotifier("smtp.test", 587, "u", "p", "alertas@test", "usuarios.test")

        await notifier.alert("user-1", _decision(), {"payee": "x@upi", "amount": 75000})

        message, kwargs = sent[0]
        assert message["To"] == "user-1@usuarios.test"
        assert message["Subject"] == "Pago bloqueado por seguridad"
        assert kwargs["hostname"] == "smtp.test"

    async def test_smtp_failure_is_swallowed(self, monkeypatch):
        async def failing_send(message, **kwargs):
            raise aiosmtplib.SMTPException("rechazado")

        monkeypatch.setattr(aiosmtplib, "send", failing_send)
        notifier = EmailNotifier("smtp.test", 587, None, None, "alertas@test", "usuarios.test")

        assert await notifier._send("a@test", "asunto", "<p>x</p>") is False
        await notifier.circle_alert("user-1", "friend", "scam@upi", None)

    async def test_log_notifier(self, caplog):
        caplog.set_level("INFO")
        await LogNotifier().alert("user-1", _decision(DecisionAction.WARN), {"payee": "x@upi"})
        assert "action=WARN" in caplog.text
