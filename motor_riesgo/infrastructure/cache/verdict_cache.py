"""
verdict_cache.py
----------------
Caché de veredictos de reputación por identificador de destinatario.

Dos implementaciones con la misma interfaz (VerdictCache), elegida una
sola vez al arrancar:

  RedisVerdictCache → Redis disponible al startup
  NullVerdictCache  → sin Redis: cada get es un miss y el servicio de
                      reputación consulta directo la base de datos

Estructura de keys en Redis:
  reputation:{identifier} → "safe" | JSON del veredicto   (TTL 30 min)

Un error de Redis en tiempo de ejecución se trata como miss (get) o
se registra en el log (set). La caché nunca bloquea un pago. Un delete
fallido sí se propaga como CacheInvalidationException: quien escribió
en el store debe enterarse de que el veredicto viejo sigue en Redis.
"""

import json
import logging
from typing import Optional

from redis.asyncio import Redis

from motor_riesgo.core.exceptions import CacheInvalidationException
from motor_riesgo.domain.entities import ReputationVerdict
from motor_riesgo.domain.schemas import RiskTier

logger = logging.getLogger(__name__)

SAFE_MARKER = "safe"


class RedisVerdictCache:

    KEY_PREFIX = "reputation"

    def __init__(self, redis_client: Redis):
        self.redis = redis_client

    def _key(self, identifier: str) -> str:
        return f"{self.KEY_PREFIX}:{identifier}"

    async def get(self, identifier: str) -> Optional[ReputationVerdict]:
        try:
            raw = await self.redis.get(self._key(identifier))
        except Exception as e:
            logger.error(f"[VerdictCache] Redis error en get({identifier}): {e}")
            return None

        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode()
        if raw == SAFE_MARKER:
            return ReputationVerdict.safe(source="cache")

        try:
            data = json.loads(raw)
            return ReputationVerdict(
                flagged    = bool(data.get("flagged", True)),
                tier       = RiskTier(data["tier"]) if data.get("tier") else None,
                reason     = data.get("reason"),
                confidence = data.get("confidence"),
                source     = "cache",
            )
        except (ValueError, KeyError) as e:
            logger.warning(f"[VerdictCache] Entrada corrupta para {identifier}: {e}")
            return None

    async def set(
        self, identifier: str, verdict: ReputationVerdict, ttl_seconds: int
    ) -> None:
        if verdict.flagged:
            value = json.dumps({
                "flagged":    True,
                "tier":       verdict.tier.value if verdict.tier else None,
                "reason":     verdict.reason,
                "confidence": verdict.confidence,
            })
        else:
            value = SAFE_MARKER
        try:
            await self.redis.setex(self._key(identifier), ttl_seconds, value)
        except Exception as e:
            logger.error(f"[VerdictCache] Redis error en set({identifier}): {e}")

    async def delete(self, identifier: str) -> None:
        try:
            await self.redis.delete(self._key(identifier))
        except Exception as e:
            logger.error(f"[VerdictCache] Redis error en delete({identifier}): {e}")
            raise CacheInvalidationException() from e
        logger.info(f"[VerdictCache] Invalidado {identifier}")

    async def clear(self) -> int:
        deleted = 0
        try:
            async for key in self.redis.scan_iter(match=f"{self.KEY_PREFIX}:*"):
                deleted += await self.redis.delete(key)
        except Exception as e:
            logger.error(f"[VerdictCache] Redis error limpiando caché: {e}")
        logger.info(f"[VerdictCache] Caché limpiada — {deleted} keys")
        return deleted


class NullVerdictCache:
    """Pass-through: siempre miss, escrituras sin efecto."""

    async def get(self, identifier: str) -> Optional[ReputationVerdict]:
        return None

    async def set(
        self, identifier: str, verdict: ReputationVerdict, ttl_seconds: int
    ) -> None:
        return None

    async def delete(self, identifier: str) -> None:
        return None

    async def clear(self) -> int:
        return 0
