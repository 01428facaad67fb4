"""
reputation_cache.py
-------------------
Primera línea de defensa del pipeline: veredicto de reputación del
destinatario ANTES de calcular cualquier score.

Orden de consulta:
  1. Lista blanca (store, activa y no expirada) → no marcado, confiable,
     el scoring se salta por completo
  2. Caché de veredictos                         → retorno inmediato
  3. Lista negra en el store                     → se cachea con TTL

La caché es solo optimización: si falla, el veredicto sale del store.
Un error del store en el paso 3 sí se propaga; el pipeline lo trata
como reputación no disponible.

Cada invalidación incrementa un contador. Un veredicto leído del store
solo se cachea si ninguna invalidación ocurrió mientras se leía; así una
escalación concurrente no deja un "safe" viejo vivo durante todo el TTL.
"""

import logging
from datetime import datetime, timezone

from motor_riesgo.core.exceptions import CacheInvalidationException
from motor_riesgo.domain.entities import ReputationVerdict, normalize_identifier
from motor_riesgo.domain.ports import ReputationStore, VerdictCache

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 60 * 30


class ReputationCache:

    def __init__(
        self,
        store: ReputationStore,
        cache: VerdictCache,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
    ):
        self.store       = store
        self.cache       = cache
        self.ttl_seconds = ttl_seconds
        self._generation = 0

    async def check(self, identifier: str) -> ReputationVerdict:
        identifier = normalize_identifier(identifier)
        now = datetime.now(timezone.utc)

        # ── 1. Lista blanca ──────────────────────────────────────────
        trusted = await self.store.find_whitelisted(identifier, now)
        if trusted is not None:
            logger.info(f"[Reputation] WHITELIST — {identifier}")
            return ReputationVerdict(
                flagged     = False,
                whitelisted = True,
                tier        = trusted.risk_tier,
                reason      = trusted.reason,
                confidence  = trusted.confidence_score,
                source      = "whitelist",
            )

        # ── 2. Caché ─────────────────────────────────────────────────
        cached = await self.cache.get(identifier)
        if cached is not None:
            return cached

        # ── 3. Store ─────────────────────────────────────────────────
        generation = self._generation
        entry = await self.store.find(identifier)
        if entry is not None and entry.is_active(now):
            verdict = ReputationVerdict(
                flagged    = True,
                tier       = entry.risk_tier,
                reason     = entry.reason,
                confidence = entry.confidence_score,
                source     = "store",
            )
            logger.warning(
                f"[Reputation] BLACKLIST HIT — {identifier}  "
                f"tier={entry.risk_tier.value}  reports={entry.report_count}"
            )
        else:
            verdict = ReputationVerdict.safe(source="store")

        # Una invalidación durante la lectura deja este veredicto viejo
        if self._generation != generation:
            logger.info(f"[Reputation] {identifier} invalidado durante la consulta, no se cachea")
            return verdict

        await self.cache.set(identifier, verdict, self.ttl_seconds)
        if self._generation != generation:
            await self.cache.delete(identifier)
        return verdict

    async def invalidate(self, identifier: str) -> None:
        """
        Llamar después de confirmar cualquier cambio de estado o tier y
        antes de responder al cliente. Si Redis no responde tras el
        reintento, lanza CacheInvalidationException.
        """
        identifier = normalize_identifier(identifier)
        self._generation += 1
        try:
            await self.cache.delete(identifier)
        except CacheInvalidationException:
            logger.warning(f"[Reputation] Reintentando invalidación de {identifier}")
            await self.cache.delete(identifier)

    async def clear_all(self) -> int:
        self._generation += 1
        return await self.cache.clear()
