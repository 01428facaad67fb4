"""
reputation_escalation.py
------------------------
Bloqueos personales, reportes de la comunidad y escalación a la lista
negra global.

Escalación automática:
  Cuando un destinatario acumula bloqueos de ESCALATION_THRESHOLD (3)
  usuarios distintos y no existe una entrada activa en la lista negra,
  se crea una con tier=high y confidence=min(50 + 10·bloqueos, 95).
  La promoción es de una sola vía: este flujo nunca des-escala. Una
  entrada "resolved" es decisión de un admin y se respeta.

Concurrencia:
  - asyncio.Lock por identificador → serializa el conteo-y-escritura
    dentro del proceso
  - UNIQUE (identifier, list_type) en el store → si otro proceso creó
    la entrada primero, create_if_absent retorna False y es un no-op
  - promote_under_review es un UPDATE condicionado al estado

Toda escritura que cambia estado o tier invalida la caché de reputación
antes de retornar al caller.
"""

import asyncio
import logging
import weakref
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional

from motor_riesgo.core.exceptions import (
    BlockNotFoundException,
    DuplicateBlockException,
    InvalidConfigurationException,
    ReputationEntryNotFoundException,
    WhitelistedIdentifierException,
)
from motor_riesgo.domain.entities import (
    ReputationEntry,
    UserBlockRecord,
    normalize_identifier,
)
from motor_riesgo.domain.ports import Notifier, ReputationStore, UserHistoryStore
from motor_riesgo.domain.schemas import (
    BatchImportItem,
    EntryStatus,
    ListType,
    RiskTier,
)
from motor_riesgo.services.reputation_cache import ReputationCache

logger = logging.getLogger(__name__)

# ── Escalación por bloqueos ───────────────────────────────────────────
ESCALATION_THRESHOLD      = 3
ESCALATION_BASE_CONFIDENCE = 50
ESCALATION_MAX_CONFIDENCE  = 95

# ── Reportes de la comunidad ──────────────────────────────────────────
REPORT_BASE_CONFIDENCE = 50
REPORT_MEDIUM_AT       = 3
REPORT_HIGH_AT         = 5

_TIER_ORDER = [RiskTier.LOW, RiskTier.MEDIUM, RiskTier.HIGH, RiskTier.CRITICAL]


def _max_tier(a: RiskTier, b: RiskTier) -> RiskTier:
    return a if _TIER_ORDER.index(a) >= _TIER_ORDER.index(b) else b


@dataclass
class BlockOutcome:
    identifier:  str
    block_count: int
    escalated:   bool


@dataclass
class PayeeStats:
    identifier:  str
    block_count: int
    entry:       Optional[ReputationEntry]


class ReputationEscalation:

    def __init__(
        self,
        store:      ReputationStore,
        reputation: ReputationCache,
        history:    UserHistoryStore,
        notifier:   Notifier,
        threshold:  int = ESCALATION_THRESHOLD,
    ):
        self.store      = store
        self.reputation = reputation
        self.history    = history
        self.notifier   = notifier
        self._threshold = threshold
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )
        self._background: set[asyncio.Task] = set()

    # ------------------------------------------------------------------ #
    #  Configuración                                                     #
    # ------------------------------------------------------------------ #

    @property
    def threshold(self) -> int:
        return self._threshold

    def update_threshold(self, value: int) -> int:
        if not isinstance(value, int) or isinstance(value, bool) or value < 2:
            raise InvalidConfigurationException(
                "El umbral de escalación debe ser un entero mayor o igual a 2."
            )
        logger.info(f"[Escalation] Umbral actualizado {self._threshold} → {value}")
        self._threshold = value
        return value

    def _lock_for(self, identifier: str) -> asyncio.Lock:
        lock = self._locks.get(identifier)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[identifier] = lock
        return lock

    # ------------------------------------------------------------------ #
    #  Bloqueos personales                                               #
    # ------------------------------------------------------------------ #

    async def block_payee(
        self, user_id: str, identifier: str, reason: Optional[str] = None
    ) -> BlockOutcome:
        identifier = normalize_identifier(identifier)

        async with self._lock_for(identifier):
            added = await self.store.add_user_block(UserBlockRecord(
                user_id    = user_id,
                identifier = identifier,
                reason     = reason,
                blocked_at = datetime.now(timezone.utc),
            ))
            if not added:
                raise DuplicateBlockException()

            count = await self.store.count_blockers(identifier)
            logger.info(
                f"[Escalation] Bloqueo registrado — user={user_id}  "
                f"payee={identifier}  bloqueos={count}"
            )

            escalated = False
            if count >= self._threshold:
                escalated = await self._escalate(identifier, count)

        return BlockOutcome(identifier=identifier, block_count=count, escalated=escalated)

    async def _escalate(self, identifier: str, block_count: int) -> bool:
        existing = await self.store.find(identifier, ListType.BLACKLIST)
        confidence = min(
            ESCALATION_BASE_CONFIDENCE + 10 * block_count, ESCALATION_MAX_CONFIDENCE
        )

        if existing is None:
            applied = await self.store.create_if_absent(ReputationEntry(
                identifier       = identifier,
                list_type        = ListType.BLACKLIST,
                risk_tier        = RiskTier.HIGH,
                confidence_score = confidence,
                report_count     = block_count,
                status           = EntryStatus.ACTIVE,
                reason           = f"Bloqueado por {block_count} usuarios",
                source           = "community_block",
            ))
        elif existing.status == EntryStatus.UNDER_REVIEW:
            existing.risk_tier        = _max_tier(existing.risk_tier, RiskTier.HIGH)
            existing.confidence_score = max(existing.confidence_score, confidence)
            existing.report_count     = max(existing.report_count, block_count)
            applied = await self.store.promote_under_review(existing)
        else:
            # active → ya escalado; resolved → decisión de un admin
            applied = False

        if not applied:
            return False

        logger.warning(
            f"[Escalation] {identifier} promovido a lista negra global — "
            f"bloqueos={block_count}  confidence={confidence}"
        )
        await self.reputation.invalidate(identifier)
        return True

    async def unblock_payee(self, user_id: str, identifier: str) -> None:
        """Quita el bloqueo personal. No revierte una escalación ya hecha."""
        identifier = normalize_identifier(identifier)
        removed = await self.store.remove_user_block(user_id, identifier)
        if not removed:
            raise BlockNotFoundException()
        logger.info(f"[Escalation] Bloqueo removido — user={user_id}  payee={identifier}")

    async def list_user_blocks(self, user_id: str) -> list[UserBlockRecord]:
        return await self.store.list_user_blocks(user_id)

    async def is_blocked_by(self, user_id: str, identifier: str) -> bool:
        return await self.store.is_blocked_by(user_id, normalize_identifier(identifier))

    async def payee_stats(self, identifier: str) -> PayeeStats:
        identifier = normalize_identifier(identifier)
        count, entry = await asyncio.gather(
            self.store.count_blockers(identifier),
            self.store.find(identifier, ListType.BLACKLIST),
        )
        return PayeeStats(identifier=identifier, block_count=count, entry=entry)

    # ------------------------------------------------------------------ #
    #  Reportes de la comunidad                                          #
    # ------------------------------------------------------------------ #

    async def report_payee(
        self, reporter_id: str, identifier: str, reason: Optional[str] = None
    ) -> ReputationEntry:
        """
        Primer reporte → entrada under_review, tier low, confidence 50.
        Reportes siguientes → report_count+1, confidence=min(50+10·n, 100),
        tier low→medium con 3 reportes y →high con 5. El tier nunca baja.
        """
        identifier = normalize_identifier(identifier)
        now = datetime.now(timezone.utc)

        if await self.store.find_whitelisted(identifier, now) is not None:
            raise WhitelistedIdentifierException()

        async with self._lock_for(identifier):
            entry = await self.store.find(identifier, ListType.BLACKLIST)

            if entry is None:
                entry = ReputationEntry(
                    identifier       = identifier,
                    list_type        = ListType.BLACKLIST,
                    risk_tier        = RiskTier.LOW,
                    confidence_score = REPORT_BASE_CONFIDENCE,
                    report_count     = 1,
                    status           = EntryStatus.UNDER_REVIEW,
                    reporters        = [reporter_id],
                    reason           = reason or "reported_by_user",
                    source           = "community",
                )
            else:
                entry.report_count += 1
                entry.confidence_score = min(
                    100, REPORT_BASE_CONFIDENCE + 10 * entry.report_count
                )
                if entry.report_count >= REPORT_HIGH_AT:
                    entry.risk_tier = _max_tier(entry.risk_tier, RiskTier.HIGH)
                elif entry.report_count >= REPORT_MEDIUM_AT:
                    entry.risk_tier = _max_tier(entry.risk_tier, RiskTier.MEDIUM)
                entry.reporters = [*entry.reporters, reporter_id]

            saved = await self.store.upsert(entry)
            await self.reputation.invalidate(identifier)

        logger.info(
            f"[Escalation] Reporte — payee={identifier}  reports={saved.report_count}  "
            f"tier={saved.risk_tier.value}  status={saved.status.value}"
        )
        return saved

    async def report_to_circle(
        self, reporter_id: str, identifier: str, reason: Optional[str] = None
    ) -> int:
        """
        Registra el reporte para el factor de círculo del scoring y avisa
        a los usuarios que tienen al reportante en su círculo de confianza.
        Retorna cuántos usuarios serán notificados.
        """
        identifier = normalize_identifier(identifier)
        await self.history.add_circle_report(reporter_id, identifier, reason)
        members = await self.history.circle_members_of(reporter_id)

        if members:
            task = asyncio.create_task(
                self._notify_circle(members, reporter_id, identifier, reason)
            )
            self._background.add(task)
            task.add_done_callback(self._background.discard)

        logger.info(
            f"[Escalation] Reporte al círculo — reporter={reporter_id}  "
            f"payee={identifier}  miembros={len(members)}"
        )
        return len(members)

    async def _notify_circle(
        self,
        members: list[str],
        reporter_id: str,
        identifier: str,
        reason: Optional[str],
    ) -> None:
        results = await asyncio.gather(
            *(
                self.notifier.circle_alert(member, reporter_id, identifier, reason)
                for member in members
            ),
            return_exceptions=True,
        )
        for member, result in zip(members, results):
            if isinstance(result, Exception):
                logger.error(f"[Escalation] Falló alerta de círculo a {member}: {result}")

    # ------------------------------------------------------------------ #
    #  Administración                                                    #
    # ------------------------------------------------------------------ #

    async def list_entries(
        self, list_type: ListType, status: Optional[EntryStatus] = None
    ) -> list[ReputationEntry]:
        return await self.store.list_entries(list_type, status)

    async def update_entry_status(
        self,
        identifier: str,
        status:     EntryStatus,
        risk_tier:  Optional[RiskTier] = None,
        list_type:  ListType = ListType.BLACKLIST,
    ) -> ReputationEntry:
        identifier = normalize_identifier(identifier)
        async with self._lock_for(identifier):
            entry = await self.store.find(identifier, list_type)
            if entry is None:
                raise ReputationEntryNotFoundException()
            entry.status = status
            if risk_tier is not None:
                entry.risk_tier = risk_tier
            saved = await self.store.upsert(entry)
            await self.reputation.invalidate(identifier)

        logger.info(
            f"[Escalation] Admin actualizó {identifier} ({list_type.value}) — "
            f"status={status.value}  tier={saved.risk_tier.value}"
        )
        return saved

    async def deactivate_entry(
        self, identifier: str, list_type: ListType = ListType.BLACKLIST
    ) -> ReputationEntry:
        """Las entradas nunca se borran: pasan a resolved."""
        return await self.update_entry_status(
            identifier, EntryStatus.RESOLVED, list_type=list_type
        )

    async def batch_import(
        self, items: Iterable[BatchImportItem], source: str = "feed"
    ) -> tuple[int, int]:
        """Importa un feed externo. Retorna (creadas, actualizadas)."""
        created = updated = 0
        for item in items:
            identifier = normalize_identifier(item.identifier)
            async with self._lock_for(identifier):
                entry = await self.store.find(identifier, item.list_type)
                if entry is None:
                    entry = ReputationEntry(
                        identifier       = identifier,
                        list_type        = item.list_type,
                        risk_tier        = item.risk_tier,
                        confidence_score = item.confidence_score,
                        report_count     = 1,
                        status           = EntryStatus.ACTIVE,
                        reason           = item.reason or "fraud",
                        source           = source,
                    )
                    created += 1
                else:
                    entry.risk_tier = item.risk_tier
                    entry.reason    = item.reason or entry.reason
                    entry.status    = EntryStatus.ACTIVE
                    updated += 1
                await self.store.upsert(entry)
                await self.reputation.invalidate(identifier)

        logger.info(
            f"[Escalation] Importación '{source}' — creadas={created}  actualizadas={updated}"
        )
        return created, updated
