"""
reputation_repository.py
------------------------
Implementación SQLAlchemy de ReputationStore.

La restricción UNIQUE (identifier, list_type) es la que hace atómica la
creación de entradas: si dos escalaciones compiten, la segunda recibe
IntegrityError y create_if_absent retorna False. La promoción de una
entrada under_review es un UPDATE condicional por estado.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from motor_riesgo.domain import models
from motor_riesgo.domain.entities import ReputationEntry, UserBlockRecord
from motor_riesgo.domain.schemas import EntryStatus, ListType, RiskTier

logger = logging.getLogger(__name__)


def _as_utc(ts: Optional[datetime]) -> Optional[datetime]:
    if ts is None:
        return None
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


class SqlReputationStore:

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    # ------------------------------------------------------------------ #
    #  Entradas globales                                                 #
    # ------------------------------------------------------------------ #

    async def find(
        self, identifier: str, list_type: ListType = ListType.BLACKLIST
    ) -> Optional[ReputationEntry]:
        async with self._sessions() as session:
            row = await session.scalar(self._by_key(identifier, list_type))
        return self._to_entry(row) if row else None

    async def find_whitelisted(
        self, identifier: str, now: datetime
    ) -> Optional[ReputationEntry]:
        stmt = select(models.ReputationEntry).where(
            models.ReputationEntry.identifier == identifier,
            models.ReputationEntry.list_type == ListType.WHITELIST.value,
            models.ReputationEntry.status == EntryStatus.ACTIVE.value,
            or_(
                models.ReputationEntry.expires_at.is_(None),
                models.ReputationEntry.expires_at > now,
            ),
        )
        async with self._sessions() as session:
            row = await session.scalar(stmt)
        return self._to_entry(row) if row else None

    async def upsert(self, entry: ReputationEntry) -> ReputationEntry:
        async with self._sessions() as session:
            row = await session.scalar(self._by_key(entry.identifier, entry.list_type))
            if row is None:
                row = models.ReputationEntry(
                    identifier = entry.identifier,
                    list_type  = entry.list_type.value,
                )
                session.add(row)
            self._apply(row, entry)
            await session.commit()
            await session.refresh(row)
        return self._to_entry(row)

    async def create_if_absent(self, entry: ReputationEntry) -> bool:
        async with self._sessions() as session:
            row = models.ReputationEntry(
                identifier = entry.identifier,
                list_type  = entry.list_type.value,
            )
            self._apply(row, entry)
            session.add(row)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return False
        return True

    async def promote_under_review(self, entry: ReputationEntry) -> bool:
        stmt = (
            update(models.ReputationEntry)
            .where(
                models.ReputationEntry.identifier == entry.identifier,
                models.ReputationEntry.list_type  == entry.list_type.value,
                models.ReputationEntry.status     == EntryStatus.UNDER_REVIEW.value,
            )
            .values(
                status           = EntryStatus.ACTIVE.value,
                risk_tier        = entry.risk_tier.value,
                confidence_score = entry.confidence_score,
                report_count     = entry.report_count,
                reporters        = list(entry.reporters),
                updated_at       = datetime.now(timezone.utc),
            )
        )
        async with self._sessions() as session:
            result = await session.execute(stmt)
            await session.commit()
        return result.rowcount == 1

    async def list_entries(
        self,
        list_type: ListType,
        status: Optional[EntryStatus] = None,
    ) -> list[ReputationEntry]:
        stmt = select(models.ReputationEntry).where(
            models.ReputationEntry.list_type == list_type.value
        )
        if status is not None:
            stmt = stmt.where(models.ReputationEntry.status == status.value)
        stmt = stmt.order_by(models.ReputationEntry.created_at.desc())
        async with self._sessions() as session:
            rows = (await session.scalars(stmt)).all()
        return [self._to_entry(r) for r in rows]

    # ------------------------------------------------------------------ #
    #  Bloqueos personales                                               #
    # ------------------------------------------------------------------ #

    async def add_user_block(self, record: UserBlockRecord) -> bool:
        async with self._sessions() as session:
            session.add(models.UserBlock(
                user_id    = record.user_id,
                identifier = record.identifier,
                reason     = record.reason,
                blocked_at = record.blocked_at,
            ))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return False
        return True

    async def remove_user_block(self, user_id: str, identifier: str) -> bool:
        stmt = delete(models.UserBlock).where(
            models.UserBlock.user_id    == user_id,
            models.UserBlock.identifier == identifier,
        )
        async with self._sessions() as session:
            result = await session.execute(stmt)
            await session.commit()
        return result.rowcount > 0

    async def list_user_blocks(self, user_id: str) -> list[UserBlockRecord]:
        stmt = (
            select(models.UserBlock)
            .where(models.UserBlock.user_id == user_id)
            .order_by(models.UserBlock.blocked_at.desc())
        )
        async with self._sessions() as session:
            rows = (await session.scalars(stmt)).all()
        return [
            UserBlockRecord(
                user_id    = r.user_id,
                identifier = r.identifier,
                reason     = r.reason,
                blocked_at = _as_utc(r.blocked_at),
            )
            for r in rows
        ]

    async def is_blocked_by(self, user_id: str, identifier: str) -> bool:
        stmt = select(func.count(models.UserBlock.id)).where(
            models.UserBlock.user_id    == user_id,
            models.UserBlock.identifier == identifier,
        )
        async with self._sessions() as session:
            return (await session.scalar(stmt) or 0) > 0

    async def count_blockers(self, identifier: str) -> int:
        stmt = select(func.count(func.distinct(models.UserBlock.user_id))).where(
            models.UserBlock.identifier == identifier
        )
        async with self._sessions() as session:
            return int(await session.scalar(stmt) or 0)

    # ------------------------------------------------------------------ #
    #  Mapeo ORM ↔ dominio                                               #
    # ------------------------------------------------------------------ #

    @staticmethod
    def _by_key(identifier: str, list_type: ListType):
        return select(models.ReputationEntry).where(
            models.ReputationEntry.identifier == identifier,
            models.ReputationEntry.list_type  == list_type.value,
        )

    @staticmethod
    def _apply(row: models.ReputationEntry, entry: ReputationEntry) -> None:
        row.risk_tier        = entry.risk_tier.value
        row.confidence_score = entry.confidence_score
        row.report_count     = entry.report_count
        row.status           = entry.status.value
        row.reporters        = list(entry.reporters)
        row.reason           = entry.reason
        row.source           = entry.source
        row.expires_at       = entry.expires_at

    @staticmethod
    def _to_entry(row: models.ReputationEntry) -> ReputationEntry:
        return ReputationEntry(
            identifier       = row.identifier,
            list_type        = ListType(row.list_type),
            risk_tier        = RiskTier(row.risk_tier),
            confidence_score = row.confidence_score,
            report_count     = row.report_count,
            status           = EntryStatus(row.status),
            reporters        = list(row.reporters or []),
            reason           = row.reason,
            source           = row.source,
            expires_at       = _as_utc(row.expires_at),
            created_at       = _as_utc(row.created_at),
            updated_at       = _as_utc(row.updated_at),
        )
