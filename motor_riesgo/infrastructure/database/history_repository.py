"""
history_repository.py
---------------------
Implementación SQLAlchemy de UserHistoryStore.

Responsabilidades:
  - Construir el UserHistoryProfile (últimos 90 días, solo completadas)
  - Ventana de velocidad (completadas + pendientes + en espera)
  - Pesos adaptativos con compare-and-swap sobre users.learning_version
  - Círculo de confianza y reportes al círculo
  - CRUD del registro de transacción con su decisión

Cada método abre y confirma su propia sesión: las escrituras quedan
visibles en cuanto el método retorna, que es lo que necesitan el lock
optimista de pesos y la escalación.
"""

import logging
import uuid
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from motor_riesgo.domain import models
from motor_riesgo.domain.entities import (
    LearningStats,
    TransactionRecord,
    UserHistoryProfile,
    UserLearningState,
    VelocityWindow,
    default_weight_table,
)
from motor_riesgo.domain.schemas import (
    DecisionAction,
    FeedbackType,
    RiskLevel,
    TransactionStatus,
)

logger = logging.getLogger(__name__)

HISTORY_DAYS = 90

_VELOCITY_STATUSES = (
    TransactionStatus.COMPLETED.value,
    TransactionStatus.PENDING.value,
    TransactionStatus.DELAYED.value,
)


def _as_utc(ts: Optional[datetime]) -> Optional[datetime]:
    # SQLite devuelve datetimes sin zona; siempre se guardan en UTC
    if ts is None:
        return None
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _parse_uuid(value: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


class SqlUserHistoryStore:

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        local_timezone: str = "UTC",
    ) -> None:
        self._sessions = session_factory
        self._tz = ZoneInfo(local_timezone)

    # ------------------------------------------------------------------ #
    #  Perfil histórico y velocidad                                      #
    # ------------------------------------------------------------------ #

    async def get_profile(self, user_id: str, now: datetime) -> UserHistoryProfile:
        cutoff = _as_utc(now) - timedelta(days=HISTORY_DAYS)
        stmt = select(
            models.PaymentTransaction.amount,
            models.PaymentTransaction.payee,
            models.PaymentTransaction.device_id,
            models.PaymentTransaction.city,
            models.PaymentTransaction.created_at,
        ).where(
            models.PaymentTransaction.user_id == user_id,
            models.PaymentTransaction.status == TransactionStatus.COMPLETED.value,
            models.PaymentTransaction.created_at >= cutoff,
        )

        async with self._sessions() as session:
            rows = (await session.execute(stmt)).all()

        if not rows:
            return UserHistoryProfile.empty()

        amounts = [float(r.amount) for r in rows]
        cities  = Counter(r.city for r in rows if r.city and r.city != "unknown")
        hours   = Counter(_as_utc(r.created_at).astimezone(self._tz).hour for r in rows)

        return UserHistoryProfile(
            transaction_count = len(rows),
            average_amount    = sum(amounts) / len(amounts),
            max_amount        = max(amounts),
            known_payees      = frozenset(r.payee for r in rows),
            known_devices     = frozenset(r.device_id for r in rows if r.device_id),
            common_city       = cities.most_common(1)[0][0] if cities else None,
            hour_counts       = dict(hours),
        )

    async def get_velocity_window(self, user_id: str, since: datetime) -> VelocityWindow:
        stmt = select(
            func.count(models.PaymentTransaction.id),
            func.coalesce(func.sum(models.PaymentTransaction.amount), 0.0),
        ).where(
            models.PaymentTransaction.user_id == user_id,
            models.PaymentTransaction.status.in_(_VELOCITY_STATUSES),
            models.PaymentTransaction.created_at >= _as_utc(since),
        )
        async with self._sessions() as session:
            count, total = (await session.execute(stmt)).one()
        return VelocityWindow(count=int(count), total_amount=float(total))

    # ------------------------------------------------------------------ #
    #  Pesos adaptativos                                                 #
    # ------------------------------------------------------------------ #

    async def ensure_user(self, user_id: str) -> None:
        async with self._sessions() as session:
            if await session.get(models.User, user_id) is not None:
                return
            session.add(models.User(
                id               = user_id,
                adaptive_weights = default_weight_table(),
                learning_stats   = LearningStats().to_dict(),
            ))
            try:
                await session.commit()
                logger.info(f"[HistoryStore] Usuario registrado user={user_id}")
            except IntegrityError:
                # Otra request lo creó primero
                await session.rollback()

    async def get_learning_state(self, user_id: str) -> Optional[UserLearningState]:
        async with self._sessions() as session:
            user = await session.get(models.User, user_id)
        if user is None:
            return None
        return UserLearningState(
            user_id          = user.id,
            weights          = dict(user.adaptive_weights or default_weight_table()),
            stats            = LearningStats.from_dict(user.learning_stats),
            learning_enabled = user.learning_enabled,
            version          = user.learning_version,
        )

    async def get_adaptive_weights(self, user_id: str) -> Optional[dict[str, float]]:
        async with self._sessions() as session:
            user = await session.get(models.User, user_id)
        if user is None or not user.adaptive_weights:
            return None
        return dict(user.adaptive_weights)

    async def save_learning_state(
        self, state: UserLearningState, expected_version: int
    ) -> bool:
        stmt = (
            update(models.User)
            .where(
                models.User.id == state.user_id,
                models.User.learning_version == expected_version,
            )
            .values(
                adaptive_weights = dict(state.weights),
                learning_stats   = state.stats.to_dict(),
                learning_version = expected_version + 1,
            )
        )
        async with self._sessions() as session:
            result = await session.execute(stmt)
            await session.commit()
        return result.rowcount == 1

    async def set_learning_enabled(self, user_id: str, enabled: bool) -> None:
        async with self._sessions() as session:
            await session.execute(
                update(models.User)
                .where(models.User.id == user_id)
                .values(learning_enabled=enabled)
            )
            await session.commit()

    async def backfill_default_weights(self, weights: dict[str, float]) -> int:
        """Migración explícita: asigna la tabla base a usuarios sin pesos."""
        stmt = (
            update(models.User)
            .where(models.User.adaptive_weights.is_(None))
            .values(
                adaptive_weights = dict(weights),
                learning_stats   = LearningStats().to_dict(),
            )
        )
        async with self._sessions() as session:
            result = await session.execute(stmt)
            await session.commit()
        return result.rowcount or 0

    # ------------------------------------------------------------------ #
    #  Círculo de confianza                                              #
    # ------------------------------------------------------------------ #

    async def add_trusted_contact(self, user_id: str, contact_id: str) -> None:
        async with self._sessions() as session:
            session.add(models.TrustedContact(user_id=user_id, contact_id=contact_id))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()

    async def circle_members_of(self, user_id: str) -> list[str]:
        stmt = select(models.TrustedContact.user_id).where(
            models.TrustedContact.contact_id == user_id
        )
        async with self._sessions() as session:
            return list((await session.scalars(stmt)).all())

    async def has_circle_report(self, user_id: str, identifier: str) -> bool:
        circle = select(models.TrustedContact.contact_id).where(
            models.TrustedContact.user_id == user_id
        )
        stmt = select(func.count(models.CircleReport.id)).where(
            and_(
                models.CircleReport.identifier == identifier,
                models.CircleReport.reporter_id.in_(circle),
            )
        )
        async with self._sessions() as session:
            return (await session.scalar(stmt) or 0) > 0

    async def add_circle_report(
        self, reporter_id: str, identifier: str, reason: Optional[str]
    ) -> None:
        async with self._sessions() as session:
            session.add(models.CircleReport(
                reporter_id = reporter_id,
                identifier  = identifier,
                reason      = reason,
            ))
            await session.commit()

    # ------------------------------------------------------------------ #
    #  Registro de transacciones                                         #
    # ------------------------------------------------------------------ #

    async def save_transaction(self, record: TransactionRecord) -> None:
        async with self._sessions() as session:
            session.add(models.PaymentTransaction(
                id                = uuid.UUID(record.id),
                user_id           = record.user_id,
                payee             = record.payee,
                payee_name        = record.payee_name,
                amount            = record.amount,
                device_id         = record.device_id,
                city              = record.city,
                latitude          = record.latitude,
                longitude         = record.longitude,
                status            = record.status.value,
                risk_score        = record.risk_score,
                risk_level        = record.risk_level.value if record.risk_level else None,
                action            = record.action.value if record.action else None,
                breakdown         = dict(record.breakdown),
                reasons           = list(record.reasons),
                decision_metadata = dict(record.metadata),
                created_at        = _as_utc(record.created_at),
            ))
            await session.commit()
        logger.info(
            f"[HistoryStore] INSERT OK — tx={record.id}  user={record.user_id}  "
            f"action={record.action.value if record.action else None}  "
            f"score={record.risk_score}"
        )

    async def get_transaction(self, transaction_id: str) -> Optional[TransactionRecord]:
        tx_uuid = _parse_uuid(transaction_id)
        if tx_uuid is None:
            return None
        async with self._sessions() as session:
            row = await session.get(models.PaymentTransaction, tx_uuid)
        return self._to_record(row) if row else None

    async def update_transaction(self, record: TransactionRecord) -> None:
        stmt = (
            update(models.PaymentTransaction)
            .where(models.PaymentTransaction.id == uuid.UUID(record.id))
            .values(
                status            = record.status.value,
                action            = record.action.value if record.action else None,
                reasons           = list(record.reasons),
                decision_metadata = dict(record.metadata),
                updated_at        = datetime.now(timezone.utc),
            )
        )
        async with self._sessions() as session:
            await session.execute(stmt)
            await session.commit()

    async def mark_feedback(
        self, transaction_id: str, feedback_type: FeedbackType, comment: Optional[str]
    ) -> bool:
        tx_uuid = _parse_uuid(transaction_id)
        if tx_uuid is None:
            return False
        stmt = (
            update(models.PaymentTransaction)
            .where(
                models.PaymentTransaction.id == tx_uuid,
                models.PaymentTransaction.feedback_type.is_(None),
            )
            .values(feedback_type=feedback_type.value, feedback_comment=comment)
        )
        async with self._sessions() as session:
            result = await session.execute(stmt)
            await session.commit()
        return result.rowcount == 1

    async def clear_feedback(
        self, transaction_id: str, feedback_type: FeedbackType
    ) -> bool:
        tx_uuid = _parse_uuid(transaction_id)
        if tx_uuid is None:
            return False
        stmt = (
            update(models.PaymentTransaction)
            .where(
                models.PaymentTransaction.id == tx_uuid,
                models.PaymentTransaction.feedback_type == feedback_type.value,
            )
            .values(feedback_type=None, feedback_comment=None)
        )
        async with self._sessions() as session:
            result = await session.execute(stmt)
            await session.commit()
        return result.rowcount == 1

    @staticmethod
    def _to_record(row: models.PaymentTransaction) -> TransactionRecord:
        return TransactionRecord(
            id            = str(row.id),
            user_id       = row.user_id,
            payee         = row.payee,
            payee_name    = row.payee_name,
            amount        = float(row.amount),
            status        = TransactionStatus(row.status),
            created_at    = _as_utc(row.created_at),
            device_id     = row.device_id,
            city          = row.city,
            latitude      = row.latitude,
            longitude     = row.longitude,
            risk_score    = row.risk_score,
            risk_level    = RiskLevel(row.risk_level) if row.risk_level else None,
            action        = DecisionAction(row.action) if row.action else None,
            breakdown     = dict(row.breakdown or {}),
            reasons       = list(row.reasons or []),
            metadata      = dict(row.decision_metadata or {}),
            feedback_type = FeedbackType(row.feedback_type) if row.feedback_type else None,
            updated_at    = _as_utc(row.updated_at),
        )
