"""
ports.py
--------
Interfaces de los colaboradores externos del pipeline de riesgo.

Los servicios dependen solo de estos Protocols; las implementaciones
concretas (SQLAlchemy, Redis, httpx, aiosmtplib) viven en infrastructure/
y las pruebas usan dobles en memoria.
"""

from datetime import datetime
from typing import Optional, Protocol

from motor_riesgo.domain.entities import (
    Decision,
    GeoLocation,
    ReputationEntry,
    ReputationVerdict,
    TransactionRecord,
    UserBlockRecord,
    UserHistoryProfile,
    UserLearningState,
    VelocityWindow,
)
from motor_riesgo.domain.schemas import EntryStatus, FeedbackType, ListType


class UserHistoryStore(Protocol):

    async def ensure_user(self, user_id: str) -> None:
        """Crea el registro del usuario con la tabla de pesos base si no existe."""
        ...

    async def get_profile(self, user_id: str, now: datetime) -> UserHistoryProfile: ...

    async def get_velocity_window(
        self, user_id: str, since: datetime
    ) -> VelocityWindow: ...

    async def get_learning_state(self, user_id: str) -> Optional[UserLearningState]: ...

    async def get_adaptive_weights(self, user_id: str) -> Optional[dict[str, float]]: ...

    async def save_learning_state(
        self, state: UserLearningState, expected_version: int
    ) -> bool:
        """Compare-and-swap: False si la versión guardada ya cambió."""
        ...

    async def set_learning_enabled(self, user_id: str, enabled: bool) -> None: ...

    async def backfill_default_weights(self, weights: dict[str, float]) -> int: ...

    async def has_circle_report(self, user_id: str, identifier: str) -> bool: ...

    async def add_circle_report(
        self, reporter_id: str, identifier: str, reason: Optional[str]
    ) -> None: ...

    async def add_trusted_contact(self, user_id: str, contact_id: str) -> None: ...

    async def circle_members_of(self, user_id: str) -> list[str]:
        """Usuarios que tienen a user_id dentro de su círculo de confianza."""
        ...

    async def save_transaction(self, record: TransactionRecord) -> None: ...

    async def get_transaction(self, transaction_id: str) -> Optional[TransactionRecord]: ...

    async def update_transaction(self, record: TransactionRecord) -> None: ...

    async def mark_feedback(
        self, transaction_id: str, feedback_type: FeedbackType, comment: Optional[str]
    ) -> bool:
        """Registra el feedback solo si la transacción aún no tiene uno."""
        ...

    async def clear_feedback(
        self, transaction_id: str, feedback_type: FeedbackType
    ) -> bool:
        """Revierte un mark_feedback cuyo ajuste de pesos no se pudo aplicar."""
        ...


class ReputationStore(Protocol):

    async def find(
        self, identifier: str, list_type: ListType = ListType.BLACKLIST
    ) -> Optional[ReputationEntry]: ...

    async def find_whitelisted(
        self, identifier: str, now: datetime
    ) -> Optional[ReputationEntry]: ...

    async def upsert(self, entry: ReputationEntry) -> ReputationEntry: ...

    async def create_if_absent(self, entry: ReputationEntry) -> bool:
        """Inserción atómica; False si ya existía una entrada (identifier, list_type)."""
        ...

    async def promote_under_review(self, entry: ReputationEntry) -> bool:
        """Activa una entrada under_review. False si su estado ya no es under_review."""
        ...

    async def list_entries(
        self,
        list_type: ListType,
        status: Optional[EntryStatus] = None,
    ) -> list[ReputationEntry]: ...

    async def add_user_block(self, record: UserBlockRecord) -> bool:
        """False si el usuario ya tenía bloqueado el identificador."""
        ...

    async def remove_user_block(self, user_id: str, identifier: str) -> bool: ...

    async def list_user_blocks(self, user_id: str) -> list[UserBlockRecord]: ...

    async def is_blocked_by(self, user_id: str, identifier: str) -> bool: ...

    async def count_blockers(self, identifier: str) -> int: ...


class VerdictCache(Protocol):

    async def get(self, identifier: str) -> Optional[ReputationVerdict]: ...

    async def set(
        self, identifier: str, verdict: ReputationVerdict, ttl_seconds: int
    ) -> None: ...

    async def delete(self, identifier: str) -> None:
        """Lanza CacheInvalidationException si la key no se pudo borrar."""
        ...

    async def clear(self) -> int: ...


class GeoResolver(Protocol):

    async def resolve(self, latitude: float, longitude: float) -> GeoLocation: ...


class Notifier(Protocol):

    async def alert(self, user_id: str, decision: Decision, summary: dict) -> None: ...

    async def circle_alert(
        self, user_id: str, reporter_id: str, identifier: str, reason: Optional[str]
    ) -> None: ...
