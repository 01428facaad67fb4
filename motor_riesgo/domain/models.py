"""
models.py
---------
Modelos SQLAlchemy del Motor de Riesgo P2P.

Tablas:
  - User                → pesos adaptativos, estadísticas de aprendizaje
                          y versión para compare-and-swap
  - TrustedContact      → círculo de confianza de cada usuario
  - PaymentTransaction  → registro de cada evaluación con su decisión
  - ReputationEntry     → lista negra / lista blanca global de destinatarios
  - UserBlock           → bloqueos personales (alimentan la escalación)
  - CircleReport        → reportes de un destinatario hechos al círculo

Principios de diseño:
  - Las columnas JSON usan JSONB en PostgreSQL y JSON genérico en otros
    motores, para que las pruebas corran sobre SQLite.
  - created_at siempre con timezone=True.
  - Las restricciones UNIQUE son las que serializan las carreras de
    escalación y de bloqueos duplicados.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONType = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


# ─────────────────────────────────────────────────────────────────────
# USUARIOS
# El id viene del servicio de autenticación externo (claim "sub").
# ─────────────────────────────────────────────────────────────────────
class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    # Pesos por factor {"AMOUNT_ANOMALY": 25.0, ...}. NULL hasta el backfill.
    adaptive_weights: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    learning_stats: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    # Privacidad: el usuario puede desactivar el aprendizaje conductual
    learning_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )

    # Se incrementa en cada escritura de pesos (lock optimista)
    learning_version: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )


class TrustedContact(Base):
    __tablename__ = "trusted_contacts"
    __table_args__ = (
        UniqueConstraint("user_id", "contact_id", name="uq_trusted_contact"),
        Index("ix_trusted_contact_contact", "contact_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    contact_id: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )


# ─────────────────────────────────────────────────────────────────────
# TRANSACCIONES
# Una fila por evaluación. Los campos de decisión son los que consumen
# los sistemas downstream: score, nivel, acción, desglose por factor,
# razones ordenadas y metadata (expiración de delay, ventana de
# apelación, overrides).
# ─────────────────────────────────────────────────────────────────────
class PaymentTransaction(Base):
    __tablename__ = "payment_transactions"
    __table_args__ = (
        Index("ix_payment_tx_user_created", "user_id", "created_at"),
        Index("ix_payment_tx_payee", "payee"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    payee: Mapped[str] = mapped_column(String(100), nullable=False)
    payee_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    amount: Mapped[float] = mapped_column(Float, nullable=False)

    device_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    city: Mapped[str | None] = mapped_column(String(120), nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)

    # completed | pending | delayed | blocked | cancelled
    status: Mapped[str] = mapped_column(String(16), nullable=False)

    risk_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    risk_level: Mapped[str | None] = mapped_column(String(10), nullable=True)
    action: Mapped[str | None] = mapped_column(String(10), nullable=True)
    breakdown: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    reasons: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    decision_metadata: Mapped[dict] = mapped_column(
        JSONType, nullable=False, default=dict
    )

    feedback_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    feedback_comment: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, onupdate=_now
    )


# ─────────────────────────────────────────────────────────────────────
# REPUTACIÓN
# Nunca se borra una entrada: se desactiva pasando a "resolved".
# ─────────────────────────────────────────────────────────────────────
class ReputationEntry(Base):
    __tablename__ = "reputation_entries"
    __table_args__ = (
        UniqueConstraint("identifier", "list_type", name="uq_reputation_identifier"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    identifier: Mapped[str] = mapped_column(String(100), nullable=False)
    list_type: Mapped[str] = mapped_column(String(10), nullable=False)
    risk_tier: Mapped[str] = mapped_column(String(10), nullable=False, default="low")
    confidence_score: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    report_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    reporters: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    source: Mapped[str] = mapped_column(String(30), nullable=False, default="community")

    # Solo aplica a lista blanca
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, onupdate=_now
    )


class UserBlock(Base):
    __tablename__ = "user_blocks"
    __table_args__ = (
        UniqueConstraint("user_id", "identifier", name="uq_user_block"),
        Index("ix_user_block_identifier", "identifier"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    identifier: Mapped[str] = mapped_column(String(100), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    blocked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )


class CircleReport(Base):
    __tablename__ = "circle_reports"
    __table_args__ = (
        Index("ix_circle_report_identifier", "identifier", "reporter_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    reporter_id: Mapped[str] = mapped_column(String(64), nullable=False)
    identifier: Mapped[str] = mapped_column(String(100), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )
