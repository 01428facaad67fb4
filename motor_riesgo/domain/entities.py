"""
entities.py
-----------
Tipos internos del pipeline de riesgo.

Son dataclasses simples (no Pydantic) porque viajan entre servicios
dentro del mismo proceso: contexto de la transacción, perfil histórico,
pesos adaptativos, veredictos de reputación, evaluación y decisión.

La tabla canónica de pesos por defecto vive aquí y es la única fuente
de verdad: el scoring la usa como base, el aprendizaje la usa para
resetear y el backfill de arranque la escribe en usuarios sin pesos.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Mapping, Optional

from motor_riesgo.domain.schemas import (
    DecisionAction,
    EntryStatus,
    FeedbackType,
    ListType,
    RiskFactor,
    RiskLevel,
    RiskTier,
    TransactionStatus,
)


# ── Pesos ─────────────────────────────────────────────────────────────

MIN_WEIGHT = 5.0
MAX_WEIGHT = 50.0

ORDINARY_FACTORS: tuple[RiskFactor, ...] = (
    RiskFactor.AMOUNT_ANOMALY,
    RiskFactor.TIME_PATTERN,
    RiskFactor.NEW_PAYEE,
    RiskFactor.DEVICE_FINGERPRINT,
    RiskFactor.LOCATION_ANOMALY,
    RiskFactor.VELOCITY_CHECK,
)

DEFAULT_WEIGHTS: Mapping[RiskFactor, float] = {
    RiskFactor.AMOUNT_ANOMALY:     25.0,
    RiskFactor.TIME_PATTERN:       15.0,
    RiskFactor.NEW_PAYEE:          20.0,
    RiskFactor.DEVICE_FINGERPRINT: 15.0,
    RiskFactor.LOCATION_ANOMALY:   10.0,
    RiskFactor.VELOCITY_CHECK:     10.0,
}

# Nunca se adaptan
OVERRIDE_WEIGHTS: Mapping[RiskFactor, float] = {
    RiskFactor.BLACKLIST_HIT:  100.0,
    RiskFactor.WHITELIST_HIT: -100.0,
}


def default_weight_table() -> dict[str, float]:
    """Copia serializable de la tabla base (claves str para JSON)."""
    return {factor.value: weight for factor, weight in DEFAULT_WEIGHTS.items()}


def _utc(ts: datetime) -> datetime:
    # Timestamps sin zona se interpretan como UTC
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def normalize_identifier(identifier: str) -> str:
    return identifier.strip().lower()


# ─────────────────────────────────────────────────────────────────────
# Entrada del pipeline
# ─────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class GeoPoint:
    latitude:  float
    longitude: float


@dataclass(frozen=True)
class GeoLocation:
    city:    str = "unknown"
    state:   str = "unknown"
    country: str = "unknown"

    @property
    def is_known(self) -> bool:
        return self.city != "unknown"

    @classmethod
    def unknown(cls) -> "GeoLocation":
        return cls()


@dataclass
class TransactionContext:
    user_id:    str
    payee:      str
    amount:     float
    timestamp:  datetime
    device_id:  Optional[str]       = None
    geo:        Optional[GeoPoint]  = None
    city:       Optional[str]       = None
    payee_name: Optional[str]       = None

    def __post_init__(self):
        if self.amount <= 0:
            raise ValueError("amount debe ser positivo")
        self.payee     = normalize_identifier(self.payee)
        self.timestamp = _utc(self.timestamp)


@dataclass(frozen=True)
class UserHistoryProfile:
    """
    Snapshot del historial completado del usuario (últimos 90 días).
    hour_counts es el histograma hora → número de transacciones.
    """
    transaction_count: int = 0
    average_amount:    float = 0.0
    max_amount:        float = 0.0
    known_payees:      frozenset = frozenset()
    known_devices:     frozenset = frozenset()
    common_city:       Optional[str] = None
    hour_counts:       Mapping[int, int] = field(default_factory=dict)

    @classmethod
    def empty(cls) -> "UserHistoryProfile":
        return cls()


@dataclass(frozen=True)
class VelocityWindow:
    """Transacciones previas del usuario dentro de la ventana de velocidad."""
    count:        int   = 0
    total_amount: float = 0.0


# ─────────────────────────────────────────────────────────────────────
# Aprendizaje
# ─────────────────────────────────────────────────────────────────────

@dataclass
class LearningStats:
    total_feedback:     int = 0
    false_positives:    int = 0
    false_negatives:    int = 0
    last_adjustment_at: Optional[datetime] = None

    @property
    def confidence(self) -> float:
        return min(self.total_feedback / 10, 1.0)

    def to_dict(self) -> dict:
        return {
            "total_feedback":     self.total_feedback,
            "false_positives":    self.false_positives,
            "false_negatives":    self.false_negatives,
            "last_adjustment_at": (
                self.last_adjustment_at.isoformat()
                if self.last_adjustment_at else None
            ),
        }

    @classmethod
    def from_dict(cls, raw: Optional[Mapping]) -> "LearningStats":
        if not raw:
            return cls()
        last = raw.get("last_adjustment_at")
        return cls(
            total_feedback     = int(raw.get("total_feedback", 0)),
            false_positives    = int(raw.get("false_positives", 0)),
            false_negatives    = int(raw.get("false_negatives", 0)),
            last_adjustment_at = datetime.fromisoformat(last) if last else None,
        )


@dataclass
class UserLearningState:
    """
    Pesos + estadísticas de un usuario, con el contador de versión
    usado para el compare-and-swap al guardar.
    """
    user_id:          str
    weights:          dict[str, float]
    stats:            LearningStats = field(default_factory=LearningStats)
    learning_enabled: bool = True
    version:          int = 0


# ─────────────────────────────────────────────────────────────────────
# Reputación
# ─────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ReputationVerdict:
    flagged:     bool
    whitelisted: bool                = False
    tier:        Optional[RiskTier]  = None
    reason:      Optional[str]       = None
    confidence:  Optional[int]       = None
    source:      str                 = "store"

    @classmethod
    def safe(cls, source: str = "store") -> "ReputationVerdict":
        return cls(flagged=False, source=source)


@dataclass
class ReputationEntry:
    identifier:       str
    list_type:        ListType
    risk_tier:        RiskTier     = RiskTier.LOW
    confidence_score: int          = 50
    report_count:     int          = 1
    status:           EntryStatus  = EntryStatus.UNDER_REVIEW
    reporters:        list[str]    = field(default_factory=list)
    reason:           Optional[str] = None
    source:           str          = "community"
    expires_at:       Optional[datetime] = None
    created_at:       Optional[datetime] = None
    updated_at:       Optional[datetime] = None

    def is_active(self, now: Optional[datetime] = None) -> bool:
        if self.status != EntryStatus.ACTIVE:
            return False
        if self.expires_at is None:
            return True
        now = now or datetime.now(timezone.utc)
        return _utc(self.expires_at) > now


@dataclass(frozen=True)
class UserBlockRecord:
    user_id:    str
    identifier: str
    reason:     Optional[str]
    blocked_at: datetime


# ─────────────────────────────────────────────────────────────────────
# Salida del scoring y de la decisión
# ─────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class RiskAssessment:
    total_score:        int
    risk_level:         RiskLevel
    contributions:      Mapping[str, float]
    reasons:            tuple[str, ...]
    suggested_decision: DecisionAction
    amount:             float
    blacklist_hit:      bool = False
    whitelist_hit:      bool = False
    circle_reported:    bool = False
    degraded_factors:   tuple[str, ...] = ()

    def contributing_factors(self) -> list[str]:
        """Factores ordinarios con aporte > 0 (los que el aprendizaje ajusta)."""
        ordinary = {f.value for f in ORDINARY_FACTORS}
        return [
            name for name, points in self.contributions.items()
            if name in ordinary and points > 0
        ]


@dataclass(frozen=True)
class OverrideFlags:
    force_approve: bool = False
    approved_by:   Optional[str] = None


@dataclass
class Decision:
    action:     DecisionAction
    score:      int
    risk_level: RiskLevel
    reasons:    list[str]
    metadata:   dict = field(default_factory=dict)
    decided_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def requires_confirmation(self) -> bool:
        return self.action == DecisionAction.WARN

    @property
    def can_proceed(self) -> bool:
        return self.action == DecisionAction.APPROVE

    @property
    def is_blocked(self) -> bool:
        return self.action == DecisionAction.BLOCK


# ─────────────────────────────────────────────────────────────────────
# Registro persistido de la transacción
# ─────────────────────────────────────────────────────────────────────

@dataclass
class TransactionRecord:
    id:            str
    user_id:       str
    payee:         str
    amount:        float
    status:        TransactionStatus
    created_at:    datetime
    device_id:     Optional[str] = None
    city:          Optional[str] = None
    latitude:      Optional[float] = None
    longitude:     Optional[float] = None
    payee_name:    Optional[str] = None
    risk_score:    Optional[int] = None
    risk_level:    Optional[RiskLevel] = None
    action:        Optional[DecisionAction] = None
    breakdown:     dict = field(default_factory=dict)
    reasons:       list[str] = field(default_factory=list)
    metadata:      dict = field(default_factory=dict)
    feedback_type: Optional[FeedbackType] = None
    updated_at:    Optional[datetime] = None
