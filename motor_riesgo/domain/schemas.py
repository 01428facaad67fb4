"""
schemas.py
----------
Enums del dominio y schemas Pydantic para validación de requests y responses.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# ─────────────────────────────────────────────────────────────────────
# ENUMS
# ─────────────────────────────────────────────────────────────────────

class DecisionAction(str, Enum):
    APPROVE = "APPROVE"
    WARN    = "WARN"
    DELAY   = "DELAY"
    BLOCK   = "BLOCK"


class RiskLevel(str, Enum):
    LOW      = "LOW"
    MEDIUM   = "MEDIUM"
    HIGH     = "HIGH"
    CRITICAL = "CRITICAL"


class RiskFactor(str, Enum):
    AMOUNT_ANOMALY     = "AMOUNT_ANOMALY"
    TIME_PATTERN       = "TIME_PATTERN"
    NEW_PAYEE          = "NEW_PAYEE"
    DEVICE_FINGERPRINT = "DEVICE_FINGERPRINT"
    LOCATION_ANOMALY   = "LOCATION_ANOMALY"
    VELOCITY_CHECK     = "VELOCITY_CHECK"
    CIRCLE_REPORT      = "CIRCLE_REPORT"
    BLACKLIST_HIT      = "BLACKLIST_HIT"
    WHITELIST_HIT      = "WHITELIST_HIT"


class FeedbackType(str, Enum):
    NOT_FRAUD       = "not_fraud"
    CONFIRMED_FRAUD = "confirmed_fraud"


class ListType(str, Enum):
    BLACKLIST = "blacklist"
    WHITELIST = "whitelist"


class RiskTier(str, Enum):
    LOW      = "low"
    MEDIUM   = "medium"
    HIGH     = "high"
    CRITICAL = "critical"


class EntryStatus(str, Enum):
    ACTIVE       = "active"
    UNDER_REVIEW = "under_review"
    RESOLVED     = "resolved"


class TransactionStatus(str, Enum):
    COMPLETED = "completed"
    PENDING   = "pending"      # WARN esperando confirmación
    DELAYED   = "delayed"      # DELAY con expires_at
    BLOCKED   = "blocked"
    CANCELLED = "cancelled"


class UserRole(str, Enum):
    USER       = "user"
    ADMIN      = "admin"
    SUPERADMIN = "superadmin"


# ─────────────────────────────────────────────────────────────────────
# AUTENTICACIÓN
# ─────────────────────────────────────────────────────────────────────

class CurrentUser(BaseModel):
    user_id: str
    role:    UserRole = UserRole.USER

    @property
    def is_admin(self) -> bool:
        return self.role in (UserRole.ADMIN, UserRole.SUPERADMIN)


# ─────────────────────────────────────────────────────────────────────
# TRANSACCIONES
# ─────────────────────────────────────────────────────────────────────

def _normalize_identifier(v: str) -> str:
    return v.strip().lower()


class TransactionRequest(BaseModel):
    payee:      str             = Field(..., min_length=3, max_length=100)
    amount:     float           = Field(..., gt=0)
    payee_name: Optional[str]   = Field(None, max_length=120)
    device_id:  Optional[str]   = Field(None, max_length=200)
    latitude:   Optional[float] = Field(None, ge=-90,  le=90)
    longitude:  Optional[float] = Field(None, ge=-180, le=180)
    timestamp:  Optional[datetime] = None

    # Override administrativo — solo tiene efecto si el token es de admin
    force_approve: bool = False

    @field_validator("payee")
    @classmethod
    def normalize_payee(cls, v: str) -> str:
        return _normalize_identifier(v)

    @model_validator(mode="after")
    def coordinates_together(self):
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude y longitude deben enviarse juntas")
        return self


class DecisionResponse(BaseModel):
    transaction_id:        str
    action:                DecisionAction
    risk_score:            int
    risk_level:            RiskLevel
    reasons:               list[str]
    breakdown:             dict[str, float]
    metadata:              dict
    requires_confirmation: bool
    alert_message:         Optional[str] = None


class TransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id:            str
    payee:         str
    amount:        float
    status:        TransactionStatus
    action:        Optional[DecisionAction]
    risk_score:    Optional[int]
    risk_level:    Optional[RiskLevel]
    reasons:       list[str]
    breakdown:     dict[str, float]
    metadata:      dict
    feedback_type: Optional[FeedbackType]
    created_at:    datetime


# ─────────────────────────────────────────────────────────────────────
# FEEDBACK Y APRENDIZAJE
# ─────────────────────────────────────────────────────────────────────

class FeedbackRequest(BaseModel):
    transaction_id: str
    feedback_type:  FeedbackType
    comment:        Optional[str] = Field(None, max_length=500)


class LearningStatsResponse(BaseModel):
    total_feedback:     int
    false_positives:    int
    false_negatives:    int
    confidence:         float
    last_adjustment_at: Optional[datetime]
    learning_enabled:   bool
    weights:            dict[str, float]


class FeedbackResponse(BaseModel):
    transaction_id: str
    adjustment:     str
    weights:        dict[str, float]
    stats:          LearningStatsResponse


class LearningToggleRequest(BaseModel):
    enabled: bool


# ─────────────────────────────────────────────────────────────────────
# REPUTACIÓN
# ─────────────────────────────────────────────────────────────────────

class IdentifierRequest(BaseModel):
    identifier: str           = Field(..., min_length=3, max_length=100)
    reason:     Optional[str] = Field(None, max_length=300)

    @field_validator("identifier")
    @classmethod
    def normalize_identifier(cls, v: str) -> str:
        return _normalize_identifier(v)


class ReputationCheckResponse(BaseModel):
    identifier:  str
    flagged:     bool
    whitelisted: bool
    tier:        Optional[RiskTier] = None
    reason:      Optional[str]      = None
    confidence:  Optional[int]      = None
    source:      str


class BlockResponse(BaseModel):
    identifier:  str
    block_count: int
    escalated:   bool


class UserBlockResponse(BaseModel):
    identifier: str
    reason:     Optional[str]
    blocked_at: datetime


class ReputationEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    identifier:       str
    list_type:        ListType
    risk_tier:        RiskTier
    confidence_score: int
    report_count:     int
    status:           EntryStatus
    reason:           Optional[str]
    source:           str


class CircleReportResponse(BaseModel):
    identifier:         str
    notified_members:   int


class PayeeStatsResponse(BaseModel):
    identifier:  str
    block_count: int
    entry:       Optional[ReputationEntryResponse] = None


class TrustedContactRequest(BaseModel):
    contact_id: str = Field(..., min_length=1, max_length=64)


class TrustedContactResponse(BaseModel):
    user_id:    str
    contact_id: str


class EntryStatusUpdate(BaseModel):
    status:    EntryStatus
    risk_tier: Optional[RiskTier] = None


class BatchImportItem(BaseModel):
    identifier:       str      = Field(..., min_length=3, max_length=100)
    list_type:        ListType = ListType.BLACKLIST
    reason:           Optional[str] = None
    risk_tier:        RiskTier = RiskTier.MEDIUM
    confidence_score: int      = Field(75, ge=0, le=100)

    @field_validator("identifier")
    @classmethod
    def normalize_identifier(cls, v: str) -> str:
        return _normalize_identifier(v)


class BatchImportRequest(BaseModel):
    source:  str = "feed"
    entries: list[BatchImportItem] = Field(..., min_length=1, max_length=1000)


class BatchImportResponse(BaseModel):
    created: int
    updated: int


# ─────────────────────────────────────────────────────────────────────
# CONFIGURACIÓN ADMINISTRABLE
# Todos los campos son opcionales: solo se aplican los enviados.
# Las validaciones cruzadas (orden de umbrales) viven en cada motor.
# ─────────────────────────────────────────────────────────────────────

class DecisionConfigUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    block_threshold:        Optional[int]   = Field(None, ge=1, le=100)
    delay_threshold:        Optional[int]   = Field(None, ge=1, le=100)
    warn_threshold:         Optional[int]   = Field(None, ge=1, le=100)
    micro_amount_floor:     Optional[float] = Field(None, ge=0)
    high_risk_delay_seconds:     Optional[int] = Field(None, gt=0, le=86_400)
    critical_risk_delay_seconds: Optional[int] = Field(None, gt=0, le=86_400)
    appeal_window_hours:    Optional[int]   = Field(None, gt=0, le=720)


class ScoringConfigUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    default_weights:          Optional[dict[RiskFactor, float]] = None
    high_amount:              Optional[float] = Field(None, gt=0)
    very_high_amount:         Optional[float] = Field(None, gt=0)
    velocity_window_minutes:  Optional[int]   = Field(None, gt=0, le=1440)
    velocity_count:           Optional[int]   = Field(None, ge=2, le=100)
    velocity_amount:          Optional[float] = Field(None, gt=0)
    circle_report_penalty:    Optional[float] = Field(None, ge=0, le=100)


class EscalationConfigUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    block_threshold: int = Field(..., ge=2, le=100)
