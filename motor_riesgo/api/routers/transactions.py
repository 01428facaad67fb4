"""
transactions.py — Router de evaluación de pagos P2P
---------------------------------------------------
Expone:
  POST /v1/transactions/evaluate             → Evalúa un pago y retorna la decisión
  GET  /v1/transactions/{id}                 → Consulta una transacción propia
  POST /v1/transactions/{id}/confirm         → Confirma un WARN o un DELAY expirado
  POST /v1/transactions/{id}/block           → El usuario bloquea un pago en espera
  POST /v1/transactions/{id}/override        → Anulación administrativa
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from motor_riesgo.api.dependencies import get_current_user, get_services, require_admin
from motor_riesgo.domain.entities import GeoPoint, OverrideFlags, TransactionContext
from motor_riesgo.domain.schemas import (
    CurrentUser,
    DecisionResponse,
    TransactionRequest,
    TransactionResponse,
)
from motor_riesgo.services.container import RiskServices

router = APIRouter(prefix="/v1/transactions", tags=["Transactions"])


@router.post("/evaluate", response_model=DecisionResponse)
async def evaluate_transaction(
    payload:  TransactionRequest,
    user:     CurrentUser  = Depends(get_current_user),
    services: RiskServices = Depends(get_services),
) -> DecisionResponse:
    context = TransactionContext(
        user_id    = user.user_id,
        payee      = payload.payee,
        amount     = payload.amount,
        timestamp  = payload.timestamp or datetime.now(timezone.utc),
        device_id  = payload.device_id,
        geo        = (
            GeoPoint(payload.latitude, payload.longitude)
            if payload.latitude is not None else None
        ),
        payee_name = payload.payee_name,
    )

    # force_approve solo cuenta si quien llama es admin
    overrides = OverrideFlags()
    if payload.force_approve and user.is_admin:
        overrides = OverrideFlags(force_approve=True, approved_by=user.user_id)

    result   = await services.orchestrator.evaluate_transaction(context, overrides)
    decision = result.decision

    return DecisionResponse(
        transaction_id        = result.transaction_id,
        action                = decision.action,
        risk_score            = decision.score,
        risk_level            = decision.risk_level,
        reasons               = decision.reasons,
        breakdown             = dict(result.assessment.contributions) if result.assessment else {},
        metadata              = decision.metadata,
        requires_confirmation = decision.requires_confirmation,
        alert_message         = result.alert_message,
    )


@router.get("/{transaction_id}", response_model=TransactionResponse)
async def get_transaction(
    transaction_id: str,
    user:     CurrentUser  = Depends(get_current_user),
    services: RiskServices = Depends(get_services),
):
    record = await services.orchestrator.get_transaction(user.user_id, transaction_id)
    return TransactionResponse.model_validate(record)


@router.post("/{transaction_id}/confirm", response_model=TransactionResponse)
async def confirm_transaction(
    transaction_id: str,
    user:     CurrentUser  = Depends(get_current_user),
    services: RiskServices = Depends(get_services),
):
    record = await services.orchestrator.confirm_transaction(
        user.user_id, transaction_id, role=user.role
    )
    return TransactionResponse.model_validate(record)


@router.post("/{transaction_id}/block", response_model=TransactionResponse)
async def block_transaction(
    transaction_id: str,
    user:     CurrentUser  = Depends(get_current_user),
    services: RiskServices = Depends(get_services),
):
    record = await services.orchestrator.block_transaction_now(user.user_id, transaction_id)
    return TransactionResponse.model_validate(record)


@router.post("/{transaction_id}/override", response_model=TransactionResponse)
async def override_transaction(
    transaction_id: str,
    admin:    CurrentUser  = Depends(require_admin),
    services: RiskServices = Depends(get_services),
):
    record = await services.orchestrator.override_transaction(
        transaction_id, admin.user_id, admin.role
    )
    return TransactionResponse.model_validate(record)
