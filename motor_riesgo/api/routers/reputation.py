"""
reputation.py — Router de reputación de destinatarios
----------------------------------------------------
Expone:
  GET    /v1/reputation/check/{identifier}   → Veredicto de reputación
  GET    /v1/reputation/stats/{identifier}   → Bloqueos y entrada global del destinatario
  POST   /v1/reputation/blocks               → Bloqueo personal (puede escalar)
  GET    /v1/reputation/blocks               → Mis bloqueos
  GET    /v1/reputation/blocks/{identifier}  → ¿Tengo bloqueado este destinatario?
  DELETE /v1/reputation/blocks/{identifier}  → Quitar bloqueo personal
  POST   /v1/reputation/reports              → Reporte a la comunidad
  POST   /v1/reputation/circle-reports       → Reporte a mi círculo de confianza
  POST   /v1/reputation/trusted-contacts     → Agregar contacto de confianza
"""

from fastapi import APIRouter, Depends, status

from motor_riesgo.api.dependencies import get_current_user, get_services
from motor_riesgo.domain.schemas import (
    BlockResponse,
    CircleReportResponse,
    CurrentUser,
    IdentifierRequest,
    PayeeStatsResponse,
    ReputationCheckResponse,
    ReputationEntryResponse,
    TrustedContactRequest,
    TrustedContactResponse,
    UserBlockResponse,
)
from motor_riesgo.services.container import RiskServices

router = APIRouter(prefix="/v1/reputation", tags=["Reputation"])


@router.get("/check/{identifier}", response_model=ReputationCheckResponse)
async def check_reputation(
    identifier: str,
    _user:    CurrentUser  = Depends(get_current_user),
    services: RiskServices = Depends(get_services),
):
    verdict = await services.reputation.check(identifier)
    return ReputationCheckResponse(
        identifier  = identifier.strip().lower(),
        flagged     = verdict.flagged,
        whitelisted = verdict.whitelisted,
        tier        = verdict.tier,
        reason      = verdict.reason,
        confidence  = verdict.confidence,
        source      = verdict.source,
    )


@router.get("/stats/{identifier}", response_model=PayeeStatsResponse)
async def payee_stats(
    identifier: str,
    _user:    CurrentUser  = Depends(get_current_user),
    services: RiskServices = Depends(get_services),
):
    stats = await services.escalation.payee_stats(identifier)
    return PayeeStatsResponse(
        identifier  = stats.identifier,
        block_count = stats.block_count,
        entry       = (
            ReputationEntryResponse.model_validate(stats.entry) if stats.entry else None
        ),
    )


# ── Bloqueos personales ───────────────────────────────────────────────

@router.post("/blocks", response_model=BlockResponse, status_code=status.HTTP_201_CREATED)
async def block_payee(
    payload:  IdentifierRequest,
    user:     CurrentUser  = Depends(get_current_user),
    services: RiskServices = Depends(get_services),
):
    outcome = await services.escalation.block_payee(
        user.user_id, payload.identifier, payload.reason
    )
    return BlockResponse(
        identifier  = outcome.identifier,
        block_count = outcome.block_count,
        escalated   = outcome.escalated,
    )


@router.get("/blocks", response_model=list[UserBlockResponse])
async def list_blocks(
    user:     CurrentUser  = Depends(get_current_user),
    services: RiskServices = Depends(get_services),
):
    blocks = await services.escalation.list_user_blocks(user.user_id)
    return [
        UserBlockResponse(identifier=b.identifier, reason=b.reason, blocked_at=b.blocked_at)
        for b in blocks
    ]


@router.get("/blocks/{identifier}")
async def is_blocked(
    identifier: str,
    user:     CurrentUser  = Depends(get_current_user),
    services: RiskServices = Depends(get_services),
):
    blocked = await services.escalation.is_blocked_by(user.user_id, identifier)
    return {"identifier": identifier.strip().lower(), "blocked": blocked}


@router.delete("/blocks/{identifier}", status_code=status.HTTP_204_NO_CONTENT)
async def unblock_payee(
    identifier: str,
    user:     CurrentUser  = Depends(get_current_user),
    services: RiskServices = Depends(get_services),
) -> None:
    await services.escalation.unblock_payee(user.user_id, identifier)


# ── Reportes ──────────────────────────────────────────────────────────

@router.post(
    "/reports",
    response_model = ReputationEntryResponse,
    status_code    = status.HTTP_201_CREATED,
)
async def report_payee(
    payload:  IdentifierRequest,
    user:     CurrentUser  = Depends(get_current_user),
    services: RiskServices = Depends(get_services),
):
    entry = await services.escalation.report_payee(
        user.user_id, payload.identifier, payload.reason
    )
    return ReputationEntryResponse.model_validate(entry)


@router.post(
    "/circle-reports",
    response_model = CircleReportResponse,
    status_code    = status.HTTP_201_CREATED,
)
async def report_to_circle(
    payload:  IdentifierRequest,
    user:     CurrentUser  = Depends(get_current_user),
    services: RiskServices = Depends(get_services),
):
    notified = await services.escalation.report_to_circle(
        user.user_id, payload.identifier, payload.reason
    )
    return CircleReportResponse(identifier=payload.identifier, notified_members=notified)


@router.post(
    "/trusted-contacts",
    response_model = TrustedContactResponse,
    status_code    = status.HTTP_201_CREATED,
)
async def add_trusted_contact(
    payload:  TrustedContactRequest,
    user:     CurrentUser  = Depends(get_current_user),
    services: RiskServices = Depends(get_services),
):
    await services.history.add_trusted_contact(user.user_id, payload.contact_id)
    return TrustedContactResponse(user_id=user.user_id, contact_id=payload.contact_id)
