"""
admin.py — Router administrativo
-------------------------------
Todos los endpoints requieren rol admin o superadmin.

Expone:
  GET/PUT /v1/admin/config/decision          → Umbrales y esperas del DecisionEngine
  GET/PUT /v1/admin/config/scoring           → Pesos base y umbrales del scoring
  GET/PUT /v1/admin/config/escalation        → Umbral de escalación por bloqueos
  GET     /v1/admin/reputation               → Entradas de lista negra / blanca
  PATCH   /v1/admin/reputation/{identifier}  → Cambiar estado o tier
  DELETE  /v1/admin/reputation/{identifier}  → Desactivar (pasa a resolved)
  POST    /v1/admin/reputation/import        → Importación por lotes de un feed
  POST    /v1/admin/cache/clear              → Vaciar la caché de veredictos

Una configuración inválida responde 400 y la vigente no cambia.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from motor_riesgo.api.dependencies import get_services, require_admin
from motor_riesgo.domain.schemas import (
    BatchImportRequest,
    BatchImportResponse,
    CurrentUser,
    DecisionConfigUpdate,
    EntryStatus,
    EntryStatusUpdate,
    EscalationConfigUpdate,
    ListType,
    ReputationEntryResponse,
    ScoringConfigUpdate,
)
from motor_riesgo.services.container import RiskServices

router = APIRouter(
    prefix       = "/v1/admin",
    tags         = ["Admin"],
    dependencies = [Depends(require_admin)],
)


# ── Configuración ─────────────────────────────────────────────────────

@router.get("/config/decision")
async def get_decision_config(services: RiskServices = Depends(get_services)):
    return services.decisions.get_config().to_dict()


@router.put("/config/decision")
async def update_decision_config(
    payload:  DecisionConfigUpdate,
    services: RiskServices = Depends(get_services),
):
    return services.decisions.update_config(payload.model_dump(exclude_none=True)).to_dict()


@router.get("/config/scoring")
async def get_scoring_config(services: RiskServices = Depends(get_services)):
    return services.scoring.get_config().to_dict()


@router.put("/config/scoring")
async def update_scoring_config(
    payload:  ScoringConfigUpdate,
    services: RiskServices = Depends(get_services),
):
    return services.scoring.update_config(payload.model_dump(exclude_none=True)).to_dict()


@router.get("/config/escalation")
async def get_escalation_config(services: RiskServices = Depends(get_services)):
    return {"block_threshold": services.escalation.threshold}


@router.put("/config/escalation")
async def update_escalation_config(
    payload:  EscalationConfigUpdate,
    services: RiskServices = Depends(get_services),
):
    return {"block_threshold": services.escalation.update_threshold(payload.block_threshold)}


# ── Listas de reputación ──────────────────────────────────────────────

@router.get("/reputation", response_model=list[ReputationEntryResponse])
async def list_reputation_entries(
    list_type:    ListType              = Query(ListType.BLACKLIST),
    entry_status: Optional[EntryStatus] = Query(None, alias="status"),
    services:     RiskServices          = Depends(get_services),
):
    entries = await services.escalation.list_entries(list_type, entry_status)
    return [ReputationEntryResponse.model_validate(e) for e in entries]


@router.patch("/reputation/{identifier}", response_model=ReputationEntryResponse)
async def update_reputation_entry(
    identifier: str,
    payload:    EntryStatusUpdate,
    list_type:  ListType     = Query(ListType.BLACKLIST),
    services:   RiskServices = Depends(get_services),
):
    entry = await services.escalation.update_entry_status(
        identifier, payload.status, payload.risk_tier, list_type
    )
    return ReputationEntryResponse.model_validate(entry)


@router.delete("/reputation/{identifier}", response_model=ReputationEntryResponse)
async def deactivate_reputation_entry(
    identifier: str,
    list_type:  ListType     = Query(ListType.BLACKLIST),
    services:   RiskServices = Depends(get_services),
):
    entry = await services.escalation.deactivate_entry(identifier, list_type)
    return ReputationEntryResponse.model_validate(entry)


@router.post("/reputation/import", response_model=BatchImportResponse)
async def import_reputation_feed(
    payload:  BatchImportRequest,
    services: RiskServices = Depends(get_services),
):
    created, updated = await services.escalation.batch_import(payload.entries, payload.source)
    return BatchImportResponse(created=created, updated=updated)


# ── Caché ─────────────────────────────────────────────────────────────

@router.post("/cache/clear")
async def clear_reputation_cache(
    admin:    CurrentUser  = Depends(require_admin),
    services: RiskServices = Depends(get_services),
):
    cleared = await services.reputation.clear_all()
    return {"cleared": cleared, "by": admin.user_id}
