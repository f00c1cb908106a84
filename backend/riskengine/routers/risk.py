"""
Risk scoring API — /api/v1/risks

Score mutations, score history and velocity for individual risks.
"""
from datetime import datetime

from fastapi import APIRouter, Depends, Query

from riskengine.config import settings
from riskengine.dependencies import get_store, parse_id_list
from riskengine.repository.base import RiskStore
from riskengine.schemas.records import ScoreHistoryEntry
from riskengine.schemas.scoring import RescoreRequest, RescoreResult, RiskHistoryReport, RiskVelocity
from riskengine.services import effectiveness as eff_svc
from riskengine.services import score_history as history_svc
from riskengine.services import velocity as velocity_svc

router = APIRouter(prefix="/api/v1/risks", tags=["Risk scoring"])


@router.get(
    "/velocity",
    response_model=dict[int, RiskVelocity],
    summary="Batch velocity — trend over the lookback window for many risks",
)
async def batch_velocity(
    risk_ids: str = Query(..., description="Comma-separated risk IDs, e.g. '1,2,3'"),
    lookback_days: int = Query(settings.VELOCITY_LOOKBACK_DAYS, ge=1, le=3650),
    store: RiskStore = Depends(get_store),
):
    ids = parse_id_list(risk_ids, "risk_ids")
    return await velocity_svc.calculate_batch_velocity(store, ids, lookback_days)


@router.get(
    "/{risk_id}/velocity",
    response_model=RiskVelocity | None,
    summary="Velocity of one risk (null below two snapshots)",
)
async def single_velocity(
    risk_id: int,
    lookback_days: int = Query(settings.VELOCITY_LOOKBACK_DAYS, ge=1, le=3650),
    store: RiskStore = Depends(get_store),
):
    return await velocity_svc.calculate_single_velocity(store, risk_id, lookback_days)


@router.get(
    "/{risk_id}/history",
    response_model=RiskHistoryReport,
    summary="Score history — current scores, snapshots and velocity",
)
async def risk_history(
    risk_id: int,
    start: datetime | None = Query(None),
    end: datetime | None = Query(None),
    limit: int = Query(settings.HISTORY_READ_LIMIT, description="Capped at 100"),
    store: RiskStore = Depends(get_store),
):
    return await history_svc.get_risk_history(store, risk_id, start, end, limit)


@router.post(
    "/{risk_id}/rescore",
    response_model=RescoreResult,
    summary="Manual rescore — new likelihood / impact / target",
)
async def rescore(
    risk_id: int,
    body: RescoreRequest,
    store: RiskStore = Depends(get_store),
):
    return await eff_svc.rescore_risk(
        store, risk_id,
        likelihood=body.likelihood,
        impact=body.impact,
        target_score=body.target_score,
        note=body.note,
    )


@router.post(
    "/{risk_id}/controls/recalculate",
    response_model=RescoreResult,
    summary="Recalculate control effectiveness from linked controls",
)
async def recalculate_controls(
    risk_id: int,
    note: str | None = Query(None),
    store: RiskStore = Depends(get_store),
):
    return await eff_svc.recalculate_control_effectiveness(store, risk_id, note)


@router.post(
    "/{risk_id}/initial-score",
    response_model=ScoreHistoryEntry,
    status_code=201,
    summary="Record the INITIAL snapshot of a new risk",
)
async def initial_score(
    risk_id: int,
    note: str | None = Query(None),
    store: RiskStore = Depends(get_store),
):
    return await eff_svc.record_initial_score(store, risk_id, note)
