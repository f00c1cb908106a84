"""
Dashboard API — /api/v1/dashboard

Heatmap endpoints accept an optional `organization_id` query param.
Omit it for the cross-organization view.
"""
from fastapi import APIRouter, Depends, Query

from riskengine.config import settings
from riskengine.dependencies import get_store
from riskengine.models.risk import RiskCategory, TreatmentStatus
from riskengine.repository.base import RiskStore
from riskengine.schemas.heatmap import HeatmapCell, RiskHeatmap
from riskengine.schemas.records import RiskFilter
from riskengine.services import heatmap as svc

router = APIRouter(prefix="/api/v1/dashboard", tags=["Dashboard"])


@router.get(
    "/risk-heatmap",
    response_model=RiskHeatmap,
    summary="Risk heatmap — 5×5 likelihood × impact counts",
)
async def risk_heatmap(
    organization_id: int | None = Query(None),
    category: RiskCategory | None = Query(None),
    treatment_status: TreatmentStatus | None = Query(None),
    store: RiskStore = Depends(get_store),
):
    return await svc.load_heatmap(store, RiskFilter(
        organization_id=organization_id,
        category=category,
        treatment_status=treatment_status,
    ))


@router.get(
    "/risk-heatmap/cell",
    response_model=HeatmapCell,
    summary="Heatmap drill-down — risks of one cell, highest residual first",
)
async def risk_heatmap_cell(
    # "3" and "3.7" both land in row 3
    likelihood: str = Query(...),
    impact: str = Query(...),
    include_velocity: bool = Query(False),
    organization_id: int | None = Query(None),
    store: RiskStore = Depends(get_store),
):
    return await svc.cell_risks(
        store, likelihood, impact,
        include_velocity=include_velocity,
        organization_id=organization_id,
        limit=settings.HEATMAP_CELL_LIMIT,
    )
