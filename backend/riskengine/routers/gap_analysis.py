"""
Gap Analysis API — /api/v1/gap-analysis

Results are cached for GAP_CACHE_TTL_SECONDS per organization, framework
list and granularity; pass `refresh=true` to recompute.
"""
import logging

from fastapi import APIRouter, Depends, Query

from riskengine.cache import ResultCache, build_cache_key
from riskengine.config import settings
from riskengine.dependencies import get_gap_cache, get_store, parse_id_list
from riskengine.repository.base import RiskStore
from riskengine.schemas.gap_analysis import GapAnalysisResult, MatrixGranularity, PairwiseComparison
from riskengine.services import gap_analysis as svc

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/gap-analysis", tags=["Gap analysis"])


@router.get(
    "",
    response_model=GapAnalysisResult,
    summary="Cross-framework gap analysis — coverage, gaps and overlap matrix",
)
async def gap_analysis(
    organization_id: int = Query(...),
    frameworks: str = Query(..., description="Comma-separated framework IDs, e.g. '1,2,3'"),
    granularity: MatrixGranularity = Query(MatrixGranularity.FRAMEWORK),
    refresh: bool = Query(False),
    store: RiskStore = Depends(get_store),
    cache: ResultCache = Depends(get_gap_cache),
):
    framework_ids = parse_id_list(frameworks, "frameworks")
    key = build_cache_key(
        "gap", "analyze",
        organization_id=organization_id,
        framework_ids=framework_ids,
        granularity=granularity.value,
    )
    if not refresh:
        cached = cache.get(key)
        if cached is not None:
            logger.debug("Gap analysis cache hit %s", key)
            return cached

    result = await svc.analyze_gaps(
        store, organization_id, framework_ids,
        granularity=granularity,
        max_frameworks=settings.GAP_MAX_FRAMEWORKS,
    )
    cache.set(key, result)
    return result


@router.get(
    "/pairwise",
    response_model=PairwiseComparison,
    summary="Pairwise comparison — directional mapping coverage of two frameworks",
)
async def pairwise(
    source_id: int = Query(...),
    target_id: int = Query(...),
    store: RiskStore = Depends(get_store),
):
    return await svc.compare_frameworks(store, source_id, target_id)
