"""5×5 likelihood × impact heatmap and per-cell drill-down."""
import logging
from collections.abc import Iterable

from riskengine.errors import ValidationError
from riskengine.repository.base import RiskStore
from riskengine.schemas.heatmap import CellRisk, HeatmapCell, RiskHeatmap
from riskengine.schemas.records import RiskFilter, RiskRecord
from riskengine.services.score_model import RATING_MAX, RATING_MIN, risk_level, validate_rating
from riskengine.services.velocity import calculate_batch_velocity

logger = logging.getLogger(__name__)

DEFAULT_CELL_LIMIT = 50


def build_heatmap(risks: Iterable[RiskRecord]) -> RiskHeatmap:
    matrix = [[0] * RATING_MAX for _ in range(RATING_MAX)]
    total = 0
    for r in risks:
        if not (RATING_MIN <= r.likelihood <= RATING_MAX and RATING_MIN <= r.impact <= RATING_MAX):
            logger.warning(
                "Skipping risk %s with out-of-range rating (likelihood=%s, impact=%s)",
                r.id, r.likelihood, r.impact,
            )
            continue
        matrix[r.likelihood - 1][r.impact - 1] += 1
        total += 1

    return RiskHeatmap(
        matrix=matrix,
        total_risks=total,
        max_count=max(max(row) for row in matrix),
    )


async def load_heatmap(store: RiskStore, risk_filter: RiskFilter) -> RiskHeatmap:
    return build_heatmap(await store.find_risks(risk_filter))


def coerce_rating(value, field: str) -> int:
    """Accept ints, floats and numeric strings; fractional parts are truncated."""
    if isinstance(value, bool):
        raise ValidationError(field, f"must be a number between {RATING_MIN} and {RATING_MAX}")
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            raise ValidationError(
                field, f"must be a number between {RATING_MIN} and {RATING_MAX}",
            ) from None
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            raise ValidationError(field, f"must be a number between {RATING_MIN} and {RATING_MAX}")
        value = int(value)
    return validate_rating(value, field)


async def cell_risks(
    store: RiskStore,
    likelihood,
    impact,
    include_velocity: bool = False,
    organization_id: int | None = None,
    limit: int = DEFAULT_CELL_LIMIT,
) -> HeatmapCell:
    """Risks in one heatmap cell, highest residual score first."""
    likelihood = coerce_rating(likelihood, "likelihood")
    impact = coerce_rating(impact, "impact")

    risks = await store.find_risks(
        RiskFilter(organization_id=organization_id, likelihood=likelihood, impact=impact),
        limit=limit,
    )
    risks = sorted(risks, key=lambda r: (-r.residual_score, r.id))[:limit]

    velocity = {}
    if include_velocity and risks:
        velocity = await calculate_batch_velocity(store, [r.id for r in risks])

    return HeatmapCell(
        likelihood=likelihood,
        impact=impact,
        count=len(risks),
        risks=[
            CellRisk(
                id=r.id,
                title=r.title,
                category=r.category,
                residual_score=r.residual_score,
                risk_level=risk_level(r.residual_score),
                treatment_status=r.treatment_status,
                assessment_id=r.assessment_id,
                velocity=velocity.get(r.id),
            )
            for r in risks
        ],
    )
