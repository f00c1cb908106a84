"""
Control effectiveness aggregation and the score mutations that follow it.

Every change to a risk's scoring attributes goes through ``record_score_change``
on the store so the risk row and its history snapshot move together.
"""
import logging
from collections.abc import Iterable

from riskengine.errors import NotFoundError, ValidationError
from riskengine.models.risk import ScoreSource
from riskengine.repository.base import RiskStore
from riskengine.schemas.records import RiskRecord, ScoreSnapshot
from riskengine.schemas.scoring import RescoreResult
from riskengine.services.score_history import append_snapshot
from riskengine.services.score_model import (
    EFFECTIVENESS_MAX,
    EFFECTIVENESS_MIN,
    MAX_SCORE,
    residual_score,
    round_half_up,
    score_risk,
    validate_effectiveness,
)

logger = logging.getLogger(__name__)


def aggregate_effectiveness(values: Iterable) -> int:
    """Mean of the link effectiveness values, rounded half-up; 0 without controls."""
    values = list(values)
    if not values:
        return 0
    for v in values:
        validate_effectiveness(v, "control_effectiveness")
    mean = sum(values) / len(values)
    return max(EFFECTIVENESS_MIN, min(EFFECTIVENESS_MAX, round_half_up(mean)))


def _snapshot(risk: RiskRecord) -> ScoreSnapshot:
    return ScoreSnapshot(
        inherent_score=risk.inherent_score,
        residual_score=risk.residual_score,
        target_score=risk.target_score,
        control_effectiveness=risk.control_effectiveness,
    )


async def _load_risk(store: RiskStore, risk_id: int) -> RiskRecord:
    risk = await store.get_risk(risk_id)
    if not risk:
        raise NotFoundError("Risk", risk_id)
    return risk


async def recalculate_control_effectiveness(
    store: RiskStore, risk_id: int, note: str | None = None,
) -> RescoreResult:
    """Re-aggregate the risk's control links; persist and log a snapshot only on change."""
    risk = await _load_risk(store, risk_id)
    links = await store.find_risk_controls([risk_id])

    effectiveness = aggregate_effectiveness(link.effectiveness for link in links)
    previous = _snapshot(risk)
    current = previous.model_copy(update={
        "control_effectiveness": effectiveness,
        "residual_score": residual_score(risk.inherent_score, effectiveness),
    })

    if current == previous:
        logger.debug("Risk %s: control effectiveness unchanged at %s%%", risk_id, effectiveness)
        return RescoreResult(risk_id=risk_id, changed=False, previous=previous, current=current)

    entry = await store.record_score_change(
        risk_id, risk.likelihood, risk.impact, current, ScoreSource.CONTROL_CHANGE, note,
    )
    return RescoreResult(
        risk_id=risk_id, changed=True, previous=previous, current=current, history_entry=entry,
    )


async def rescore_risk(
    store: RiskStore,
    risk_id: int,
    likelihood: int | None = None,
    impact: int | None = None,
    target_score: int | None = None,
    note: str | None = None,
) -> RescoreResult:
    """Apply a manual likelihood/impact/target change and record it as MANUAL."""
    if target_score is not None and not 0 <= target_score <= MAX_SCORE:
        raise ValidationError("target_score", f"must be between 0 and {MAX_SCORE}")
    risk = await _load_risk(store, risk_id)
    new_likelihood = risk.likelihood if likelihood is None else likelihood
    new_impact = risk.impact if impact is None else impact

    previous = _snapshot(risk)
    current = score_risk(
        new_likelihood,
        new_impact,
        risk.control_effectiveness,
        risk.target_score if target_score is None else target_score,
    )

    if current == previous and (new_likelihood, new_impact) == (risk.likelihood, risk.impact):
        return RescoreResult(risk_id=risk_id, changed=False, previous=previous, current=current)

    entry = await store.record_score_change(
        risk_id, new_likelihood, new_impact, current, ScoreSource.MANUAL, note,
    )
    return RescoreResult(
        risk_id=risk_id, changed=True, previous=previous, current=current, history_entry=entry,
    )


async def record_initial_score(store: RiskStore, risk_id: int, note: str | None = None):
    """Append the INITIAL snapshot of a freshly created risk."""
    risk = await _load_risk(store, risk_id)
    return await append_snapshot(store, risk_id, _snapshot(risk), ScoreSource.INITIAL, note)
