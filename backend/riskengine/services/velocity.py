"""
Risk velocity — direction and size of score change over a history window.

Velocity is a plain finite difference between the earliest and the latest
snapshot of the lookback window; fewer than two snapshots means no trend.
Only those two snapshots are read, so the history row cap never hides the
newest change.
"""
import logging
from collections.abc import Sequence
from datetime import datetime, timedelta

from riskengine.models.base import utcnow
from riskengine.repository.base import RiskStore
from riskengine.schemas.records import HistoryWindow, ScoreHistoryEntry
from riskengine.schemas.scoring import RiskVelocity, Trend

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK_DAYS = 30


def classify_trend(residual_change: int) -> Trend:
    if residual_change < 0:
        return Trend.IMPROVING
    if residual_change > 0:
        return Trend.WORSENING
    return Trend.STABLE


def calculate_velocity(history: Sequence[ScoreHistoryEntry]) -> RiskVelocity | None:
    """Velocity between the earliest and latest snapshot, or None below two points."""
    if len(history) < 2:
        return None

    ordered = sorted(history, key=lambda e: e.recorded_at)
    earliest, latest = ordered[0], ordered[-1]
    residual_change = latest.residual_score - earliest.residual_score

    return RiskVelocity(
        inherent_change=latest.inherent_score - earliest.inherent_score,
        residual_change=residual_change,
        trend=classify_trend(residual_change),
        # timedelta.days floors partial days
        period_days=(latest.recorded_at - earliest.recorded_at).days,
    )


def _lookback_window(lookback_days: int, now: datetime | None) -> HistoryWindow:
    end = now or utcnow()
    return HistoryWindow(start=end - timedelta(days=lookback_days))


async def calculate_batch_velocity(
    store: RiskStore,
    risk_ids: Sequence[int],
    lookback_days: int = DEFAULT_LOOKBACK_DAYS,
    now: datetime | None = None,
) -> dict[int, RiskVelocity]:
    """Velocity for many risks from a single history read.

    Risks with fewer than two snapshots in the lookback window are absent from
    the result. Keys follow the first appearance of each id in ``risk_ids``.
    """
    unique_ids = list(dict.fromkeys(risk_ids))
    if not unique_ids:
        return {}

    window = _lookback_window(lookback_days, now)
    endpoints = await store.read_score_history_endpoints(unique_ids, window)

    result: dict[int, RiskVelocity] = {}
    for risk_id in unique_ids:
        velocity = calculate_velocity(endpoints.get(risk_id, ()))
        if velocity is not None:
            result[risk_id] = velocity

    logger.debug(
        "Batch velocity: %d requested, %d with trend (lookback %d days)",
        len(unique_ids), len(result), lookback_days,
    )
    return result


async def calculate_single_velocity(
    store: RiskStore,
    risk_id: int,
    lookback_days: int = DEFAULT_LOOKBACK_DAYS,
    now: datetime | None = None,
) -> RiskVelocity | None:
    endpoints = await store.read_score_history_endpoints([risk_id], _lookback_window(lookback_days, now))
    return calculate_velocity(endpoints.get(risk_id, ()))
