"""Pydantic schemas for scoring, score history and velocity results."""
from enum import StrEnum

from pydantic import BaseModel

from riskengine.schemas.records import ScoreHistoryEntry, ScoreSnapshot


class RiskLevel(StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class Trend(StrEnum):
    IMPROVING = "improving"
    WORSENING = "worsening"
    STABLE = "stable"


class RiskVelocity(BaseModel):
    inherent_change: int
    residual_change: int
    trend: Trend
    period_days: int


class RescoreResult(BaseModel):
    risk_id: int
    changed: bool
    previous: ScoreSnapshot
    current: ScoreSnapshot
    history_entry: ScoreHistoryEntry | None = None


class RiskHistoryReport(BaseModel):
    risk_id: int
    risk_title: str
    current_scores: ScoreSnapshot
    # banded from the current residual score
    risk_level: RiskLevel
    history: list[ScoreHistoryEntry]
    velocity: RiskVelocity | None = None
    total: int


class RescoreRequest(BaseModel):
    likelihood: int | None = None
    impact: int | None = None
    target_score: int | None = None
    note: str | None = None
